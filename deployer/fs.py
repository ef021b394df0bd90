"""Blocking filesystem helpers; callers run them in a worker thread."""

from __future__ import annotations

from collections.abc import Container
import os
from pathlib import Path
import shutil

STATIC_ASSET_EXTENSIONS = frozenset(
    {
        ".html", ".htm", ".css", ".js", ".mjs", ".json", ".map",
        ".png", ".jpg", ".jpeg", ".gif", ".webp", ".avif", ".svg", ".ico",
        ".woff", ".woff2", ".ttf", ".eot", ".otf",
        ".txt", ".xml", ".webmanifest",
    }
)

SKIPPED_DIRECTORIES = frozenset({".git", "node_modules"})

# Manifests that match STATIC_ASSET_EXTENSIONS but are never site content
SKIPPED_FILES = frozenset({"package.json", "package-lock.json", "tsconfig.json", "composer.json"})


def reset_directory(path: Path) -> None:
    """Remove ``path`` if present and recreate it empty."""
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True)


def copy_tree(src: Path, dst: Path, exclude: Container[str] = ()) -> int:
    """Copy regular files from ``src`` into ``dst`` preserving layout.

    Symlinks are skipped so a repository cannot smuggle files from outside
    its workspace into served content. Names in ``exclude`` are skipped at
    every depth. Returns the number of files copied.
    """
    copied = 0
    for root, dirs, files in os.walk(src, followlinks=False):
        root_path = Path(root)
        dirs[:] = [d for d in dirs if d not in exclude and not (root_path / d).is_symlink()]
        target_dir = dst / root_path.relative_to(src)
        target_dir.mkdir(parents=True, exist_ok=True)
        for name in files:
            source = root_path / name
            if name in exclude or source.is_symlink():
                continue
            shutil.copy2(source, target_dir / name)
            copied += 1
    return copied


def copy_static_assets(src: Path, dst: Path) -> int:
    """Copy only static web assets from ``src`` into ``dst``.

    Used when a repository has no build output directory, e.g. a
    hand-written site. Relative paths are kept so pages still find their
    stylesheets and images.
    """
    copied = 0
    for root, dirs, files in os.walk(src, followlinks=False):
        root_path = Path(root)
        dirs[:] = [
            d
            for d in dirs
            if d not in SKIPPED_DIRECTORIES and not (root_path / d).is_symlink()
        ]
        for name in files:
            source = root_path / name
            if (
                name.startswith(".")
                or name in SKIPPED_FILES
                or source.suffix.lower() not in STATIC_ASSET_EXTENSIONS
                or source.is_symlink()
            ):
                continue
            target = dst / source.relative_to(src)
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target)
            copied += 1
    return copied
