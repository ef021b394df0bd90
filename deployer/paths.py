"""Filesystem path derivation from user-controlled names."""

from pathlib import Path
import re
import time

from .errors import WorkspaceError

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify(name: str, fallback: str = "site") -> str:
    """Lowercase, replace non-alphanumerics with hyphens, trim.

    Never returns an empty string, a dot segment or anything containing
    a path separator.
    """
    slug = _NON_ALNUM.sub("-", name.lower()).strip("-")
    return slug[:63].rstrip("-") or fallback


def safe_join(root: Path, *parts: str) -> Path:
    """Join ``parts`` onto ``root`` and ensure the result stays inside it.

    Raises:
        WorkspaceError: the resolved path escapes ``root`` or equals it.
    """
    base = Path(root).resolve()
    candidate = base.joinpath(*parts).resolve()
    if candidate == base or not candidate.is_relative_to(base):
        raise WorkspaceError(f"Refusing path outside {base}: {'/'.join(parts)}")
    return candidate


def _base36(number: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    out = ""
    while True:
        number, rem = divmod(number, 36)
        out = digits[rem] + out
        if not number:
            return out


def derive_domain(name: str, project_id: str, suffix: str, now: float | None = None) -> str:
    """``<slug(name)>-<disambiguator>.<suffix>``

    The disambiguator is the first segment of the project id (the leading
    group of a UUID), falling back to a base36 millisecond timestamp when
    the id has no usable segment.
    """
    disambiguator = _NON_ALNUM.sub("", project_id.split("-", 1)[0].lower())[:12]
    if not disambiguator:
        disambiguator = _base36(int((time.time() if now is None else now) * 1000))
    return f"{slugify(name)}-{disambiguator}.{suffix.strip('.')}"
