"""Framework detection from a package.json manifest.

Detection is a static, ordered rule table: the first rule whose dependency
is declared wins. Meta-frameworks come before the UI libraries they build
on (``next`` before ``react``, ``nuxt`` before ``vue``, ...).
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import re
from types import MappingProxyType
from typing import Any


@dataclass(frozen=True)
class FrameworkProfile:
    """Default install/build/output configuration for a framework."""

    name: str
    install_command: str
    build_command: str
    output_dir: str | None
    required_dependencies: tuple[str, ...] = ()
    env: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))

    def as_build_config(self) -> dict[str, Any]:
        return {
            "install_command": self.install_command,
            "build_command": self.build_command,
            "output_dir": self.output_dir,
            "env": dict(self.env),
        }


def _profile(
    name: str,
    build_command: str,
    output_dir: str,
    required: tuple[str, ...],
    install_command: str = "npm install",
    **env: str,
) -> FrameworkProfile:
    return FrameworkProfile(
        name=name,
        install_command=install_command,
        build_command=build_command,
        output_dir=output_dir,
        required_dependencies=required,
        env=MappingProxyType({"NODE_ENV": "production", **env}),
    )


FRAMEWORK_PROFILES: MappingProxyType = MappingProxyType(
    {
        "nextjs": _profile(
            "nextjs", "npm run build", "out", ("next", "react", "react-dom"), NEXT_TELEMETRY_DISABLED="1"
        ),
        "nuxt": _profile("nuxt", "npm run generate", "dist", ("nuxt",)),
        "gatsby": _profile("gatsby", "npm run build", "public", ("gatsby",)),
        "astro": _profile("astro", "npm run build", "dist", ("astro",)),
        "angular": _profile("angular", "npm run build", "dist", ("@angular/core", "@angular/cli")),
        "sveltekit": _profile("sveltekit", "npm run build", "build", ("@sveltejs/kit", "svelte", "vite")),
        "svelte": _profile("svelte", "npm run build", "public", ("svelte",)),
        "vue": _profile("vue", "npm run build", "dist", ("vue", "vite", "@vitejs/plugin-vue")),
        "react": _profile(
            "react", "npm run build", "build", ("react", "react-dom"), GENERATE_SOURCEMAP="false"
        ),
        "vite": _profile("vite", "npm run build", "dist", ("vite",)),
    }
)

# (dependency, framework) in priority order
DETECTION_RULES: tuple[tuple[str, str], ...] = (
    ("next", "nextjs"),
    ("nuxt", "nuxt"),
    ("gatsby", "gatsby"),
    ("astro", "astro"),
    ("@angular/core", "angular"),
    ("@sveltejs/kit", "sveltekit"),
    ("svelte", "svelte"),
    ("vue", "vue"),
    ("react", "react"),
    ("vite", "vite"),
)

GENERIC_PROFILE = FrameworkProfile(
    name="generic",
    install_command="npm install",
    build_command="npm run build",
    output_dir="dist",
    env=MappingProxyType({"NODE_ENV": "production"}),
)

# Repositories without a manifest: hand-written static sites
STATIC_PROFILE = FrameworkProfile(
    name="static",
    install_command="",
    build_command="",
    output_dir=None,
)


@dataclass(frozen=True)
class Detection:
    framework: str | None
    profile: FrameworkProfile

    @property
    def build_config(self) -> dict[str, Any]:
        return self.profile.as_build_config()


def declared_dependencies(manifest: dict[str, Any]) -> set[str]:
    """Runtime and development dependency names of a manifest."""
    names: set[str] = set()
    for section in ("dependencies", "devDependencies"):
        deps = manifest.get(section)
        if isinstance(deps, dict):
            names.update(deps)
    return names


def detect(manifest: str | dict[str, Any]) -> Detection:
    """Classify a project from its package.json content.

    Invalid JSON or a manifest matching no rule yields ``framework=None``
    with the generic npm profile.
    """
    if isinstance(manifest, str):
        try:
            manifest = json.loads(manifest)
        except ValueError:
            return Detection(None, GENERIC_PROFILE)
    if not isinstance(manifest, dict):
        return Detection(None, GENERIC_PROFILE)

    dependencies = declared_dependencies(manifest)
    for dependency, framework in DETECTION_RULES:
        if dependency in dependencies:
            return Detection(framework, FRAMEWORK_PROFILES[framework])
    return Detection(None, GENERIC_PROFILE)


# Labels written by the dashboard ("Next.js", "Vue.js", ...)
LABEL_ALIASES = MappingProxyType({"vuejs": "vue", "nuxtjs": "nuxt", "reactjs": "react"})


def profile_for(framework: str | None) -> FrameworkProfile | None:
    """Profile for a stored framework label, if it is a known one."""
    if not framework:
        return None
    key = re.sub(r"[^a-z]", "", framework.lower())
    return FRAMEWORK_PROFILES.get(LABEL_ALIASES.get(key, key))
