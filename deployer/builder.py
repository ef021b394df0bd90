"""Install, build and stage a cloned project into its artifact directory."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
import json
from pathlib import Path

import structlog

from shared.schemas.deployment import Project

from .errors import (
    BuildFailed,
    CommandFailed,
    DeploymentCancelled,
    InstallFailed,
    StagingFailed,
    WorkspaceError,
)
from .frameworks import STATIC_PROFILE, FrameworkProfile, detect, profile_for
from .fs import copy_static_assets, copy_tree, reset_directory
from .paths import derive_domain, safe_join
from .runner import CommandRunner, OutputObserver

logger = structlog.get_logger(__name__)

METADATA_FILENAME = ".deployment.json"
MANIFEST_FILENAME = "package.json"

# Output dirs meaning "the repository root", i.e. nothing to stage from
_ROOT_OUTPUT_DIRS = {"", ".", "./", "/"}


@dataclass
class BuildPlan:
    """Commands and environment resolved for one build."""

    framework: str | None
    install_command: str
    build_command: str
    output_dir: str | None
    env: dict[str, str] = field(default_factory=dict)


@dataclass
class BuildOutcome:
    artifact_path: Path
    framework: str | None
    used_static_fallback: bool


def resolve_build_plan(project: Project, workspace: Path, domain: str) -> BuildPlan:
    """Explicit project settings first, then framework defaults.

    A workspace without package.json is a hand-written static site: no
    install, no build, assets are staged straight from the checkout.
    """
    manifest = workspace / MANIFEST_FILENAME
    framework = project.framework
    profile: FrameworkProfile
    if manifest.is_file():
        detection = detect(manifest.read_text(encoding="utf-8", errors="replace"))
        profile = profile_for(project.framework) or detection.profile
        framework = project.framework or detection.framework
    else:
        profile = STATIC_PROFILE

    def pick(explicit: str | None, default: str | None) -> str | None:
        return explicit if explicit is not None else default

    public_url = f"https://{domain}/"
    env = {
        "NODE_ENV": "production",
        **profile.env,
        "PUBLIC_URL": public_url,
        "PUBLIC_PATH": public_url,
        # User-declared variables are the most specific configuration
        **project.env_vars,
    }
    return BuildPlan(
        framework=framework,
        install_command=(pick(project.install_command, profile.install_command) or "").strip(),
        build_command=(pick(project.build_command, profile.build_command) or "").strip(),
        output_dir=pick(project.output_dir, profile.output_dir),
        env=env,
    )


class Builder:
    """Runs install + build in a workspace and stages the output."""

    def __init__(
        self,
        runner: CommandRunner,
        artifact_root: Path,
        domain_suffix: str,
        timeout: float = 600.0,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.runner = runner
        self.artifact_root = Path(artifact_root)
        self.domain_suffix = domain_suffix
        self.timeout = timeout
        self.clock = clock

    def artifact_path(self, project: Project) -> Path:
        return safe_join(self.artifact_root, project.id)

    def target_domain(self, project: Project) -> str:
        return project.domain or derive_domain(project.name, project.id, self.domain_suffix)

    async def build(
        self,
        project: Project,
        workspace: Path,
        on_output: OutputObserver | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> BuildOutcome:
        """Build ``project`` from ``workspace`` into its artifact directory.

        Raises:
            InstallFailed / BuildFailed: the command exited non-zero or timed out
            StagingFailed: the output could not be copied
        """
        artifact = self.artifact_path(project)
        domain = self.target_domain(project)
        try:
            await asyncio.to_thread(reset_directory, artifact)
        except OSError as e:
            raise StagingFailed(f"Cannot prepare artifact directory {artifact}: {e}") from e

        plan = resolve_build_plan(project, workspace, domain)
        logger.info(
            "build_plan_resolved",
            framework=plan.framework,
            install_command=plan.install_command or None,
            build_command=plan.build_command or None,
            output_dir=plan.output_dir,
        )

        if plan.install_command:
            self._announce(on_output, f"$ {plan.install_command}")
            try:
                await self.runner.execute(
                    plan.install_command,
                    cwd=workspace,
                    env={"NODE_ENV": "development", **project.env_vars},
                    timeout=self.timeout,
                    on_output=on_output,
                    cancel_event=cancel_event,
                )
            except DeploymentCancelled:
                raise
            except CommandFailed as e:
                raise InstallFailed(f"Dependency installation failed: {e}") from e

        if plan.build_command:
            self._announce(on_output, f"$ {plan.build_command}")
            try:
                await self.runner.execute(
                    plan.build_command,
                    cwd=workspace,
                    env=plan.env,
                    timeout=self.timeout,
                    on_output=on_output,
                    cancel_event=cancel_event,
                )
            except DeploymentCancelled:
                raise
            except CommandFailed as e:
                raise BuildFailed(f"Build failed: {e}") from e

        used_fallback = await self._stage(workspace, artifact, plan, on_output)
        await asyncio.to_thread(self._write_metadata, artifact, project, plan, domain)

        logger.info("build_completed", artifact=str(artifact), static_fallback=used_fallback)
        return BuildOutcome(artifact_path=artifact, framework=plan.framework, used_static_fallback=used_fallback)

    async def _stage(
        self, workspace: Path, artifact: Path, plan: BuildPlan, on_output: OutputObserver | None
    ) -> bool:
        source: Path | None = None
        if plan.output_dir and plan.output_dir.strip() not in _ROOT_OUTPUT_DIRS:
            try:
                source = safe_join(workspace, plan.output_dir.strip())
            except WorkspaceError as e:
                raise StagingFailed(str(e)) from e

        try:
            if source is not None and source.is_dir() and not source.is_symlink():
                self._announce(on_output, f"Copying build output from {plan.output_dir}")
                await asyncio.to_thread(copy_tree, source, artifact)
                return False

            self._announce(on_output, "No build output directory, copying static files")
            copied = await asyncio.to_thread(copy_static_assets, workspace, artifact)
            logger.info("static_assets_copied", count=copied)
            return True
        except OSError as e:
            raise StagingFailed(f"Copying build output failed: {e}") from e

    def _write_metadata(self, artifact: Path, project: Project, plan: BuildPlan, domain: str) -> None:
        info = {
            "projectId": project.id,
            "projectName": project.name,
            "framework": plan.framework,
            "branch": project.branch,
            "buildCommand": plan.build_command or None,
            "deployedAt": self.clock().isoformat(),
            "domain": domain,
        }
        try:
            (artifact / METADATA_FILENAME).write_text(json.dumps(info, indent=2), encoding="utf-8")
        except OSError as e:
            raise StagingFailed(f"Cannot write deployment metadata: {e}") from e

    @staticmethod
    def _announce(on_output: OutputObserver | None, line: str) -> None:
        if on_output is not None:
            on_output("stdout", f"{line}\n")
