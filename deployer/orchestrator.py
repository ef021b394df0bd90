"""Deployment state machine: clone -> build -> publish -> configure.

Every transition is written to the store before its stage runs. Any
failure ends the deployment as ``failed`` with the error appended to the
build log; the caller always gets a ``DeploymentResult`` back.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
import shutil
import time

import structlog

from shared.logging import bind_deployment_context, unbind_deployment_context
from shared.schemas.deployment import (
    DeploymentResult,
    DeploymentStatus,
    Project,
    ProjectStatus,
)

from .builder import Builder
from .errors import DeploymentCancelled, DeploymentError, ProjectNotFound
from .fetcher import RepositoryFetcher
from .paths import safe_join
from .publisher import Publisher
from .store import DeploymentStateStore

logger = structlog.get_logger(__name__)

CANCELLED_DEFAULT = "Deployment cancelled by user"


class CancelEvent(asyncio.Event):
    """``asyncio.Event`` that remembers why cancellation was requested."""

    def __init__(self) -> None:
        super().__init__()
        self.reason: str | None = None

    def request(self, reason: str) -> None:
        # First reason wins
        if not self.is_set():
            self.reason = reason
        self.set()


class DeploymentLog:
    """Append-only text buffer for one log field."""

    def __init__(self) -> None:
        self._parts: list[str] = []

    def write(self, text: str) -> None:
        self._parts.append(text)

    def line(self, message: str) -> None:
        self._parts.append(message if message.endswith("\n") else f"{message}\n")

    @property
    def text(self) -> str:
        return "".join(self._parts)


class _DeploymentRun:
    """Mutable state of a single deploy attempt: logs and persistence."""

    def __init__(
        self,
        store: DeploymentStateStore,
        deployment_id: str,
        flush_interval: float,
    ):
        self.store = store
        self.deployment_id = deployment_id
        self.flush_interval = flush_interval
        self.build_log = DeploymentLog()
        self.deploy_log = DeploymentLog()
        self.status = DeploymentStatus.PENDING
        self._last_flush = 0.0
        self._flush_task: asyncio.Task | None = None

    def on_output(self, _stream: str, text: str) -> None:
        """Runner observer: accumulate output and persist it periodically."""
        self.build_log.write(text)
        now = time.monotonic()
        if now - self._last_flush < self.flush_interval:
            return
        if self._flush_task is not None and not self._flush_task.done():
            return
        self._last_flush = now
        self._flush_task = asyncio.create_task(self._flush_logs())

    async def _flush_logs(self) -> None:
        try:
            await self.store.update_deployment_logs(
                self.deployment_id,
                build_log=self.build_log.text,
                deploy_log=self.deploy_log.text,
            )
        except Exception as e:
            logger.warning("log_flush_failed", error=str(e))

    async def _settle_flush(self) -> None:
        if self._flush_task is not None:
            await self._flush_task
            self._flush_task = None

    async def transition(self, status: DeploymentStatus, message: str | None = None) -> None:
        """Record ``status``; raise DeploymentCancelled if the row was terminated elsewhere."""
        if message:
            target = self.deploy_log if status in (DeploymentStatus.DEPLOYING, DeploymentStatus.CONFIGURING) else self.build_log
            target.line(message)
        await self._settle_flush()
        accepted = await self.store.update_deployment_status(
            self.deployment_id,
            status,
            build_log=self.build_log.text,
            deploy_log=self.deploy_log.text,
        )
        if not accepted:
            raise DeploymentCancelled(f"Deployment {self.deployment_id} was terminated externally")
        self.status = status
        logger.info("deployment_transition", status=status.value)

    async def persist_logs(self) -> None:
        await self._settle_flush()
        await self._flush_logs()


class DeploymentOrchestrator:
    """Drives RepositoryFetcher -> Builder -> Publisher for one project."""

    def __init__(
        self,
        store: DeploymentStateStore,
        fetcher: RepositoryFetcher,
        builder: Builder,
        publisher: Publisher,
        workspace_root: Path,
        log_flush_interval: float = 2.0,
    ):
        self.store = store
        self.fetcher = fetcher
        self.builder = builder
        self.publisher = publisher
        self.workspace_root = Path(workspace_root)
        self.log_flush_interval = log_flush_interval

    async def deploy_project(
        self,
        project_id: str,
        deployment_id: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> DeploymentResult:
        """Run a full deployment of ``project_id``.

        Args:
            deployment_id: existing ``pending`` row to drive; created when omitted
            cancel_event: set to abort between stages and kill running commands
        """
        if deployment_id is None:
            try:
                deployment_id = await self.store.create_deployment(project_id)
            except Exception as e:
                logger.error("deployment_create_failed", project_id=project_id, error=str(e))
                return DeploymentResult(
                    success=False,
                    deployment_id=None,
                    status=DeploymentStatus.FAILED,
                    error=f"Unable to create deployment: {e}",
                )

        cancel_event = cancel_event or CancelEvent()
        run = _DeploymentRun(self.store, deployment_id, self.log_flush_interval)
        bind_deployment_context(deployment_id, project_id)
        workspace: Path | None = None
        try:
            workspace = safe_join(self.workspace_root, deployment_id)
            url = await self._run_stages(run, project_id, workspace, cancel_event)
            return DeploymentResult(
                success=True,
                deployment_id=deployment_id,
                status=DeploymentStatus.SUCCESS,
                url=url,
            )
        except DeploymentCancelled as e:
            return await self._record_cancellation(run, e, getattr(cancel_event, "reason", None))
        except Exception as e:
            return await self._record_failure(run, project_id, e)
        finally:
            if workspace is not None:
                await self._cleanup(workspace)
            unbind_deployment_context()

    async def _run_stages(
        self,
        run: _DeploymentRun,
        project_id: str,
        workspace: Path,
        cancel_event: asyncio.Event,
    ) -> str:
        def checkpoint() -> None:
            if cancel_event.is_set():
                raise DeploymentCancelled(getattr(cancel_event, "reason", None) or CANCELLED_DEFAULT)

        project = await self.store.get_project(project_id)
        if project is None:
            raise ProjectNotFound(project_id)
        logger.info("deployment_started", repo=project.github_repo, branch=project.branch)

        checkpoint()
        await run.transition(
            DeploymentStatus.CLONING,
            f"Cloning {project.github_repo}@{project.branch}...",
        )
        await self.store.update_project(project.id, {"status": ProjectStatus.BUILDING})
        commit_hash = await self.fetcher.clone(
            project, run.deployment_id, workspace, on_output=run.on_output, cancel_event=cancel_event
        )
        run.build_log.line(f"Repository cloned at {commit_hash[:8]}")

        checkpoint()
        await run.transition(DeploymentStatus.BUILDING, "Building project...")
        outcome = await self.builder.build(
            project, workspace, on_output=run.on_output, cancel_event=cancel_event
        )
        await self._remember_framework(project, outcome.framework)
        run.build_log.line("Build completed")

        checkpoint()
        await run.transition(DeploymentStatus.DEPLOYING, "Publishing files...")
        url = await self.publisher.publish(project, outcome.artifact_path)
        run.deploy_log.line(f"Files published, site available at {url}")

        checkpoint()
        await run.transition(DeploymentStatus.CONFIGURING, "Configuring reverse proxy...")
        warning = await self.publisher.configure_proxy(project)
        if warning:
            run.deploy_log.line(f"WARNING: {warning}")

        await run.transition(DeploymentStatus.SUCCESS, f"Deployment succeeded: {url}")
        logger.info("deployment_succeeded", url=url)
        return url

    async def _remember_framework(self, project: Project, framework: str | None) -> None:
        if project.framework or not framework:
            return
        await self.store.update_project(project.id, {"framework": framework})
        project.framework = framework

    async def _record_failure(self, run: _DeploymentRun, project_id: str, error: Exception) -> DeploymentResult:
        stage = getattr(error, "stage", run.status.value) if isinstance(error, DeploymentError) else run.status.value
        message = str(error) or type(error).__name__
        if isinstance(error, DeploymentError):
            logger.error("deployment_failed", stage=stage, error=message, error_type=type(error).__name__)
        else:
            logger.exception("deployment_crashed", stage=stage, error=message)
        run.build_log.line(f"ERROR: {message}")

        try:
            await run.transition(DeploymentStatus.FAILED)
        except DeploymentCancelled:
            await self._safe_persist_logs(run)
        except Exception as e:
            logger.error("deployment_fail_status_write_failed", error=str(e))

        if not isinstance(error, ProjectNotFound):
            try:
                await self.store.update_project(project_id, {"status": ProjectStatus.ERROR})
            except Exception as e:
                logger.error("project_status_write_failed", error=str(e))

        return DeploymentResult(
            success=False,
            deployment_id=run.deployment_id,
            status=DeploymentStatus.FAILED,
            error=message,
        )

    async def _record_cancellation(
        self, run: _DeploymentRun, error: DeploymentCancelled, reason: str | None = None
    ) -> DeploymentResult:
        logger.warning("deployment_cancelled", stage=run.status.value, reason=reason)
        run.build_log.line(str(error))
        # The canceller appended its reason to the stored log; keep it across the final log write
        if reason and reason != str(error):
            run.build_log.line(reason)
        try:
            # No-op when the canceller already wrote the terminal status
            await self.store.update_deployment_status(run.deployment_id, DeploymentStatus.CANCELLED)
        except Exception as e:
            logger.error("deployment_cancel_status_write_failed", error=str(e))
        await self._safe_persist_logs(run)
        return DeploymentResult(
            success=False,
            deployment_id=run.deployment_id,
            status=DeploymentStatus.CANCELLED,
            error=str(error),
        )

    async def _safe_persist_logs(self, run: _DeploymentRun) -> None:
        try:
            await run.persist_logs()
        except Exception as e:
            logger.error("deployment_log_write_failed", error=str(e))

    async def _cleanup(self, workspace: Path) -> None:
        if not workspace.exists():
            return
        try:
            await asyncio.to_thread(shutil.rmtree, workspace)
            logger.info("workspace_removed", workspace=str(workspace))
        except OSError as e:
            logger.warning("workspace_cleanup_failed", workspace=str(workspace), error=str(e))
