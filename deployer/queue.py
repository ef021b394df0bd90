"""Bounded worker pool for deployments.

Admission is atomic: the in-progress check and the creation of the
``pending`` row happen under one lock, so two near-simultaneous triggers
for the same project cannot both get through. A project has at most one
queued or running deployment, which also serializes its filesystem writes.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import structlog

from shared.schemas.deployment import DeploymentResult, DeploymentStatus

from .errors import DeploymentInProgress
from .orchestrator import CANCELLED_DEFAULT, CancelEvent, DeploymentOrchestrator
from .store import DeploymentStateStore

logger = structlog.get_logger(__name__)

CANCELLED_BY_USER = CANCELLED_DEFAULT
CANCELLED_BY_SHUTDOWN = "Deployment interrupted by service shutdown"


@dataclass
class DeploymentHandle:
    """Caller-side view of a submitted deployment."""

    deployment_id: str
    project_id: str
    future: asyncio.Future[DeploymentResult]
    cancel_event: CancelEvent = field(default_factory=CancelEvent)
    started: bool = False

    def done(self) -> bool:
        return self.future.done()


class DeploymentQueue:
    """FIFO queue drained by ``max_workers`` concurrent deployment workers."""

    def __init__(
        self,
        orchestrator: DeploymentOrchestrator,
        store: DeploymentStateStore,
        max_workers: int = 1,
    ):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.orchestrator = orchestrator
        self.store = store
        self.max_workers = max_workers
        self._queue: asyncio.Queue[DeploymentHandle] = asyncio.Queue()
        self._handles: dict[str, DeploymentHandle] = {}
        self._by_project: dict[str, DeploymentHandle] = {}
        self._admission = asyncio.Lock()
        self._workers: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"deploy-worker-{i}")
            for i in range(self.max_workers)
        ]
        logger.info("deployment_queue_started", workers=self.max_workers)

    async def stop(self, timeout: float = 30.0) -> None:
        """Cancel everything in flight, let workers settle, then stop them."""
        for handle in list(self._handles.values()):
            await self._cancel_handle(handle, CANCELLED_BY_SHUTDOWN)
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("deployment_queue_drain_timeout", timeout=timeout)

        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("deployment_queue_stopped")

    async def submit(self, project_id: str) -> DeploymentHandle:
        """Admit a deployment of ``project_id`` and enqueue it.

        Raises:
            DeploymentInProgress: the project already has a queued or
                running deployment, here or in the store
        """
        async with self._admission:
            existing = self._by_project.get(project_id)
            if existing is not None:
                raise DeploymentInProgress(project_id, existing.deployment_id)

            active = await self.store.list_active_deployments(project_id)
            if active:
                raise DeploymentInProgress(project_id, active[0].id)

            deployment_id = await self.store.create_deployment(project_id)
            handle = DeploymentHandle(
                deployment_id=deployment_id,
                project_id=project_id,
                future=asyncio.get_running_loop().create_future(),
            )
            self._handles[deployment_id] = handle
            self._by_project[project_id] = handle
            self._queue.put_nowait(handle)

        logger.info(
            "deployment_queued",
            deployment_id=deployment_id,
            project_id=project_id,
            queue_size=self._queue.qsize(),
        )
        return handle

    def get(self, deployment_id: str) -> DeploymentHandle | None:
        return self._handles.get(deployment_id)

    def active_deployment_ids(self) -> set[str]:
        """Deployments queued or running in this process."""
        return set(self._handles)

    async def wait(self, deployment_id: str) -> DeploymentResult:
        handle = self._handles.get(deployment_id)
        if handle is None:
            raise KeyError(deployment_id)
        return await asyncio.shield(handle.future)

    async def cancel(self, deployment_id: str, message: str = CANCELLED_BY_USER) -> bool:
        """Cancel a deployment whether it is queued, running or only in the store.

        Returns False when the deployment is unknown or already terminal.
        """
        handle = self._handles.get(deployment_id)
        if handle is not None:
            return await self._cancel_handle(handle, message)
        return await self.store.cancel_deployment(deployment_id, message)

    async def _cancel_handle(self, handle: DeploymentHandle, message: str) -> bool:
        # Terminal status first so a late pipeline transition cannot undo it
        try:
            accepted = await self.store.cancel_deployment(handle.deployment_id, message)
        except Exception as e:
            logger.error("deployment_cancel_write_failed", deployment_id=handle.deployment_id, error=str(e))
            accepted = False
        handle.cancel_event.request(message)
        logger.info(
            "deployment_cancel_requested",
            deployment_id=handle.deployment_id,
            started=handle.started,
            accepted=accepted,
        )
        return accepted

    async def _worker(self, index: int) -> None:
        logger.debug("deployment_worker_started", worker=index)
        while True:
            handle = await self._queue.get()
            try:
                await self._run(handle)
            finally:
                self._queue.task_done()

    async def _run(self, handle: DeploymentHandle) -> None:
        try:
            if handle.cancel_event.is_set():
                logger.info("deployment_skipped_cancelled", deployment_id=handle.deployment_id)
                result = DeploymentResult(
                    success=False,
                    deployment_id=handle.deployment_id,
                    status=DeploymentStatus.CANCELLED,
                    error=handle.cancel_event.reason or "Deployment cancelled before it started",
                )
            else:
                handle.started = True
                result = await self.orchestrator.deploy_project(
                    handle.project_id,
                    deployment_id=handle.deployment_id,
                    cancel_event=handle.cancel_event,
                )
            if not handle.future.done():
                handle.future.set_result(result)
        except asyncio.CancelledError:
            handle.future.cancel()
            raise
        except Exception as e:
            logger.exception("deployment_worker_error", deployment_id=handle.deployment_id, error=str(e))
            if not handle.future.done():
                handle.future.set_exception(e)
        finally:
            self._handles.pop(handle.deployment_id, None)
            if self._by_project.get(handle.project_id) is handle:
                del self._by_project[handle.project_id]
