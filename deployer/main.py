"""Deployer service: FastAPI surface over the deployment queue."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import structlog

from shared.clients.supabase import StoreError, SupabaseClient
from shared.logging import setup_logging

from . import routers
from .builder import Builder
from .config import Settings, get_settings
from .fetcher import RepositoryFetcher
from .orchestrator import DeploymentOrchestrator
from .publisher import Publisher
from .queue import DeploymentQueue
from .reconciler import reconcile_stuck_deployments
from .runner import CommandRunner
from .store import SupabaseStateStore

logger = structlog.get_logger()


async def run_periodic_task(coro_func, interval: float, name: str):
    """Run a periodic task in an infinite loop."""
    logger.info("periodic_task_started", task=name, interval=interval)
    while True:
        try:
            await coro_func()
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.error("periodic_task_error", task=name, error=str(e))

        try:
            await asyncio.sleep(interval)
        except asyncio.CancelledError:
            break
    logger.info("periodic_task_stopped", task=name)


def build_queue(settings: Settings, store: SupabaseStateStore) -> DeploymentQueue:
    """Wire runner -> fetcher/builder/publisher -> orchestrator -> queue."""
    runner = CommandRunner(default_timeout=settings.command_timeout_seconds)
    fetcher = RepositoryFetcher(
        runner,
        credentials=store,
        store=store,
        git_host=settings.git_host,
        timeout=settings.clone_timeout_seconds,
    )
    builder = Builder(
        runner,
        artifact_root=settings.artifact_root,
        domain_suffix=settings.domain_suffix,
        timeout=settings.command_timeout_seconds,
    )
    publisher = Publisher(
        store,
        runner,
        public_root=settings.public_root,
        domain_suffix=settings.domain_suffix,
        live=settings.is_live,
        sites_available=settings.nginx_sites_available,
        sites_enabled=settings.nginx_sites_enabled,
        test_command=settings.nginx_test_command,
        reload_command=settings.nginx_reload_command,
    )
    orchestrator = DeploymentOrchestrator(
        store,
        fetcher,
        builder,
        publisher,
        workspace_root=settings.workspace_root,
        log_flush_interval=settings.log_flush_interval_seconds,
    )
    return DeploymentQueue(orchestrator, store, max_workers=settings.max_concurrent_builds)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    settings = get_settings()
    setup_logging(
        service_name=settings.service_name,
        log_format=settings.log_format,
        log_level=settings.log_level,
    )
    if not settings.supabase_url or not settings.supabase_service_key:
        raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")

    client = SupabaseClient(settings.supabase_url, settings.supabase_service_key)
    store = SupabaseStateStore(client)
    queue = build_queue(settings, store)
    app.state.store = store
    app.state.queue = queue
    app.state.public_root = settings.public_root
    app.state.domain_suffix = settings.domain_suffix
    queue.start()

    reconcile_task = asyncio.create_task(
        run_periodic_task(
            lambda: reconcile_stuck_deployments(
                store,
                settings.stuck_deployment_threshold_seconds,
                skip=queue.active_deployment_ids(),
            ),
            interval=settings.reconcile_interval_seconds,
            name="reconcile_stuck_deployments",
        )
    )
    logger.info(
        "deployer_started",
        environment=settings.environment,
        workers=settings.max_concurrent_builds,
        public_root=str(settings.public_root),
    )

    yield

    # Shutdown
    logger.info("shutdown_initiated")
    reconcile_task.cancel()
    await asyncio.gather(reconcile_task, return_exceptions=True)
    await queue.stop()
    await client.close()
    logger.info("shutdown_complete")


def create_app(with_lifespan: bool = True) -> FastAPI:
    app = FastAPI(
        title="MadaHost Deployer",
        description="Build and deploy static sites from GitHub repositories",
        version="0.1.0",
        lifespan=lifespan if with_lifespan else None,
    )

    @app.middleware("http")
    async def correlation_middleware(request: Request, call_next):
        correlation_id = request.headers.get("X-Correlation-ID", f"req_{uuid.uuid4().hex[:8]}")
        structlog.contextvars.bind_contextvars(
            correlation_id=correlation_id, method=request.method, path=request.url.path
        )
        start = time.time()
        try:
            response = await call_next(request)
            logger.info(
                "http_request",
                status_code=response.status_code,
                duration_ms=round((time.time() - start) * 1000, 2),
            )
            return response
        finally:
            structlog.contextvars.clear_contextvars()

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
        logger.error("store_unavailable", error=str(exc), status_code=exc.status_code)
        return JSONResponse(status_code=503, content={"detail": "Deployment store unavailable"})

    app.include_router(routers.health.router)
    app.include_router(routers.deployments.router)
    # Catch-all host routing; must stay last
    app.include_router(routers.sites.router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)  # noqa: S104
