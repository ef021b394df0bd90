"""Force-fail deployments that never reached a terminal status.

A crashed or restarted service leaves its in-flight rows in ``cloning`` or
``building`` forever, which would also block new deploys of the project.
"""

from __future__ import annotations

from collections.abc import Collection
from datetime import datetime, timedelta

import structlog

from shared.schemas.deployment import DeploymentStatus

from .store import DeploymentStateStore, utcnow

logger = structlog.get_logger(__name__)


async def reconcile_stuck_deployments(
    store: DeploymentStateStore,
    threshold_seconds: float,
    now: datetime | None = None,
    skip: Collection[str] = (),
) -> list[str]:
    """Mark deployments older than ``threshold_seconds`` as failed.

    Deployments in ``skip`` (running in this process) are left alone.
    Returns the ids that were failed.
    """
    now = now or utcnow()
    cutoff = now - timedelta(seconds=threshold_seconds)
    stale = await store.list_stale_deployments(cutoff)

    failed: list[str] = []
    for deployment in stale:
        if deployment.id in skip:
            continue
        line = (
            f"ERROR: Deployment did not finish within {threshold_seconds:g}s "
            f"(last status: {deployment.status.value}); marked as failed\n"
        )
        accepted = await store.update_deployment_status(
            deployment.id,
            DeploymentStatus.FAILED,
            build_log=f"{deployment.build_log or ''}{line}",
        )
        if accepted:
            failed.append(deployment.id)
            logger.warning(
                "stuck_deployment_failed",
                deployment_id=deployment.id,
                project_id=deployment.project_id,
                last_status=deployment.status.value,
            )

    if failed:
        logger.info("stuck_deployments_reconciled", count=len(failed))
    return failed
