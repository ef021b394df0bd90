"""Persistence facade used by the deploy pipeline.

``DeploymentStateStore`` and ``CredentialSource`` are the only contracts the
pipeline depends on; ``SupabaseStateStore`` implements both over the
PostgREST API of the hosted database.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Protocol

import structlog

from shared.clients.supabase import SupabaseClient, eq, in_, lt
from shared.schemas.deployment import (
    ACTIVE_STATUSES,
    Deployment,
    DeploymentStatus,
    Project,
)

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(UTC)


class DeploymentStateStore(Protocol):
    """Deployment and project persistence."""

    async def create_deployment(self, project_id: str) -> str: ...

    async def update_deployment_status(
        self,
        deployment_id: str,
        status: DeploymentStatus,
        build_log: str | None = None,
        deploy_log: str | None = None,
    ) -> bool:
        """Overwrite status (and logs when given).

        Returns False when the deployment is already terminal; a terminal
        status is never overwritten. ``completed_at`` is stamped exactly
        when a terminal status is written.
        """
        ...

    async def update_deployment_logs(
        self, deployment_id: str, build_log: str | None = None, deploy_log: str | None = None
    ) -> None: ...

    async def set_commit_hash(self, deployment_id: str, commit_hash: str) -> None: ...

    async def get_deployment(self, deployment_id: str) -> Deployment | None: ...

    async def get_project(self, project_id: str) -> Project | None: ...

    async def get_project_by_domain(self, domain: str) -> Project | None: ...

    async def update_project(self, project_id: str, fields: dict[str, Any]) -> None: ...

    async def list_active_deployments(self, project_id: str | None = None) -> list[Deployment]: ...

    async def list_deployments(self, project_id: str, limit: int = 20) -> list[Deployment]:
        """Most recent deployments of a project, newest first."""
        ...

    async def list_stale_deployments(self, started_before: datetime) -> list[Deployment]: ...

    async def cancel_deployment(self, deployment_id: str, message: str) -> bool:
        """Mark a non-terminal deployment cancelled, appending ``message`` to its build log."""
        ...


class CredentialSource(Protocol):
    """Per-user source-hosting access tokens."""

    async def get_access_token(self, user_id: str) -> str | None: ...


class SupabaseStateStore:
    """DeploymentStateStore + CredentialSource over Supabase tables.

    Tables: ``projects``, ``deployments``, ``users`` (``access_token``).
    """

    def __init__(self, client: SupabaseClient):
        self.client = client

    async def create_deployment(self, project_id: str) -> str:
        row = await self.client.insert(
            "deployments",
            {
                "project_id": project_id,
                "status": DeploymentStatus.PENDING.value,
                "started_at": utcnow().isoformat(),
            },
        )
        deployment_id = str(row["id"])
        logger.info("deployment_created", deployment_id=deployment_id, project_id=project_id)
        return deployment_id

    async def update_deployment_status(
        self,
        deployment_id: str,
        status: DeploymentStatus,
        build_log: str | None = None,
        deploy_log: str | None = None,
    ) -> bool:
        values: dict[str, Any] = {"status": status.value}
        if build_log is not None:
            values["build_log"] = build_log
        if deploy_log is not None:
            values["deploy_log"] = deploy_log
        if status.is_terminal:
            values["completed_at"] = utcnow().isoformat()

        rows = await self.client.update(
            "deployments",
            values,
            filters={
                "id": eq(deployment_id),
                "status": in_(s.value for s in ACTIVE_STATUSES),
            },
        )
        if not rows:
            logger.warning(
                "deployment_status_not_updated",
                deployment_id=deployment_id,
                status=status.value,
                reason="missing_or_terminal",
            )
            return False
        logger.info("deployment_status_updated", deployment_id=deployment_id, status=status.value)
        return True

    async def update_deployment_logs(
        self, deployment_id: str, build_log: str | None = None, deploy_log: str | None = None
    ) -> None:
        values = {}
        if build_log is not None:
            values["build_log"] = build_log
        if deploy_log is not None:
            values["deploy_log"] = deploy_log
        if values:
            await self.client.update("deployments", values, filters={"id": eq(deployment_id)})

    async def set_commit_hash(self, deployment_id: str, commit_hash: str) -> None:
        await self.client.update(
            "deployments", {"commit_hash": commit_hash}, filters={"id": eq(deployment_id)}
        )

    async def get_deployment(self, deployment_id: str) -> Deployment | None:
        row = await self.client.select_one("deployments", filters={"id": eq(deployment_id)})
        return Deployment.model_validate(row) if row else None

    async def get_project(self, project_id: str) -> Project | None:
        row = await self.client.select_one("projects", filters={"id": eq(project_id)})
        return Project.model_validate(row) if row else None

    async def get_project_by_domain(self, domain: str) -> Project | None:
        row = await self.client.select_one("projects", filters={"domain": eq(domain)})
        return Project.model_validate(row) if row else None

    async def update_project(self, project_id: str, fields: dict[str, Any]) -> None:
        values = {
            key: value.isoformat() if isinstance(value, datetime) else getattr(value, "value", value)
            for key, value in fields.items()
        }
        values.setdefault("updated_at", utcnow().isoformat())
        await self.client.update("projects", values, filters={"id": eq(project_id)})

    async def list_active_deployments(self, project_id: str | None = None) -> list[Deployment]:
        filters = {"status": in_(s.value for s in ACTIVE_STATUSES)}
        if project_id is not None:
            filters["project_id"] = eq(project_id)
        rows = await self.client.select("deployments", filters=filters, order="started_at.desc")
        return [Deployment.model_validate(row) for row in rows]

    async def list_deployments(self, project_id: str, limit: int = 20) -> list[Deployment]:
        rows = await self.client.select(
            "deployments",
            filters={"project_id": eq(project_id)},
            order="started_at.desc",
            limit=limit,
        )
        return [Deployment.model_validate(row) for row in rows]

    async def list_stale_deployments(self, started_before: datetime) -> list[Deployment]:
        rows = await self.client.select(
            "deployments",
            filters={
                "status": in_(s.value for s in ACTIVE_STATUSES),
                "started_at": lt(started_before.isoformat()),
            },
            order="started_at.asc",
        )
        return [Deployment.model_validate(row) for row in rows]

    async def cancel_deployment(self, deployment_id: str, message: str) -> bool:
        deployment = await self.get_deployment(deployment_id)
        if deployment is None or deployment.status.is_terminal:
            return False
        build_log = f"{deployment.build_log or ''}{message}\n"
        return await self.update_deployment_status(
            deployment_id, DeploymentStatus.CANCELLED, build_log=build_log
        )

    async def get_access_token(self, user_id: str) -> str | None:
        row = await self.client.select_one(
            "users", columns="access_token", filters={"id": eq(user_id)}
        )
        if not row:
            return None
        return row.get("access_token") or None
