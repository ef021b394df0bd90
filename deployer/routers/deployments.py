"""Deployment trigger, status and cancellation endpoints.

Callers are the trusted request layer; ownership checks happen there.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
import structlog

from shared.schemas.deployment import Deployment, DeploymentStatus

from ..dependencies import get_queue, get_store
from ..errors import DeploymentInProgress
from ..queue import DeploymentQueue
from ..store import DeploymentStateStore

logger = structlog.get_logger()

router = APIRouter(prefix="/api", tags=["deployments"])


class DeploymentAccepted(BaseModel):
    deployment_id: str
    project_id: str
    status: DeploymentStatus


@router.post(
    "/projects/{project_id}/deploy",
    response_model=DeploymentAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
async def trigger_deployment(
    project_id: str,
    store: DeploymentStateStore = Depends(get_store),
    queue: DeploymentQueue = Depends(get_queue),
) -> DeploymentAccepted:
    """Queue a deployment of the project's configured branch."""
    project = await store.get_project(project_id)
    if project is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")

    try:
        handle = await queue.submit(project_id)
    except DeploymentInProgress as e:
        logger.warning("deployment_rejected_in_progress", project_id=project_id, deployment_id=e.deployment_id)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": str(e), "deployment_id": e.deployment_id},
        ) from e

    return DeploymentAccepted(
        deployment_id=handle.deployment_id,
        project_id=project_id,
        status=DeploymentStatus.PENDING,
    )


@router.get("/projects/{project_id}/deployments", response_model=list[Deployment])
async def list_project_deployments(
    project_id: str,
    limit: int = Query(default=20, ge=1, le=100),
    store: DeploymentStateStore = Depends(get_store),
) -> list[Deployment]:
    """Deployment history of a project, newest first."""
    project = await store.get_project(project_id)
    if project is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    return await store.list_deployments(project_id, limit=limit)


@router.get("/deployments/{deployment_id}", response_model=Deployment)
async def get_deployment(
    deployment_id: str,
    store: DeploymentStateStore = Depends(get_store),
) -> Deployment:
    """Get deployment status and logs."""
    deployment = await store.get_deployment(deployment_id)
    if deployment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Deployment not found")
    return deployment


@router.post("/deployments/{deployment_id}/cancel", response_model=Deployment)
async def cancel_deployment(
    deployment_id: str,
    store: DeploymentStateStore = Depends(get_store),
    queue: DeploymentQueue = Depends(get_queue),
) -> Deployment:
    """Cancel a queued or running deployment."""
    deployment = await store.get_deployment(deployment_id)
    if deployment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Deployment not found")
    if deployment.status.is_terminal:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Deployment already {deployment.status.value}",
        )

    if not await queue.cancel(deployment_id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Deployment already finished")

    logger.info("deployment_cancelled_via_api", deployment_id=deployment_id)
    return await store.get_deployment(deployment_id) or deployment
