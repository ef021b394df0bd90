"""Health check router."""

from fastapi import APIRouter, Depends

from ..dependencies import get_queue
from ..queue import DeploymentQueue

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(queue: DeploymentQueue = Depends(get_queue)) -> dict:
    """Health check endpoint."""
    return {
        "status": "ok",
        "workers": queue.max_workers,
        "active_deployments": len(queue.active_deployment_ids()),
    }
