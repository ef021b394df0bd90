"""Shared Pydantic schemas for MadaHost services.

Usage:
    from shared.schemas import Project, Deployment, DeploymentStatus
"""

from .deployment import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    Deployment,
    DeploymentResult,
    DeploymentStatus,
    Project,
    ProjectStatus,
)

__all__ = [
    "Project",
    "ProjectStatus",
    "Deployment",
    "DeploymentStatus",
    "DeploymentResult",
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
]
