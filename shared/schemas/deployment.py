"""Pydantic schemas for projects and deployments.

These mirror the ``projects`` and ``deployments`` tables of the hosted
Postgres store. Rows are validated on read so the pipeline never touches
raw dicts.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DeploymentStatus(str, Enum):
    """Deployment lifecycle.

    pending -> cloning -> building -> deploying -> configuring -> success,
    with failed/cancelled reachable from any non-terminal status.
    """

    PENDING = "pending"
    CLONING = "cloning"
    BUILDING = "building"
    DEPLOYING = "deploying"
    CONFIGURING = "configuring"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {DeploymentStatus.SUCCESS, DeploymentStatus.FAILED, DeploymentStatus.CANCELLED}
)
ACTIVE_STATUSES = tuple(s for s in DeploymentStatus if s not in TERMINAL_STATUSES)


class ProjectStatus(str, Enum):
    """Project lifecycle status."""

    CREATED = "created"
    ACTIVE = "active"
    INACTIVE = "inactive"
    BUILDING = "building"
    ERROR = "error"


class Project(BaseModel):
    """A user's GitHub repository connected for static hosting."""

    model_config = ConfigDict(extra="ignore")

    id: str
    user_id: str
    name: str
    github_repo: str = Field(..., description="Source repository as 'owner/repo'")
    branch: str = "main"

    install_command: str | None = None
    build_command: str | None = None
    output_dir: str | None = None
    env_vars: dict[str, str] = Field(default_factory=dict)

    framework: str | None = None
    domain: str | None = None
    auto_deploy: bool = True
    status: ProjectStatus = ProjectStatus.CREATED

    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_deployed: datetime | None = None

    @field_validator("id", "user_id", mode="before")
    @classmethod
    def coerce_identifier(cls, v: Any) -> Any:
        # PostgREST returns integer ids for serial columns
        return str(v) if isinstance(v, int) else v

    @field_validator("branch", mode="before")
    @classmethod
    def default_branch(cls, v: Any) -> Any:
        return v or "main"

    @field_validator("env_vars", mode="before")
    @classmethod
    def normalize_env_vars(cls, v: Any) -> dict[str, str]:
        """Accept a JSON string, a mapping, or a list of key/value entries."""
        if v is None or v == "":
            return {}
        if isinstance(v, str):
            v = json.loads(v)
        if isinstance(v, dict):
            return {str(k): str(val) for k, val in v.items()}
        env: dict[str, str] = {}
        for entry in v:
            key = entry.get("key") or entry.get("name")
            if key:
                env[str(key)] = str(entry.get("value", ""))
        return env


class Deployment(BaseModel):
    """One attempt to build and publish a project."""

    model_config = ConfigDict(extra="ignore")

    id: str
    project_id: str
    status: DeploymentStatus = DeploymentStatus.PENDING
    commit_hash: str | None = None
    build_log: str | None = None
    deploy_log: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @field_validator("id", "project_id", mode="before")
    @classmethod
    def coerce_identifier(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v


class DeploymentResult(BaseModel):
    """Outcome of DeploymentOrchestrator.deploy_project()."""

    success: bool
    deployment_id: str | None = None
    status: DeploymentStatus
    url: str | None = None
    error: str | None = None
