"""Shallow, single-branch clone of a project's repository."""

from __future__ import annotations

import asyncio
from pathlib import Path
import re
import shutil

import structlog

from shared.schemas.deployment import Project

from .errors import (
    CloneFailed,
    CommandFailed,
    DeploymentCancelled,
    MissingCredentials,
    WorkspaceError,
)
from .runner import CommandRunner, OutputObserver
from .store import CredentialSource, DeploymentStateStore

logger = structlog.get_logger(__name__)

_REPO_COORDINATE = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")
_BRANCH_NAME = re.compile(r"^[A-Za-z0-9._/-]+$")


def build_clone_url(token: str, github_repo: str, host: str = "github.com") -> str:
    """``https://<token>@<host>/<owner>/<repo>.git``"""
    repo = github_repo.removesuffix(".git")
    return f"https://{token}@{host}/{repo}.git"


class RepositoryFetcher:
    """Clones repositories with the owning user's OAuth token."""

    def __init__(
        self,
        runner: CommandRunner,
        credentials: CredentialSource,
        store: DeploymentStateStore,
        git_host: str = "github.com",
        timeout: float = 300.0,
    ):
        self.runner = runner
        self.credentials = credentials
        self.store = store
        self.git_host = git_host
        self.timeout = timeout

    def clone_url(self, token: str, project: Project) -> str:
        return build_clone_url(token, project.github_repo, self.git_host)

    async def clone(
        self,
        project: Project,
        deployment_id: str,
        destination: Path,
        on_output: OutputObserver | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> str:
        """Clone ``project.branch`` into ``destination`` and return the commit hash.

        The hash is persisted on the deployment before returning.

        Raises:
            MissingCredentials: the owner has no stored access token
            WorkspaceError: ``destination`` cannot be prepared
            CloneFailed: git failed (bad branch, network, auth rejected)
        """
        if not _REPO_COORDINATE.match(project.github_repo) or any(
            part in {".", ".."} for part in project.github_repo.split("/")
        ):
            raise CloneFailed(f"Invalid repository coordinate: {project.github_repo!r}")
        if not _BRANCH_NAME.match(project.branch) or project.branch.startswith("-"):
            raise CloneFailed(f"Invalid branch name: {project.branch!r}")

        token = await self.credentials.get_access_token(project.user_id)
        if not token:
            raise MissingCredentials(project.user_id)

        def redact(text: str) -> str:
            return text.replace(token, "***")

        await asyncio.to_thread(self._prepare_destination, destination)

        logger.info(
            "clone_started",
            repo=project.github_repo,
            branch=project.branch,
            destination=str(destination),
        )
        clone_cmd = (
            f"git clone --depth 1 --single-branch --branch '{project.branch}' "
            f"'{self.clone_url(token, project)}' '{destination}'"
        )
        try:
            await self.runner.execute(
                clone_cmd,
                cwd=destination.parent,
                env={"GIT_TERMINAL_PROMPT": "0"},
                timeout=self.timeout,
                on_output=on_output,
                cancel_event=cancel_event,
                redact=redact,
            )
            result = await self.runner.execute(
                "git rev-parse HEAD",
                cwd=destination,
                timeout=30,
                cancel_event=cancel_event,
                redact=redact,
            )
        except DeploymentCancelled:
            raise
        except CommandFailed as e:
            raise CloneFailed(f"Unable to clone {project.github_repo}@{project.branch}: {redact(str(e))}") from None

        commit_hash = result.stdout.strip()
        await self.store.set_commit_hash(deployment_id, commit_hash)
        logger.info("clone_completed", repo=project.github_repo, commit=commit_hash[:8])
        return commit_hash

    @staticmethod
    def _prepare_destination(destination: Path) -> None:
        try:
            if destination.exists():
                shutil.rmtree(destination)
            destination.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise WorkspaceError(f"Cannot prepare workspace {destination}: {e}") from e
