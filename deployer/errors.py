"""Deployment error taxonomy.

Every fatal error carries the pipeline stage it happened in so the
orchestrator can report it uniformly. ``ProxyConfigFailed`` is the only
non-fatal member: the Publisher downgrades it to a warning.
"""


class DeploymentError(Exception):
    """Base class for pipeline failures."""

    stage = "deploy"


class ProjectNotFound(DeploymentError):
    stage = "pending"

    def __init__(self, project_id: str):
        super().__init__(f"Project not found: {project_id}")
        self.project_id = project_id


class MissingCredentials(DeploymentError):
    stage = "cloning"

    def __init__(self, user_id: str):
        super().__init__(f"No GitHub access token stored for user {user_id}")
        self.user_id = user_id


class WorkspaceError(DeploymentError):
    stage = "cloning"


class CloneFailed(DeploymentError):
    stage = "cloning"


class InstallFailed(DeploymentError):
    stage = "building"


class BuildFailed(DeploymentError):
    stage = "building"


class StagingFailed(DeploymentError):
    stage = "building"


class PublishFailed(DeploymentError):
    stage = "deploying"


class ProxyConfigFailed(DeploymentError):
    stage = "configuring"


class DeploymentCancelled(DeploymentError):
    """Raised when a cancellation request interrupts the pipeline."""

    stage = "cancelled"


class DeploymentInProgress(Exception):
    """A project already has a queued or running deployment."""

    def __init__(self, project_id: str, deployment_id: str | None = None):
        super().__init__(f"A deployment is already in progress for project {project_id}")
        self.project_id = project_id
        self.deployment_id = deployment_id


class CommandFailed(Exception):
    """An external command exited with a non-zero status."""

    def __init__(self, command: str, exit_code: int | None, stdout: str, stderr: str):
        detail = (stderr or stdout).strip()
        message = f"Command failed with code {exit_code}: {command}"
        if detail:
            message = f"{message}\n{detail[-4000:]}"
        super().__init__(message)
        self.command = command
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr


class CommandTimeout(CommandFailed):
    """An external command did not exit before its timeout."""

    def __init__(self, command: str, timeout: float, stdout: str, stderr: str):
        super().__init__(command, None, stdout, stderr)
        self.args = (f"Command timed out after {timeout:g}s: {command}",)
        self.timeout = timeout
