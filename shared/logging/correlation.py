import structlog


def bind_deployment_context(deployment_id: str, project_id: str | None = None) -> None:
    """Attach deployment identifiers to every log line of the current task."""
    context = {"deployment_id": deployment_id}
    if project_id is not None:
        context["project_id"] = project_id
    structlog.contextvars.bind_contextvars(**context)


def unbind_deployment_context() -> None:
    """Drop deployment identifiers bound by bind_deployment_context()."""
    structlog.contextvars.unbind_contextvars("deployment_id", "project_id")


def get_deployment_id() -> str | None:
    """Get the deployment ID bound to the current context."""
    return structlog.contextvars.get_contextvars().get("deployment_id")


def clear_context() -> None:
    """Clear all context variables."""
    structlog.contextvars.clear_contextvars()
