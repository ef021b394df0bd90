from .config import get_logger, scrub_url_credentials, setup_logging
from .correlation import (
    bind_deployment_context,
    clear_context,
    get_deployment_id,
    unbind_deployment_context,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "scrub_url_credentials",
    "bind_deployment_context",
    "unbind_deployment_context",
    "get_deployment_id",
    "clear_context",
]
