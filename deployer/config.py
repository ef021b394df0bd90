"""Deployer service configuration.

Requires: SUPABASE_URL, SUPABASE_SERVICE_KEY (HTTP state store)
Optional: everything else has defaults suitable for a single host
"""

from functools import lru_cache
import os
from pathlib import Path
from typing import Literal

from pydantic import Field

from shared.config import BaseSettings, supabase_key_field, supabase_url_field


class Settings(BaseSettings):
    """Deployer settings."""

    service_name: str = "deployer"

    supabase_url: str | None = supabase_url_field(required=False)
    supabase_service_key: str = supabase_key_field(required=False)

    # Filesystem layout
    workspace_root: Path = Field(default=Path("/var/lib/madahost/workspaces"))
    artifact_root: Path = Field(default=Path("/var/lib/madahost/builds"))
    public_root: Path = Field(default=Path("/var/www/deployed"))

    domain_suffix: str = "madahost.dev"
    git_host: str = "github.com"

    # Reverse proxy; only touched when environment == "production"
    environment: Literal["development", "staging", "production"] = "development"
    nginx_sites_available: Path = Path("/etc/nginx/sites-available")
    nginx_sites_enabled: Path = Path("/etc/nginx/sites-enabled")
    nginx_test_command: str = "nginx -t"
    nginx_reload_command: str = "nginx -s reload"

    # Timeouts
    command_timeout_seconds: float = Field(default=600, gt=0)
    clone_timeout_seconds: float = Field(default=300, gt=0)

    # Worker pool
    max_concurrent_builds: int = Field(default_factory=lambda: os.cpu_count() or 1, ge=1)

    # Reconciliation of deployments stuck in a non-terminal status
    stuck_deployment_threshold_seconds: int = Field(default=3600, ge=60)
    reconcile_interval_seconds: int = Field(default=300, ge=1)

    # Minimum delay between log writes while command output streams
    log_flush_interval_seconds: float = Field(default=2.0, ge=0)

    @property
    def is_live(self) -> bool:
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
