"""Publishing built artifacts to the served directory and nginx.

``publish`` is fatal on failure; ``configure_proxy`` never raises: a broken
vhost only costs the pretty domain, the site stays reachable by path.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
import html
from pathlib import Path

import structlog

from shared.schemas.deployment import Project, ProjectStatus

from .builder import METADATA_FILENAME
from .errors import CommandFailed, ProxyConfigFailed, PublishFailed, WorkspaceError
from .fs import copy_tree, reset_directory
from .paths import derive_domain, safe_join, slugify
from .runner import CommandRunner
from .store import DeploymentStateStore

logger = structlog.get_logger(__name__)

ENTRY_FILENAME = "index.html"

PLACEHOLDER_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>{name} - MadaHost</title>
</head>
<body>
  <h1>{name}</h1>
  <p>Site deployed successfully on MadaHost.</p>
  <p>Framework: {framework}</p>
</body>
</html>
"""

VHOST_TEMPLATE = """server {{
    listen 80;
    listen [::]:80;
    server_name {domain};

    root {root};
    index index.html;

    location = /{metadata} {{
        deny all;
    }}

    location / {{
        try_files $uri $uri/ /index.html;
    }}
}}
"""


def render_placeholder(project: Project) -> str:
    return PLACEHOLDER_TEMPLATE.format(
        name=html.escape(project.name),
        framework=html.escape(project.framework or "Not specified"),
    )


def render_vhost(domain: str, root: Path) -> str:
    return VHOST_TEMPLATE.format(domain=domain, root=root, metadata=METADATA_FILENAME)


class Publisher:
    """Copies artifacts into ``<public_root>/<project_id>`` and wires nginx."""

    def __init__(
        self,
        store: DeploymentStateStore,
        runner: CommandRunner,
        public_root: Path,
        domain_suffix: str,
        live: bool = False,
        sites_available: Path = Path("/etc/nginx/sites-available"),
        sites_enabled: Path = Path("/etc/nginx/sites-enabled"),
        test_command: str = "nginx -t",
        reload_command: str = "nginx -s reload",
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.store = store
        self.runner = runner
        self.public_root = Path(public_root)
        self.domain_suffix = domain_suffix
        self.live = live
        self.sites_available = Path(sites_available)
        self.sites_enabled = Path(sites_enabled)
        self.test_command = test_command
        self.reload_command = reload_command
        self.clock = clock

    def public_path(self, project: Project) -> Path:
        return safe_join(self.public_root, project.id)

    async def publish(self, project: Project, artifact: Path) -> str:
        """Replace the served tree with ``artifact`` and activate the project.

        Assigns the project's domain if it has none. Returns the public URL.

        Raises:
            PublishFailed: the served directory could not be repopulated
        """
        try:
            target = self.public_path(project)
        except WorkspaceError as e:
            raise PublishFailed(str(e)) from e

        logger.info("publish_started", target=str(target))
        try:
            await asyncio.to_thread(self._replace_tree, artifact, target, project)
        except OSError as e:
            raise PublishFailed(f"Unable to publish files to {target}: {e}") from e

        domain = project.domain or derive_domain(project.name, project.id, self.domain_suffix)
        fields = {
            "status": ProjectStatus.ACTIVE,
            "last_deployed": self.clock(),
        }
        if not project.domain:
            fields["domain"] = domain
        await self.store.update_project(project.id, fields)
        project.domain = domain

        url = f"https://{domain}"
        logger.info("publish_completed", url=url)
        return url

    def _replace_tree(self, artifact: Path, target: Path, project: Project) -> None:
        if not artifact.is_dir():
            raise FileNotFoundError(f"artifact directory missing: {artifact}")
        reset_directory(target)
        copy_tree(artifact, target, exclude={METADATA_FILENAME})
        entry = target / ENTRY_FILENAME
        if not entry.exists():
            logger.info("placeholder_index_created", target=str(target))
            entry.write_text(render_placeholder(project), encoding="utf-8")

    def vhost_path(self, project: Project) -> Path:
        # Keyed by project id: names are only unique per user
        return safe_join(self.sites_available, f"{slugify(project.id)}.conf")

    async def configure_proxy(self, project: Project) -> str | None:
        """Write, enable, validate and reload the project's nginx vhost.

        Skipped outside production. Failures are logged and returned as a
        warning message instead of being raised.
        """
        if not self.live:
            logger.info("proxy_config_skipped", reason="not_live")
            return None
        if not project.domain:
            return "Reverse proxy not configured: project has no domain"

        try:
            await self._configure_proxy(project)
        except ProxyConfigFailed as e:
            logger.warning("proxy_config_failed", error=str(e))
            return f"Reverse proxy configuration failed: {e}"
        return None

    async def _configure_proxy(self, project: Project) -> None:
        try:
            conf = self.vhost_path(project)
            root = self.public_path(project)
            content = render_vhost(project.domain, root)
            await asyncio.to_thread(self._write_vhost, conf, content)
        except (OSError, WorkspaceError) as e:
            raise ProxyConfigFailed(f"cannot write vhost: {e}") from e

        try:
            await self.runner.execute(self.test_command, cwd=self.sites_available, timeout=60)
        except (CommandFailed, OSError) as e:
            # Never leave an invalid vhost enabled
            (self.sites_enabled / conf.name).unlink(missing_ok=True)
            raise ProxyConfigFailed(str(e)) from e
        try:
            await self.runner.execute(self.reload_command, cwd=self.sites_available, timeout=60)
        except (CommandFailed, OSError) as e:
            raise ProxyConfigFailed(str(e)) from e
        logger.info("proxy_configured", domain=project.domain, conf=str(conf))

    def _write_vhost(self, conf: Path, content: str) -> None:
        conf.parent.mkdir(parents=True, exist_ok=True)
        conf.write_text(content, encoding="utf-8")
        link = self.sites_enabled / conf.name
        self.sites_enabled.mkdir(parents=True, exist_ok=True)
        if link.is_symlink() or link.exists():
            link.unlink()
        link.symlink_to(conf)
