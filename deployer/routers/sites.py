"""Direct serving of published sites.

Sites are reachable as ``/project/{project_id}/...`` and, for hosts under
the platform domain, by ``Host`` header. Unknown paths fall back to the
site's ``index.html`` so client-side routers keep working. This is what
keeps a site reachable when its nginx vhost could not be configured.
"""

import html
from pathlib import Path, PurePosixPath

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse, Response
import structlog

from ..builder import METADATA_FILENAME
from ..dependencies import get_domain_suffix, get_public_root, get_store
from ..errors import WorkspaceError
from ..paths import safe_join
from ..publisher import ENTRY_FILENAME
from ..store import DeploymentStateStore

logger = structlog.get_logger()

router = APIRouter(tags=["sites"])

NOT_FOUND_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>{title} - MadaHost</title>
</head>
<body>
  <h1>{title}</h1>
  <p>{message}</p>
</body>
</html>
"""


def render_not_found(title: str, message: str) -> HTMLResponse:
    content = NOT_FOUND_TEMPLATE.format(title=html.escape(title), message=html.escape(message))
    return HTMLResponse(content, status_code=status.HTTP_404_NOT_FOUND)


def resolve_site_file(site_root: Path, file_path: str) -> Path | None:
    """Map a request path to a file of the site, or None.

    Raises:
        WorkspaceError: the path escapes ``site_root`` or names the
            deployment metadata file
    """
    name = file_path.strip("/") or ENTRY_FILENAME
    if METADATA_FILENAME in PurePosixPath(name).parts:
        raise WorkspaceError(f"Refusing to serve {METADATA_FILENAME}")
    candidate = safe_join(site_root, name)
    if candidate.is_dir():
        candidate = candidate / ENTRY_FILENAME
    if candidate.is_file():
        return candidate
    entry = site_root / ENTRY_FILENAME
    return entry if entry.is_file() else None


def serve_project_file(public_root: Path, project_id: str, file_path: str) -> Response:
    try:
        site_root = safe_join(public_root, project_id)
        path = resolve_site_file(site_root, file_path)
    except WorkspaceError as e:
        logger.warning("site_path_rejected", project_id=project_id, path=file_path, error=str(e))
        return render_not_found("Not found", "The requested file does not exist.")
    if path is None:
        return render_not_found(
            "Site under construction",
            f"Project {project_id} has not been deployed yet or has no files.",
        )
    return FileResponse(path)


@router.get("/project/{project_id}", include_in_schema=False)
@router.get("/project/{project_id}/{file_path:path}", include_in_schema=False)
async def serve_by_path(
    project_id: str,
    file_path: str = "",
    public_root: Path = Depends(get_public_root),
) -> Response:
    """Serve a published site by project id."""
    return serve_project_file(public_root, project_id, file_path)


@router.get("/{file_path:path}", include_in_schema=False)
async def serve_by_host(
    request: Request,
    file_path: str,
    public_root: Path = Depends(get_public_root),
    domain_suffix: str = Depends(get_domain_suffix),
    store: DeploymentStateStore = Depends(get_store),
) -> Response:
    """Serve the site whose domain matches the request's Host header."""
    host = (request.headers.get("host") or "").split(":", 1)[0].lower().rstrip(".")
    suffix = f".{domain_suffix.strip('.').lower()}"
    if not host.endswith(suffix) or host == suffix[1:]:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"detail": "Site not found", "host": host},
        )

    project = await store.get_project_by_domain(host)
    if project is None:
        return render_not_found("Site not found", f"{host} does not match any deployed project.")
    return serve_project_file(public_root, project.id, file_path)
