from pathlib import Path

import pytest

from shared.schemas.deployment import Project

from .factories import TOKEN, USER_ID, make_project
from .fakes import InMemoryStateStore


@pytest.fixture
def project() -> Project:
    return make_project()


@pytest.fixture
def store(project) -> InMemoryStateStore:
    return InMemoryStateStore(projects=[project], tokens={USER_ID: TOKEN})


@pytest.fixture
def roots(tmp_path) -> dict[str, Path]:
    """Workspace, artifact, public and nginx directories under tmp_path."""
    paths = {
        name: tmp_path / name
        for name in ("workspaces", "builds", "public", "sites-available", "sites-enabled")
    }
    for path in paths.values():
        path.mkdir()
    return paths
