"""End-to-end deployments with real git, real shell and the in-memory store.

Repositories are created locally and cloned over ``file://``; everything
else (runner, builder, publisher, orchestrator, queue) is the production
code path.
"""

import asyncio
import json

import pytest

from deployer.builder import Builder
from deployer.fetcher import RepositoryFetcher
from deployer.orchestrator import DeploymentOrchestrator
from deployer.publisher import Publisher
from deployer.queue import DeploymentQueue
from deployer.runner import CommandRunner
from shared.schemas.deployment import DeploymentStatus, ProjectStatus

from ..factories import FIXED_NOW, PROJECT_ID, TOKEN, USER_ID, make_git_repo, make_project, requires_git
from ..fakes import InMemoryStateStore

pytestmark = [pytest.mark.component, requires_git]

S = DeploymentStatus


class LocalRepositoryFetcher(RepositoryFetcher):
    """Clones from a local directory tree laid out as ``<owner>/<repo>``."""

    def __init__(self, *args, repos_root, **kwargs):
        super().__init__(*args, **kwargs)
        self.repos_root = repos_root

    def clone_url(self, token, project):
        return f"file://{self.repos_root / project.github_repo}"


@pytest.fixture
def repos(tmp_path):
    path = tmp_path / "repos"
    path.mkdir()
    return path


def build_pipeline(store, roots, repos):
    runner = CommandRunner(default_timeout=60)
    fetcher = LocalRepositoryFetcher(runner, credentials=store, store=store, repos_root=repos, timeout=60)
    builder = Builder(runner, artifact_root=roots["builds"], domain_suffix="madahost.dev", clock=lambda: FIXED_NOW)
    publisher = Publisher(
        store,
        runner,
        public_root=roots["public"],
        domain_suffix="madahost.dev",
        live=False,
        sites_available=roots["sites-available"],
        sites_enabled=roots["sites-enabled"],
        clock=lambda: FIXED_NOW,
    )
    return DeploymentOrchestrator(
        store, fetcher, builder, publisher, workspace_root=roots["workspaces"], log_flush_interval=0
    )


@pytest.mark.asyncio
async def test_static_repository_deploys(store, roots, repos):
    """A repository with only index.html is published as-is."""
    commit = make_git_repo(repos / "acme" / "demo", {"index.html": "<h1>demo</h1>"})
    orchestrator = build_pipeline(store, roots, repos)

    result = await orchestrator.deploy_project(PROJECT_ID)

    assert result.success is True, store.deployments[result.deployment_id].build_log
    assert result.url == "https://demo-3f2a9c1e.madahost.dev"
    assert store.status_history[result.deployment_id] == [
        S.CLONING,
        S.BUILDING,
        S.DEPLOYING,
        S.CONFIGURING,
        S.SUCCESS,
    ]
    deployment = store.deployments[result.deployment_id]
    assert deployment.commit_hash == commit
    assert deployment.completed_at is not None

    public = roots["public"] / PROJECT_ID
    assert (public / "index.html").read_text() == "<h1>demo</h1>"
    assert not (public / ".deployment.json").exists()
    assert not (public / ".git").exists()

    project = store.projects[PROJECT_ID]
    assert project.framework is None
    assert project.status == ProjectStatus.ACTIVE
    assert project.domain == "demo-3f2a9c1e.madahost.dev"
    assert list(roots["workspaces"].iterdir()) == []


@pytest.mark.asyncio
async def test_missing_token_fails_at_cloning(roots, repos):
    make_git_repo(repos / "acme" / "demo", {"index.html": "x"})
    store = InMemoryStateStore(projects=[make_project()], tokens={})
    orchestrator = build_pipeline(store, roots, repos)

    result = await orchestrator.deploy_project(PROJECT_ID)

    assert result.status == S.FAILED
    assert store.status_history[result.deployment_id] == [S.CLONING, S.FAILED]
    deployment = store.deployments[result.deployment_id]
    assert f"No GitHub access token stored for user {USER_ID}" in deployment.build_log
    assert deployment.commit_hash is None
    assert store.projects[PROJECT_ID].status == ProjectStatus.ERROR


@pytest.mark.asyncio
async def test_failing_build_keeps_previous_site(roots, repos):
    make_git_repo(
        repos / "acme" / "demo",
        {"package.json": json.dumps({"dependencies": {"vite": "5.0.0"}}), "index.html": "new"},
    )
    project = make_project(install_command="", build_command="echo 'vite: build exploded' >&2; exit 3")
    store = InMemoryStateStore(projects=[project], tokens={USER_ID: TOKEN})
    previous = roots["public"] / PROJECT_ID
    previous.mkdir()
    (previous / "index.html").write_text("previous release")
    orchestrator = build_pipeline(store, roots, repos)

    result = await orchestrator.deploy_project(PROJECT_ID)

    assert result.status == S.FAILED
    assert store.status_history[result.deployment_id] == [S.CLONING, S.BUILDING, S.FAILED]
    build_log = store.deployments[result.deployment_id].build_log
    assert "vite: build exploded" in build_log
    assert "code 3" in build_log
    assert (previous / "index.html").read_text() == "previous release"
    assert list(roots["workspaces"].iterdir()) == []


@pytest.mark.asyncio
async def test_build_output_is_published(store, roots, repos):
    make_git_repo(
        repos / "acme" / "demo",
        {
            "package.json": json.dumps({"devDependencies": {"vite": "5.0.0"}}),
            "src/main.js": "console.log('hi')",
        },
    )
    store.projects[PROJECT_ID] = make_project(
        install_command="",
        build_command="mkdir -p dist/assets && echo \"$PUBLIC_URL\" > dist/index.html && cp src/main.js dist/assets/",
    )
    orchestrator = build_pipeline(store, roots, repos)

    result = await orchestrator.deploy_project(PROJECT_ID)

    assert result.success is True, store.deployments[result.deployment_id].build_log
    public = roots["public"] / PROJECT_ID
    assert (public / "index.html").read_text().strip() == "https://demo-3f2a9c1e.madahost.dev/"
    assert (public / "assets" / "main.js").exists()
    assert store.projects[PROJECT_ID].framework == "vite"


@pytest.mark.asyncio
async def test_unknown_branch_fails_without_leaking_token(store, roots, repos):
    make_git_repo(repos / "acme" / "demo", {"index.html": "x"})
    store.projects[PROJECT_ID] = make_project(branch="does-not-exist")
    orchestrator = build_pipeline(store, roots, repos)

    result = await orchestrator.deploy_project(PROJECT_ID)

    assert result.status == S.FAILED
    deployment = store.deployments[result.deployment_id]
    assert "Unable to clone acme/demo@does-not-exist" in deployment.build_log
    assert TOKEN not in deployment.build_log
    assert deployment.commit_hash is None


@pytest.mark.asyncio
async def test_queue_cancels_running_build(store, roots, repos):
    make_git_repo(repos / "acme" / "demo", {"package.json": "{}", "index.html": "x"})
    store.projects[PROJECT_ID] = make_project(install_command="", build_command="echo building; sleep 30")
    queue = DeploymentQueue(build_pipeline(store, roots, repos), store, max_workers=1)
    queue.start()
    try:
        handle = await queue.submit(PROJECT_ID)

        async def wait_for_build():
            while store.deployments[handle.deployment_id].status != S.BUILDING:
                await asyncio.sleep(0.05)
            await asyncio.sleep(0.3)

        await asyncio.wait_for(wait_for_build(), timeout=20)
        assert await queue.cancel(handle.deployment_id) is True
        result = await asyncio.wait_for(handle.future, timeout=20)
    finally:
        await queue.stop(timeout=5)

    assert result.status == S.CANCELLED
    deployment = store.deployments[handle.deployment_id]
    assert deployment.status == S.CANCELLED
    assert S.DEPLOYING not in store.status_history[handle.deployment_id]
    assert not (roots["public"] / PROJECT_ID).exists()
    assert list(roots["workspaces"].iterdir()) == []
