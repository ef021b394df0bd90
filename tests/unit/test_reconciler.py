"""Unit tests for stuck-deployment reconciliation."""

from datetime import timedelta

import pytest

from deployer.reconciler import reconcile_stuck_deployments
from shared.schemas.deployment import Deployment, DeploymentStatus

from ..factories import FIXED_NOW, PROJECT_ID


def deployment(deployment_id, status, age_minutes, build_log=None):
    return Deployment(
        id=deployment_id,
        project_id=PROJECT_ID,
        status=status,
        started_at=FIXED_NOW - timedelta(minutes=age_minutes),
        build_log=build_log,
    )


@pytest.mark.asyncio
async def test_old_non_terminal_deployments_are_failed(store):
    store.add_deployment(deployment("stuck", DeploymentStatus.BUILDING, 120, build_log="npm i\n"))
    store.add_deployment(deployment("fresh", DeploymentStatus.BUILDING, 5))
    store.add_deployment(deployment("done", DeploymentStatus.SUCCESS, 300))

    failed = await reconcile_stuck_deployments(store, threshold_seconds=3600, now=FIXED_NOW)

    assert failed == ["stuck"]
    stuck = store.deployments["stuck"]
    assert stuck.status == DeploymentStatus.FAILED
    assert stuck.completed_at is not None
    assert stuck.build_log.startswith("npm i\nERROR: Deployment did not finish within 3600s")
    assert "last status: building" in stuck.build_log
    assert store.deployments["fresh"].status == DeploymentStatus.BUILDING
    assert store.deployments["done"].status == DeploymentStatus.SUCCESS


@pytest.mark.asyncio
async def test_locally_running_deployments_are_skipped(store):
    store.add_deployment(deployment("mine", DeploymentStatus.CLONING, 120))

    failed = await reconcile_stuck_deployments(store, threshold_seconds=3600, now=FIXED_NOW, skip={"mine"})

    assert failed == []
    assert store.deployments["mine"].status == DeploymentStatus.CLONING


@pytest.mark.asyncio
async def test_nothing_to_do(store):
    assert await reconcile_stuck_deployments(store, threshold_seconds=60, now=FIXED_NOW) == []
