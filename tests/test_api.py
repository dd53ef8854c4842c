"""HTTP API tests run in-process against the ASGI app."""

import asyncio

import httpx
import pytest

from conftest import FakeDeployer
from core.container import container
from core.errors import CommandError
from services.environment import EnvironmentService


@pytest.fixture
def deploy_gate():
    return asyncio.Event()


@pytest.fixture
def gated_environment(environment, deploy_gate):
    """Environment whose deployments block until ``deploy_gate`` is set."""
    return EnvironmentService(
        settings=environment.settings,
        store=environment.store,
        coordinator=environment.coordinator,
        reconciler=environment.reconciler,
        cluster=environment.cluster,
        builder=environment.builder,
        deployer=FakeDeployer(gate=deploy_gate),
        tracker=environment.tracker,
    )


@pytest.fixture
async def client(settings, store, coordinator, cluster, gated_environment):
    from main import app

    with container.settings.override(settings), \
            container.snapshot_store.override(store), \
            container.coordinator.override(coordinator), \
            container.cluster_manager.override(cluster), \
            container.environment.override(gated_environment):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://daemon") as client:
            yield client


async def finish(coordinator, deploy_gate):
    deploy_gate.set()
    if coordinator.current is not None:
        await coordinator.current


class TestStatus:
    async def test_get_status(self, client):
        response = await client.get("/api/status")

        assert response.status_code == 200
        body = response.json()
        assert body["operation_status"] == "idle"
        assert body["last_operation_error"] == ""
        assert body["cluster"]["status"] == "unknown"
        assert body["repositories"] == {}
        assert body["taskrun_info"] is None

    async def test_refresh(self, client):
        response = await client.post("/api/status/refresh")

        assert response.status_code == 200
        body = response.json()
        assert body["cluster"]["status"] == "running"
        assert body["repositories"]["multi-platform-controller"]["current_branch"] == "main"


class TestAdmission:
    async def test_deploy_twice_conflicts(self, client, coordinator, deploy_gate):
        first = await client.post("/api/mpc/deploy")
        second = await client.post("/api/mpc/deploy")

        assert first.status_code == 202
        assert first.json()["status"] == "accepted"
        assert second.status_code == 409
        assert second.json() == {
            "status": "conflict",
            "error": "Operation 'deploying_mpc' is already in progress",
        }

        status = (await client.get("/api/status")).json()
        assert status["operation_status"] == "deploying_mpc"

        await finish(coordinator, deploy_gate)
        status = (await client.get("/api/status")).json()
        assert status["operation_status"] == "idle"

    @pytest.mark.parametrize("path", [
        "/api/rebuild",
        "/api/mpc/build",
        "/api/mpc/rebuild-and-redeploy",
        "/api/deploy/secrets",
        "/api/deploy/konflux",
        "/api/deploy/minimal-stack",
        "/api/cluster/start",
        "/api/cluster/stop",
    ])
    async def test_rejected_while_busy(self, client, coordinator, deploy_gate, path):
        assert (await client.post("/api/mpc/deploy")).status_code == 202

        response = await client.post(path)

        assert response.status_code == 409
        assert "already in progress" in response.json()["error"]
        await finish(coordinator, deploy_gate)

    async def test_secrets_body_is_forwarded(self, client, coordinator, gated_environment, deploy_gate):
        response = await client.post(
            "/api/deploy/secrets",
            json={"credentials": {"AWS_ACCESS_KEY_ID": "AKIA", "SSH_KEY_PATH": "/keys/id_rsa"}},
        )

        assert response.status_code == 202
        await finish(coordinator, deploy_gate)
        assert gated_environment.deployer.credentials == {
            "AWS_ACCESS_KEY_ID": "AKIA", "SSH_KEY_PATH": "/keys/id_rsa",
        }

    async def test_malformed_body_is_400(self, client):
        response = await client.post(
            "/api/deploy/secrets", content=b"{not json", headers={"content-type": "application/json"}
        )
        assert response.status_code == 400
        assert response.json()["status"] == "error"


class TestTaskRun:
    @pytest.mark.parametrize("kwargs", [
        {},
        {"json": {}},
        {"json": {"yaml_path": "   "}},
    ])
    async def test_missing_yaml_path(self, client, kwargs):
        response = await client.post("/api/taskrun/run", **kwargs)

        assert response.status_code == 400
        assert response.json()["detail"] == "yaml_path is required"

    async def test_accepted_and_recorded(self, client, coordinator, taskrun_file):
        response = await client.post("/api/taskrun/run", json={"yaml_path": str(taskrun_file)})

        assert response.status_code == 202
        await coordinator.current

        info = (await client.get("/api/status")).json()["taskrun_info"]
        assert info["status"] == "Succeeded"
        assert info["name"] == "provision-arm64-x7k2p"


class TestGitAndCluster:
    async def test_git_sync_accepted_while_busy(self, client, coordinator, deploy_gate, reconciler):
        assert (await client.post("/api/mpc/deploy")).status_code == 202

        response = await client.post("/api/git/sync")

        assert response.status_code == 202
        assert response.json()["status"] == "accepted"
        await asyncio.sleep(0.05)
        assert reconciler.synced == ["/src/multi-platform-controller"]
        await finish(coordinator, deploy_gate)

    async def test_live_cluster_status(self, client, cluster):
        cluster.status_value = "initializing"

        response = await client.get("/api/cluster/status")

        assert response.json() == {"status": "initializing", "error": None}

    async def test_live_cluster_status_error(self, client, cluster):
        cluster.error = CommandError(["kind", "get", "clusters"], 1, "podman not running")

        response = await client.get("/api/cluster/status")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "error"
        assert "podman not running" in body["error"]


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["service"] == "mpc-dev-env-daemon"
    assert body["checks"]["operation_in_progress"] is False
