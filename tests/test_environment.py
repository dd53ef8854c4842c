"""Tests for the operation bodies behind the mutating endpoints."""

import asyncio
import re
from datetime import datetime

from conftest import FakeBuilder, FakeDeployer, FakeJobEngine, taskrun_status
from core.errors import DaemonError
from models.state import OperationStatus
from services.environment import EnvironmentService, log_filename


def test_log_filename():
    name = log_filename("/work/taskruns/provision-arm64.yaml", now=datetime(2026, 3, 4, 5, 6, 7))
    assert name == "provision-arm64_20260304_050607.log"


def replace(environment, **overrides):
    """Same service with some collaborators swapped."""
    return EnvironmentService(**{
        "settings": environment.settings,
        "store": environment.store,
        "coordinator": environment.coordinator,
        "reconciler": environment.reconciler,
        "cluster": environment.cluster,
        "builder": environment.builder,
        "deployer": environment.deployer,
        "tracker": environment.tracker,
        **overrides,
    })


class TestBuildAndDeploy:
    async def test_rebuild(self, environment, builder, store):
        task = await environment.rebuild()
        assert (await store.read()).operation_status == OperationStatus.REBUILDING
        await task

        assert builder.builds == 1
        assert (await store.read()).operation_status == OperationStatus.IDLE

    async def test_rebuild_and_redeploy_runs_both_steps(self, environment, builder, deployer, store):
        await (await environment.rebuild_and_redeploy())

        assert builder.builds == 1
        assert deployer.calls == ["deploy"]
        assert (await store.read()).last_operation_error == ""

    async def test_rebuild_and_redeploy_stops_after_failed_build(self, environment, deployer, store):
        service = replace(environment, builder=FakeBuilder(error=DaemonError("podman build failed")))

        await (await service.rebuild_and_redeploy())

        assert deployer.calls == []
        snapshot = await store.read()
        assert snapshot.operation_status == OperationStatus.IDLE
        assert snapshot.last_operation_error == "rebuild-and-redeploy failed during build: podman build failed"

    async def test_rebuild_and_redeploy_reports_deploy_step(self, environment, store):
        service = replace(environment, deployer=FakeDeployer(error=DaemonError("failed to wait for deployment")))

        await (await service.rebuild_and_redeploy())

        assert (await store.read()).last_operation_error == (
            "rebuild-and-redeploy failed during deploy: failed to wait for deployment"
        )

    async def test_second_operation_is_rejected_while_deploying(self, environment, store):
        gate = asyncio.Event()
        service = replace(environment, deployer=FakeDeployer(gate=gate))

        first = await service.deploy()
        second = await service.deploy_konflux()

        assert first is not None
        assert second is None
        assert (await store.read()).operation_status == OperationStatus.DEPLOYING_MPC

        gate.set()
        await first

    async def test_rebuild_on_change_reports_admission(self, environment):
        gate = asyncio.Event()
        service = replace(environment, builder=FakeBuilder(gate=gate))

        assert await service.rebuild_on_change() is True
        assert await service.rebuild_on_change() is False

        gate.set()
        await service.coordinator.current


class TestAddOns:
    async def test_secrets_enable_aws(self, environment, deployer, store):
        await (await environment.deploy_secrets({"AWS_ACCESS_KEY_ID": "AKIA"}))

        assert deployer.credentials == {"AWS_ACCESS_KEY_ID": "AKIA"}
        assert (await store.read()).features.aws_enabled is True

    async def test_failed_secrets_leave_aws_disabled(self, environment, store):
        service = replace(environment, deployer=FakeDeployer(error=DaemonError("AWS_SECRET_ACCESS_KEY is not set")))

        await (await service.deploy_secrets())

        snapshot = await store.read()
        assert snapshot.features.aws_enabled is False
        assert snapshot.last_operation_error == "AWS_SECRET_ACCESS_KEY is not set"

    async def test_minimal_stack(self, environment, deployer, store):
        task = await environment.deploy_minimal_stack()
        assert (await store.read()).operation_status == OperationStatus.DEPLOYING_MINIMAL_STACK
        await task
        assert deployer.calls == ["minimal-stack"]


class TestCluster:
    async def test_start_refreshes_snapshot(self, environment, cluster, store):
        cluster.status_value = "not_running"

        await (await environment.start_cluster())

        assert cluster.created == 1
        assert (await store.read()).cluster.status == "running"

    async def test_stop_refreshes_snapshot(self, environment, cluster, store):
        await (await environment.stop_cluster())

        assert cluster.destroyed == 1
        assert (await store.read()).cluster.status == "not_running"


class TestTaskRun:
    async def test_success_records_result(self, environment, settings, store, taskrun_file):
        task = await environment.run_taskrun(str(taskrun_file))
        assert (await store.read()).operation_status == OperationStatus.RUNNING_TASKRUN
        await task

        snapshot = await store.read()
        info = snapshot.taskrun_info
        assert info.name == "provision-arm64-x7k2p"
        assert info.status == "Succeeded"
        assert re.fullmatch(r".*/provision-arm64_\d{8}_\d{6}\.log", info.log_file)
        assert info.log_file.startswith(str(settings.logs_dir))
        assert datetime.fromisoformat(info.start_time).tzinfo is not None
        assert snapshot.operation_status == OperationStatus.IDLE
        assert snapshot.last_operation_error == ""

    async def test_failed_taskrun_sets_error(self, environment, job_engine, store, taskrun_file):
        job_engine.statuses = [taskrun_status("False")]

        await (await environment.run_taskrun(str(taskrun_file)))

        snapshot = await store.read()
        assert snapshot.taskrun_info.status == "Failed"
        assert snapshot.last_operation_error == (
            f"TaskRun 'provision-arm64-x7k2p' failed - check logs at {snapshot.taskrun_info.log_file}"
        )

    async def test_rejected_spec_records_error_result(self, environment, store, tmp_path):
        job = tmp_path / "configmap.yaml"
        job.write_text("apiVersion: v1\nkind: ConfigMap\nmetadata:\n  name: cm\n")

        await (await environment.run_taskrun(str(job)))

        snapshot = await store.read()
        assert snapshot.taskrun_info.status == "Error"
        assert snapshot.last_operation_error.startswith("TaskRun workflow failed: YAML does not contain a TaskRun")
        assert snapshot.operation_status == OperationStatus.IDLE

    async def test_previous_result_is_cleared_on_start(self, environment, store, taskrun_file):
        gate = asyncio.Event()

        class SlowEngine(FakeJobEngine):
            async def get(self, name):
                await gate.wait()
                return taskrun_status("True")

        await (await environment.run_taskrun(str(taskrun_file)))
        assert (await store.read()).taskrun_info is not None

        environment.tracker.engine = SlowEngine()
        task = await environment.run_taskrun(str(taskrun_file))
        await asyncio.sleep(0.05)
        assert (await store.read()).taskrun_info is None

        gate.set()
        await task


class TestGitSync:
    async def test_sync_is_ungated(self, environment, reconciler, store):
        gate = asyncio.Event()
        service = replace(environment, deployer=FakeDeployer(gate=gate))
        deploy = await service.deploy()

        await service.sync_repositories()

        assert reconciler.synced == ["/src/multi-platform-controller"]
        assert "multi-platform-controller" in (await store.read()).repositories
        gate.set()
        await deploy

    async def test_sync_failure_only_logged(self, environment, reconciler, store):
        reconciler.sync_error = DaemonError("failed to sync repositories: mpc: fetch failed")

        await environment.sync_repositories()

        snapshot = await store.read()
        assert snapshot.last_operation_error == ""
        assert "multi-platform-controller" in snapshot.repositories
