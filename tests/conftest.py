"""Shared fixtures and in-memory collaborators for daemon tests."""

import asyncio
from typing import Any, AsyncIterator, Dict, List, Optional

import pytest

from core.config import Settings
from core.errors import RepositoryError
from core.process import CommandResult
from models.state import RepositoryFacts
from services.environment import EnvironmentService
from services.execution import ExecutionTracker
from services.operations import OperationCoordinator
from services.snapshot import SnapshotStore


class FakeClusterProbe:
    """Cluster status source with a scripted answer."""

    def __init__(self, status: str = "running", error: Optional[Exception] = None, delay: float = 0.0):
        self.status_value = status
        self.error = error
        self.delay = delay
        self.calls = 0
        self.created = 0
        self.destroyed = 0

    async def status(self) -> str:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.status_value

    async def create(self) -> None:
        self.created += 1
        self.status_value = "running"

    async def destroy(self) -> None:
        self.destroyed += 1
        self.status_value = "not_running"


class FakeReconciler:
    """Git reconciler that never touches the filesystem."""

    def __init__(self, failing=(), sync_error: Optional[Exception] = None):
        self.failing = set(failing)
        self.sync_error = sync_error
        self.behind: Dict[str, int] = {}
        self.synced: List[str] = []

    async def check_state(self, repo_path: str) -> RepositoryFacts:
        if repo_path in self.failing:
            raise RepositoryError(repo_path, "not a git repository")
        return RepositoryFacts(
            name=repo_path.rsplit("/", 1)[-1],
            path=repo_path,
            current_branch="main",
            commits_behind_upstream=self.behind.get(repo_path, 0),
        )

    async def sync(self, repo_path: str) -> None:
        self.synced.append(repo_path)
        self.behind[repo_path] = 0

    async def sync_all(self, repositories: Dict[str, str]) -> Dict[str, str]:
        for path in repositories.values():
            await self.sync(path)
        if self.sync_error is not None:
            raise self.sync_error
        return {name: "fast-forward" for name in repositories}


class FakeBuilder:
    def __init__(self, error: Optional[Exception] = None, gate: Optional[asyncio.Event] = None):
        self.error = error
        self.gate = gate
        self.builds = 0

    async def build(self) -> None:
        self.builds += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error


class FakeDeployer:
    def __init__(self, error: Optional[Exception] = None, gate: Optional[asyncio.Event] = None):
        self.error = error
        self.gate = gate
        self.calls: List[str] = []
        self.credentials: Optional[Dict[str, str]] = None

    async def _step(self, name: str) -> None:
        self.calls.append(name)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error

    async def deploy(self) -> None:
        await self._step("deploy")

    async def apply_secrets(self, credentials: Dict[str, str]) -> None:
        self.credentials = dict(credentials)
        await self._step("secrets")

    async def apply_konflux(self) -> None:
        await self._step("konflux")

    async def deploy_minimal_stack(self) -> None:
        await self._step("minimal-stack")


def taskrun_status(status: Optional[str]) -> Dict[str, Any]:
    """TaskRun object whose first condition carries ``status``."""
    if status is None:
        return {"status": {}}
    return {"status": {"conditions": [{"type": "Succeeded", "status": status}]}}


class FakeJobEngine:
    """In-memory TaskRun engine.

    ``statuses`` are returned by successive ``get`` calls; the last one repeats.
    """

    def __init__(
        self,
        statuses: Optional[List[Dict[str, Any]]] = None,
        pod_phase: Optional[str] = "Running",
        logs: Optional[Dict[str, List[bytes]]] = None,
        create_error: Optional[Exception] = None,
    ):
        self.statuses = list(statuses or [taskrun_status("True")])
        self.pod_phase = pod_phase
        self.logs = logs if logs is not None else {"step-run": [b"hello from the task\n"]}
        self.create_error = create_error
        self.created: List[Dict[str, Any]] = []
        self.get_calls = 0

    async def create(self, manifest: Dict[str, Any]) -> str:
        if self.create_error is not None:
            raise self.create_error
        self.created.append(manifest)
        metadata = manifest["metadata"]
        return metadata.get("name") or f"{metadata['generateName']}x7k2p"

    async def get(self, name: str) -> Dict[str, Any]:
        self.get_calls += 1
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(status, Exception):
            raise status
        return status

    async def find_worker(self, name: str) -> Optional[Dict[str, Any]]:
        if self.pod_phase is None:
            return None
        return {
            "metadata": {"name": f"{name}-pod"},
            "status": {"phase": self.pod_phase},
            "spec": {"containers": [{"name": c} for c in self.logs]},
        }

    async def stream_logs(self, pod: str, container: str) -> AsyncIterator[bytes]:
        for chunk in self.logs.get(container, []):
            yield chunk


TASKRUN_YAML = """\
apiVersion: tekton.dev/v1
kind: TaskRun
metadata:
  generateName: provision-arm64-
spec:
  taskRef:
    name: provision
"""


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        mpc_dev_env_path=tmp_path / "dev-env",
        logs_dir=tmp_path / "logs",
        git_sync_enabled=False,
    )


@pytest.fixture
def cluster() -> FakeClusterProbe:
    return FakeClusterProbe()


@pytest.fixture
def reconciler() -> FakeReconciler:
    return FakeReconciler()


@pytest.fixture
def store(cluster, reconciler) -> SnapshotStore:
    return SnapshotStore(
        cluster=cluster,
        reconciler=reconciler,
        repositories={"multi-platform-controller": "/src/multi-platform-controller"},
        cluster_name="konflux",
        kubeconfig_path="/home/dev/.kube/config",
        cluster_status_timeout=1.0,
    )


@pytest.fixture
def coordinator(store) -> OperationCoordinator:
    return OperationCoordinator(store)


@pytest.fixture
def job_engine() -> FakeJobEngine:
    return FakeJobEngine()


@pytest.fixture
def tracker(job_engine) -> ExecutionTracker:
    return ExecutionTracker(
        job_engine,
        worker_poll_interval=0.01,
        worker_wait_timeout=0.5,
        monitor_poll_interval=0.01,
        monitor_timeout=1.0,
        flush_grace=0.5,
    )


@pytest.fixture
def builder() -> FakeBuilder:
    return FakeBuilder()


@pytest.fixture
def deployer() -> FakeDeployer:
    return FakeDeployer()


@pytest.fixture
def environment(settings, store, coordinator, reconciler, cluster, builder, deployer, tracker) -> EnvironmentService:
    return EnvironmentService(
        settings=settings,
        store=store,
        coordinator=coordinator,
        reconciler=reconciler,
        cluster=cluster,
        builder=builder,
        deployer=deployer,
        tracker=tracker,
    )


@pytest.fixture
def taskrun_file(tmp_path):
    path = tmp_path / "provision-arm64.yaml"
    path.write_text(TASKRUN_YAML)
    return path



class FakeKubectl:
    """Records kubectl invocations instead of running them.

    ``objects`` holds (kind, name) pairs that ``exists``/``wait_for`` find;
    ``documents`` maps (kind, name) to what ``get_json`` returns; ``stdout``
    maps a verb to the output of ``run``.
    """

    def __init__(self, objects=(), documents=None, stdout=None):
        self.objects = set(objects)
        self.documents = dict(documents or {})
        self.stdout = dict(stdout or {})
        self.calls: List[tuple] = []
        self.inputs: List[bytes] = []
        self.manifests: List[tuple] = []

    async def run(self, *args, input=None, check=True, timeout=None, log_prefix=None) -> CommandResult:
        self.calls.append(args)
        if input is not None:
            self.inputs.append(input)
        return CommandResult(argv=["kubectl", *args], returncode=0, stdout=self.stdout.get(args[0], ""), stderr="")

    async def get_json(self, *args) -> Dict[str, Any]:
        self.calls.append(("get", *args))
        return self.documents.get(tuple(args[:2]), {})

    async def apply_manifest(self, manifest: Dict[str, Any], verb: str = "apply") -> None:
        self.manifests.append((verb, manifest))

    async def exists(self, kind: str, name: str, namespace: Optional[str] = None) -> bool:
        return (kind, name) in self.objects

    async def wait_for(self, kind, name, namespace=None, timeout=120.0, interval=2.0) -> None:
        if (kind, name) not in self.objects:
            raise asyncio.TimeoutError(f"timeout waiting for {kind} {name}")

    async def rollout_status(self, deployment: str, namespace: str, timeout_minutes: int = 5) -> None:
        self.calls.append(("rollout", "status", f"deployment/{deployment}"))
