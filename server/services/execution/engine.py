"""Job engine boundary: TaskRun manifests in, cluster objects out.

The tracker only talks to the ``JobEngine`` protocol, so tests can swap in an
in-memory engine. ``KubectlJobEngine`` is the real implementation.
"""

from typing import Any, AsyncIterator, Dict, Optional, Protocol, Union

import orjson
import yaml

from constants import TASKRUN_KIND, TASKRUN_POD_LABEL, TEKTON_API_GROUP
from core.errors import DaemonError, JobSpecError, JobSubmissionError
from core.logging import get_logger
from services.kubectl import Kubectl

logger = get_logger(__name__)


class JobEngine(Protocol):
    """Capabilities the execution tracker needs from the cluster."""

    async def create(self, manifest: Dict[str, Any]) -> str:
        """Create the job and return its server-assigned name."""
        ...

    async def get(self, name: str) -> Dict[str, Any]:
        ...

    async def find_worker(self, name: str) -> Optional[Dict[str, Any]]:
        """First pod running the job, or None when none exists yet."""
        ...

    def stream_logs(self, pod: str, container: str) -> AsyncIterator[bytes]:
        ...


def parse_job_spec(data: Union[str, bytes]) -> Dict[str, Any]:
    """Decode a YAML document and check that it is a single Tekton TaskRun.

    Raises:
        JobSpecError: malformed YAML, several documents, or not a TaskRun
    """
    try:
        documents = [doc for doc in yaml.safe_load_all(data) if doc is not None]
    except yaml.YAMLError as e:
        raise JobSpecError(f"failed to parse TaskRun YAML: {e}") from e

    if not documents:
        raise JobSpecError("TaskRun YAML is empty")
    if len(documents) > 1:
        raise JobSpecError(f"expected a single TaskRun, found {len(documents)} documents")

    manifest = documents[0]
    if not isinstance(manifest, dict):
        raise JobSpecError("YAML does not contain a TaskRun")

    api_version = str(manifest.get("apiVersion", ""))
    if manifest.get("kind") != TASKRUN_KIND or not api_version.startswith(f"{TEKTON_API_GROUP}/"):
        raise JobSpecError(
            f"YAML does not contain a TaskRun (got kind={manifest.get('kind')!r}, apiVersion={api_version!r})"
        )

    metadata = manifest.get("metadata")
    if not isinstance(metadata, dict) or not (metadata.get("name") or metadata.get("generateName")):
        raise JobSpecError("TaskRun metadata must set name or generateName")

    return manifest


class KubectlJobEngine:
    """TaskRun operations over the kubectl CLI."""

    def __init__(self, kubectl: Kubectl, namespace: str):
        self.kubectl = kubectl
        self.namespace = namespace

    async def create(self, manifest: Dict[str, Any]) -> str:
        manifest = dict(manifest)
        manifest["metadata"] = {**manifest.get("metadata", {}), "namespace": self.namespace}

        try:
            result = await self.kubectl.run(
                "create", "-n", self.namespace, "-f", "-", "-o", "json",
                input=orjson.dumps(manifest),
            )
            created = orjson.loads(result.stdout)
        except (DaemonError, orjson.JSONDecodeError) as e:
            raise JobSubmissionError(f"failed to create TaskRun: {e}") from e

        name = created.get("metadata", {}).get("name", "")
        if not name:
            raise JobSubmissionError("created TaskRun has no name")
        logger.info("TaskRun created", taskrun=name, namespace=self.namespace)
        return name

    async def get(self, name: str) -> Dict[str, Any]:
        return await self.kubectl.get_json("taskrun", name, "-n", self.namespace)

    async def find_worker(self, name: str) -> Optional[Dict[str, Any]]:
        pods = await self.kubectl.get_json(
            "pods", "-n", self.namespace, "-l", f"{TASKRUN_POD_LABEL}={name}"
        )
        items = pods.get("items") or []
        return items[0] if items else None

    def stream_logs(self, pod: str, container: str) -> AsyncIterator[bytes]:
        return self.kubectl.stream("logs", "-f", pod, "-c", container, "-n", self.namespace)
