"""Execution Tracker - drives one TaskRun to a terminal state.

Lifecycle::

    Submitted -> (WaitingForWorker | Monitoring) -> Succeeded | Failed | Timeout

After submission two units run side by side: the log streamer (waits for the
worker pod, then copies every container's output to the sink file) and the
monitor (polls the TaskRun condition). Only the monitor decides the outcome;
the streamer is best effort and gets a short grace period to flush once the
monitor is done.
"""

import asyncio
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from constants import (
    POD_PHASE_RUNNING,
    TASKRUN_FAILED,
    TASKRUN_SUCCEEDED,
    TASKRUN_TIMEOUT,
)
from core.errors import DaemonError, JobSpecError, JobSubmissionError, OperationTimeoutError
from core.logging import get_logger
from .engine import JobEngine, parse_job_spec

logger = get_logger(__name__)


def taskrun_outcome(taskrun: Dict[str, Any]) -> Optional[str]:
    """Terminal state encoded in a TaskRun's first condition, None while running."""
    conditions = (taskrun.get("status") or {}).get("conditions") or []
    if not conditions:
        return None

    condition = conditions[0]
    if condition.get("type") == "Succeeded" and condition.get("status") == "True":
        return TASKRUN_SUCCEEDED
    if condition.get("status") == "False":
        return TASKRUN_FAILED
    return None


class ExecutionTracker:
    """Submit, monitor and capture output of TaskRuns."""

    def __init__(
        self,
        engine: JobEngine,
        worker_poll_interval: float = 2.0,
        worker_wait_timeout: float = 300.0,
        monitor_poll_interval: float = 5.0,
        monitor_timeout: float = 1800.0,
        flush_grace: float = 2.0,
    ):
        self.engine = engine
        self.worker_poll_interval = worker_poll_interval
        self.worker_wait_timeout = worker_wait_timeout
        self.monitor_poll_interval = monitor_poll_interval
        self.monitor_timeout = monitor_timeout
        self.flush_grace = flush_grace

    # =========================================================================
    # SUBMISSION
    # =========================================================================

    async def submit(self, job_spec: Union[str, bytes]) -> str:
        """Validate a TaskRun document and create it. Returns the assigned name."""
        manifest = parse_job_spec(job_spec)
        return await self.engine.create(manifest)

    async def submit_file(self, path: Union[str, Path]) -> str:
        try:
            data = await asyncio.to_thread(Path(path).read_bytes)
        except OSError as e:
            raise JobSpecError(f"failed to read TaskRun file: {e}") from e
        return await self.submit(data)

    # =========================================================================
    # OUTPUT STREAMING
    # =========================================================================

    async def wait_for_worker(self, name: str) -> Dict[str, Any]:
        """Poll until the worker pod exists and is Running.

        Raises:
            asyncio.TimeoutError: no running worker within ``worker_wait_timeout``
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.worker_wait_timeout

        while True:
            try:
                pod = await self.engine.find_worker(name)
            except (DaemonError, ValueError) as e:
                logger.debug("Worker lookup failed, retrying", taskrun=name, error=str(e))
                pod = None

            # Streaming an initializing pod fails, so wait for Running
            if pod is not None and (pod.get("status") or {}).get("phase") == POD_PHASE_RUNNING:
                return pod

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise asyncio.TimeoutError(f"timeout waiting for TaskRun pod of {name}")
            await asyncio.sleep(min(self.worker_poll_interval, remaining))

    async def stream_output(self, name: str, sink_path: Union[str, Path]) -> None:
        """Copy the worker's container logs into ``sink_path``.

        Errors are logged and swallowed: output capture never affects the
        TaskRun outcome.
        """
        try:
            await self._copy_logs(name, Path(sink_path))
        except asyncio.TimeoutError:
            logger.warning("Timed out waiting for TaskRun pod", taskrun=name, timeout=self.worker_wait_timeout)
        except Exception as e:
            logger.warning("TaskRun log streaming failed", taskrun=name, error=repr(e))

    async def _copy_logs(self, name: str, sink_path: Path) -> None:
        pod = await self.wait_for_worker(name)
        pod_name = pod["metadata"]["name"]
        containers = [c["name"] for c in (pod.get("spec") or {}).get("containers", [])]

        try:
            sink_path.parent.mkdir(parents=True, exist_ok=True)
            sink = open(sink_path, "wb")
        except OSError as e:
            logger.error("Failed to create log file", taskrun=name, log_file=str(sink_path), error=str(e))
            return

        logger.info("Streaming TaskRun logs", taskrun=name, pod=pod_name,
                    containers=containers, log_file=str(sink_path))
        with sink:
            for container in containers:
                try:
                    async for chunk in self.engine.stream_logs(pod_name, container):
                        sink.write(chunk)
                        sink.flush()
                except (DaemonError, OSError) as e:
                    logger.warning("Failed to stream container logs",
                                   taskrun=name, container=container, error=str(e))

    # =========================================================================
    # MONITORING
    # =========================================================================

    async def monitor(self, name: str, deadline: Optional[float] = None) -> Tuple[str, str]:
        """Poll the TaskRun until it reaches a terminal condition.

        Args:
            name: TaskRun name
            deadline: Event loop time of the enclosing operation deadline; the
                monitor stops at whichever of this and ``monitor_timeout``
                comes first

        Returns:
            (status, error) - error is empty unless status is Timeout
        """
        loop = asyncio.get_running_loop()
        window = self.monitor_timeout
        end = loop.time() + window
        if deadline is not None and deadline < end:
            window = max(0.0, deadline - loop.time())
            end = deadline

        while True:
            try:
                outcome = taskrun_outcome(await self.engine.get(name))
            except (DaemonError, ValueError) as e:
                # Transient API errors keep the monitor polling
                logger.debug("TaskRun status check failed", taskrun=name, error=str(e))
                outcome = None

            if outcome is not None:
                logger.info("TaskRun finished", taskrun=name, status=outcome)
                return outcome, ""

            remaining = end - loop.time()
            if remaining <= 0:
                error = OperationTimeoutError("TaskRun monitoring", window)
                logger.warning("TaskRun monitoring timed out", taskrun=name, timeout=window)
                return TASKRUN_TIMEOUT, str(error)
            await asyncio.sleep(min(self.monitor_poll_interval, remaining))

    # =========================================================================
    # WORKFLOW
    # =========================================================================

    async def run_workflow(
        self,
        job_spec_path: Union[str, Path],
        sink_path: Union[str, Path],
        deadline: Optional[float] = None,
    ) -> Tuple[str, str, str]:
        """Submit a TaskRun file, stream its output and wait for the outcome.

        Returns:
            (name, status, error). A rejected job yields ``("", "", error)``
            and nothing is monitored.
        """
        try:
            name = await self.submit_file(job_spec_path)
        except (JobSpecError, JobSubmissionError) as e:
            logger.error("TaskRun rejected", yaml_path=str(job_spec_path), error=str(e))
            return "", "", str(e)

        streamer = asyncio.create_task(self.stream_output(name, sink_path), name=f"taskrun-logs:{name}")
        try:
            status, error = await self.monitor(name, deadline)
        except BaseException:
            streamer.cancel()
            raise

        await self._await_flush(name, streamer)
        return name, status, error

    async def _await_flush(self, name: str, streamer: asyncio.Task) -> None:
        done, _ = await asyncio.wait({streamer}, timeout=self.flush_grace)
        if done:
            return
        logger.debug("Log streaming still active after grace period, stopping", taskrun=name)
        streamer.cancel()
        await asyncio.gather(streamer, return_exceptions=True)
