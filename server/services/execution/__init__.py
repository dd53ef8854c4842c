"""Execution package - TaskRun submission, monitoring and log capture."""

from .engine import (
    JobEngine,
    KubectlJobEngine,
    parse_job_spec,
)
from .tracker import (
    ExecutionTracker,
    taskrun_outcome,
)

__all__ = [
    # Engine
    "JobEngine",
    "KubectlJobEngine",
    "parse_job_spec",
    # Tracker
    "ExecutionTracker",
    "taskrun_outcome",
]
