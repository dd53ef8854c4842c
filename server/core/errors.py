"""Daemon exception hierarchy."""

from typing import Sequence


class DaemonError(Exception):
    """Base exception for all daemon errors."""


class ConfigurationError(DaemonError):
    """Required path or tool is missing from the configuration."""


class CommandError(DaemonError):
    """External command exited with a non-zero status."""

    def __init__(self, argv: Sequence[str], returncode: int, stderr: str = ""):
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr.strip()
        message = f"{self.argv[0]} {' '.join(self.argv[1:3])} failed with exit code {returncode}"
        if self.stderr:
            message += f": {self.stderr}"
        super().__init__(message)


class CommandTimeoutError(CommandError):
    """External command was killed after exceeding its timeout."""

    def __init__(self, argv: Sequence[str], timeout: float):
        self.argv = list(argv)
        self.returncode = -1
        self.stderr = ""
        self.timeout = timeout
        DaemonError.__init__(
            self, f"{self.argv[0]} {' '.join(self.argv[1:3])} timed out after {_format_duration(timeout)}"
        )


class RepositoryError(DaemonError):
    """Git repository could not be inspected or reconciled."""

    def __init__(self, repo_path: str, message: str):
        self.repo_path = repo_path
        super().__init__(f"[{repo_path}] {message}")


class JobSpecError(DaemonError):
    """Job description is not a valid TaskRun."""


class JobSubmissionError(DaemonError):
    """Execution engine rejected the job."""


class OperationTimeoutError(DaemonError):
    """Background operation exceeded its deadline."""

    def __init__(self, operation: str, timeout: float):
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"{operation} timed out after {_format_duration(timeout)}")


class TaskRunFailedError(DaemonError):
    """TaskRun reached a non-successful terminal state."""

    _VERBS = {"Failed": "failed", "Timeout": "timed out"}

    def __init__(self, name: str, status: str, log_file: str):
        self.name = name
        self.status = status
        self.log_file = log_file
        verb = self._VERBS.get(status, status.lower())
        super().__init__(f"TaskRun '{name}' {verb} - check logs at {log_file}")


def _format_duration(seconds: float) -> str:
    if seconds >= 60 and seconds % 60 == 0:
        minutes = int(seconds // 60)
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    return f"{round(seconds, 1):g} seconds"
