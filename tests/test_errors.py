"""Error message formats surfaced through last_operation_error."""

import pytest

from core.errors import CommandError, OperationTimeoutError, RepositoryError, TaskRunFailedError


@pytest.mark.parametrize("seconds, expected", [
    (1800, "TaskRun monitoring timed out after 30 minutes"),
    (60, "TaskRun monitoring timed out after 1 minute"),
    (90, "TaskRun monitoring timed out after 90 seconds"),
    (0.25, "TaskRun monitoring timed out after 0.2 seconds"),
])
def test_timeout_message(seconds, expected):
    assert str(OperationTimeoutError("TaskRun monitoring", seconds)) == expected


def test_taskrun_failed_messages():
    assert str(TaskRunFailedError("tr-1", "Failed", "/logs/a.log")) == "TaskRun 'tr-1' failed - check logs at /logs/a.log"
    assert str(TaskRunFailedError("tr-1", "Timeout", "/logs/a.log")) == (
        "TaskRun 'tr-1' timed out - check logs at /logs/a.log"
    )


def test_command_error_message():
    error = CommandError(["kubectl", "apply", "-k", "deploy/operator"], 1, "  error: no objects passed\n")
    assert str(error) == "kubectl apply -k failed with exit code 1: error: no objects passed"
    assert error.stderr == "error: no objects passed"


def test_repository_error_names_path():
    assert str(RepositoryError("/src/mpc", "not a git repository")) == "[/src/mpc] not a git repository"
