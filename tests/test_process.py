"""Tests for async subprocess helpers."""

import shutil

import pytest

from core.errors import CommandError, CommandTimeoutError
from core.process import run_command, run_pipeline, stream_command

pytestmark = pytest.mark.skipif(shutil.which("sh") is None, reason="POSIX shell required")


class TestRunCommand:
    async def test_captures_output(self):
        result = await run_command(["echo", "hello"])
        assert result.ok
        assert result.stdout == "hello\n"

    async def test_non_zero_exit_raises(self):
        with pytest.raises(CommandError) as excinfo:
            await run_command(["sh", "-c", "echo nope >&2; exit 3"])
        assert excinfo.value.returncode == 3
        assert excinfo.value.stderr == "nope"
        assert "exit code 3: nope" in str(excinfo.value)

    async def test_unchecked_failure(self):
        result = await run_command(["false"], check=False)
        assert not result.ok
        assert result.returncode == 1

    async def test_stdin_and_env(self):
        result = await run_command(["sh", "-c", 'cat; printf "$GREETING"'], input=b"in-", env={"GREETING": "hi"})
        assert result.stdout == "in-hi"

    async def test_log_prefix_collects_lines(self):
        result = await run_command(["printf", "one\\ntwo\\n"], log_prefix="TEST")
        assert result.stdout == "one\ntwo"

    async def test_timeout_kills_process(self):
        with pytest.raises(CommandTimeoutError) as excinfo:
            await run_command(["sleep", "5"], timeout=0.1)
        assert str(excinfo.value) == "sleep 5 timed out after 0.1 seconds"
        assert isinstance(excinfo.value, CommandError)


class TestStreamCommand:
    async def test_yields_output(self):
        chunks = [chunk async for chunk in stream_command(["printf", "a\\nb\\n"])]
        assert b"".join(chunks) == b"a\nb\n"

    async def test_failure_after_stream(self):
        with pytest.raises(CommandError):
            async for _ in stream_command(["sh", "-c", "echo partial; exit 2"]):
                pass


class TestPipeline:
    async def test_pipes_producer_into_consumer(self, tmp_path):
        out = tmp_path / "out.txt"
        await run_pipeline(["printf", "image-bytes"], ["sh", "-c", f"cat > {out}"])
        assert out.read_text() == "image-bytes"

    async def test_consumer_failure(self):
        with pytest.raises(CommandError) as excinfo:
            await run_pipeline(["printf", "x"], ["sh", "-c", "cat >/dev/null; echo bad archive >&2; exit 4"])
        assert excinfo.value.returncode == 4

    async def test_producer_failure(self):
        with pytest.raises(CommandError) as excinfo:
            await run_pipeline(["sh", "-c", "exit 5"], ["cat"])
        assert excinfo.value.returncode == 5
