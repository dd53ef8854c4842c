"""Async external command execution.

All collaborators (git, kind, kubectl, podman/docker) go through these helpers
so commands never block the event loop and are killed when the calling task
is cancelled or its deadline expires.
"""

import asyncio
import os
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Optional, Sequence

from core.errors import CommandError, CommandTimeoutError
from core.logging import get_logger, log_command

logger = get_logger(__name__)

_READ_CHUNK = 64 * 1024


@dataclass
class CommandResult:
    """Completed command output."""
    argv: List[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def _merge_env(env: Optional[Dict[str, str]]) -> Optional[Dict[str, str]]:
    if not env:
        return None
    merged = dict(os.environ)
    merged.update(env)
    return merged


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        return
    await proc.wait()


async def _pump_lines(stream: asyncio.StreamReader, prefix: str, lines: List[str]) -> None:
    """Forward a process stream line by line to the daemon log."""
    while True:
        raw = await stream.readline()
        if not raw:
            break
        line = raw.decode("utf-8", errors="replace").rstrip("\n")
        lines.append(line)
        if line:
            logger.info(f"[{prefix}] {line}")


async def run_command(
    argv: Sequence[str],
    cwd: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
    input: Optional[bytes] = None,
    check: bool = True,
    timeout: Optional[float] = None,
    log_prefix: Optional[str] = None,
) -> CommandResult:
    """Run a command to completion and capture its output.

    Args:
        argv: Program and arguments
        cwd: Working directory
        env: Extra environment variables layered over the daemon's own
        input: Bytes written to stdin
        check: Raise CommandError on non-zero exit
        timeout: Seconds before the process is killed (CommandTimeoutError)
        log_prefix: When set, stream every output line to the log as it arrives

    Returns:
        CommandResult with decoded stdout/stderr
    """
    argv = [str(a) for a in argv]
    proc = await asyncio.create_subprocess_exec(
        *argv,
        cwd=cwd,
        env=_merge_env(env),
        stdin=asyncio.subprocess.PIPE if input is not None else asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )

    try:
        if log_prefix:
            out_lines: List[str] = []
            err_lines: List[str] = []

            async def _collect():
                await asyncio.gather(
                    _pump_lines(proc.stdout, log_prefix, out_lines),
                    _pump_lines(proc.stderr, f"{log_prefix}-ERR", err_lines),
                )
                await proc.wait()

            await asyncio.wait_for(_collect(), timeout=timeout)
            stdout, stderr = "\n".join(out_lines), "\n".join(err_lines)
        else:
            out, err = await asyncio.wait_for(proc.communicate(input), timeout=timeout)
            stdout = out.decode("utf-8", errors="replace")
            stderr = err.decode("utf-8", errors="replace")
    except asyncio.TimeoutError:
        await _terminate(proc)
        raise CommandTimeoutError(argv, timeout) from None
    except BaseException:
        await _terminate(proc)
        raise

    result = CommandResult(argv=argv, returncode=proc.returncode, stdout=stdout, stderr=stderr)
    log_command(logger, argv, proc.returncode)
    if check and not result.ok:
        raise CommandError(argv, proc.returncode, stderr or stdout)
    return result


async def stream_command(
    argv: Sequence[str],
    cwd: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
) -> AsyncIterator[bytes]:
    """Yield raw stdout chunks until the command closes its output.

    Raises CommandError after the stream ends if the command failed.
    """
    argv = [str(a) for a in argv]
    proc = await asyncio.create_subprocess_exec(
        *argv,
        cwd=cwd,
        env=_merge_env(env),
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        while True:
            chunk = await proc.stdout.read(_READ_CHUNK)
            if not chunk:
                break
            yield chunk
        stderr = (await proc.stderr.read()).decode("utf-8", errors="replace")
        await proc.wait()
    except BaseException:
        await _terminate(proc)
        raise

    log_command(logger, argv, proc.returncode)
    if proc.returncode != 0:
        raise CommandError(argv, proc.returncode, stderr)


async def run_pipeline(
    producer: Sequence[str],
    consumer: Sequence[str],
    consumer_env: Optional[Dict[str, str]] = None,
    timeout: Optional[float] = None,
) -> None:
    """Pipe producer stdout into consumer stdin (``producer | consumer``)."""
    producer = [str(a) for a in producer]
    consumer = [str(a) for a in consumer]

    cons = await asyncio.create_subprocess_exec(
        *consumer,
        env=_merge_env(consumer_env),
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    prod = await asyncio.create_subprocess_exec(
        *producer,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )

    async def _forward():
        try:
            while True:
                chunk = await prod.stdout.read(_READ_CHUNK)
                if not chunk:
                    break
                cons.stdin.write(chunk)
                await cons.stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            # Consumer exited early; its return code carries the failure
            await _terminate(prod)
        finally:
            cons.stdin.close()

    async def _run():
        _, cons_stdout, cons_stderr, prod_err = await asyncio.gather(
            _forward(), cons.stdout.read(), cons.stderr.read(), prod.stderr.read()
        )
        await asyncio.gather(prod.wait(), cons.wait())
        return (cons_stdout, cons_stderr), prod_err

    try:
        (cons_stdout, cons_stderr), prod_stderr = await asyncio.wait_for(_run(), timeout=timeout)
    except asyncio.TimeoutError:
        await _terminate(prod)
        await _terminate(cons)
        raise CommandTimeoutError(producer, timeout) from None
    except BaseException:
        await _terminate(prod)
        await _terminate(cons)
        raise

    log_command(logger, producer, prod.returncode)
    log_command(logger, consumer, cons.returncode)
    if cons.returncode != 0:
        raise CommandError(consumer, cons.returncode, cons_stderr.decode("utf-8", errors="replace"))
    if prod.returncode != 0:
        raise CommandError(producer, prod.returncode, prod_stderr.decode("utf-8", errors="replace"))
