"""Operation Coordinator - single-flight admission for background operations.

Long-running requests (builds, deployments, TaskRuns) are admitted here,
recorded in the snapshot store, and run as detached asyncio tasks so that the
HTTP response can be sent before any real work starts. At most one admitted
operation exists at a time; the admission flag is released exactly once when
the task finishes, whatever the outcome.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Set

from core.errors import DaemonError, OperationTimeoutError
from core.logging import bound_contextvars, get_logger
from models.state import OperationStatus
from services.snapshot import SnapshotStore

logger = get_logger(__name__)


@dataclass
class OperationContext:
    """Execution context handed to an operation body."""
    name: str
    status: OperationStatus
    timeout: float
    started_at: float = field(default_factory=lambda: asyncio.get_running_loop().time())

    @property
    def deadline(self) -> float:
        """Event loop time at which the operation is cancelled."""
        return self.started_at + self.timeout

    def remaining(self) -> float:
        return max(0.0, self.deadline - asyncio.get_running_loop().time())


OperationBody = Callable[[OperationContext], Awaitable[None]]


async def _own_timeouts(work: Awaitable[None], name: str) -> None:
    """Await ``work``, reporting a timeout it raises itself as a plain failure.

    Only the enclosing ``wait_for`` deadline counts as the operation timing
    out; a helper giving up on a secret or a pod is an ordinary error.
    """
    try:
        await work
    except asyncio.TimeoutError as e:
        raise DaemonError(str(e) or f"{name} step timed out") from e


class OperationCoordinator:
    """Admission gate plus detached task launcher.

    The admission flag is a plain boolean: test-and-set happens without an
    await in between, so it is atomic on the event loop and independent of the
    snapshot store's lock.
    """

    def __init__(self, store: SnapshotStore):
        self._store = store
        self._admitted = False
        self._current: Optional[asyncio.Task] = None
        self._detached: Set[asyncio.Task] = set()

    @property
    def busy(self) -> bool:
        return self._admitted

    @property
    def current(self) -> Optional[asyncio.Task]:
        """Task of the admitted operation, if any."""
        return self._current

    def try_begin(self) -> bool:
        """Atomically claim the gate. False means another operation holds it."""
        if self._admitted:
            return False
        self._admitted = True
        return True

    def end(self) -> None:
        """Release the gate."""
        self._admitted = False
        self._current = None

    # =========================================================================
    # ADMITTED OPERATIONS
    # =========================================================================

    async def submit(
        self,
        name: str,
        status: OperationStatus,
        body: OperationBody,
        timeout: float,
    ) -> Optional[asyncio.Task]:
        """Admit an operation, publish its status, and launch it.

        Returns the task handle, or None when another operation is in flight.
        The body has not started running when this returns.
        """
        if not self.try_begin():
            logger.info("Operation rejected, another operation is in progress", operation=name)
            return None

        try:
            await self._store.set_operation_status(status)
        except BaseException:
            self.end()
            raise

        ctx = OperationContext(name=name, status=status, timeout=timeout)
        return self.spawn(ctx, body)

    def spawn(self, ctx: OperationContext, body: OperationBody) -> asyncio.Task:
        """Launch an already-admitted body; the gate is released when it ends."""
        task = asyncio.create_task(self._run(ctx, body), name=f"operation:{ctx.name}")
        self._current = task
        logger.info("Operation started", operation=ctx.name, status=ctx.status.value, timeout=ctx.timeout)
        return task

    async def _run(self, ctx: OperationContext, body: OperationBody) -> None:
        try:
            try:
                with bound_contextvars(operation=ctx.name):
                    await asyncio.wait_for(_own_timeouts(body(ctx), ctx.name), timeout=ctx.timeout)
            except asyncio.TimeoutError:
                error = OperationTimeoutError(ctx.name, ctx.timeout)
                logger.error("Operation timed out", operation=ctx.name, timeout=ctx.timeout)
                await self._store.set_operation_status(OperationStatus.IDLE, error)
            except asyncio.CancelledError:
                logger.warning("Operation cancelled", operation=ctx.name)
                await self._store.set_operation_status(OperationStatus.IDLE, f"{ctx.name} cancelled")
                raise
            except Exception as e:
                logger.error("Operation failed", operation=ctx.name, error=str(e))
                await self._store.set_operation_status(OperationStatus.IDLE, e)
            else:
                logger.info("Operation completed", operation=ctx.name)
                await self._store.set_operation_status(OperationStatus.IDLE)
        finally:
            # Status is back to idle before the gate opens, so a newly admitted
            # operation can never have its status overwritten by this one.
            self.end()

    # =========================================================================
    # UNGATED FIRE-AND-FORGET WORK
    # =========================================================================

    def spawn_detached(
        self,
        name: str,
        body: Callable[[], Awaitable[None]],
        timeout: float,
    ) -> asyncio.Task:
        """Run work that does not take the gate (e.g. git sync).

        Failures are logged only; they never touch the operation status.
        """

        async def _run_detached():
            try:
                await asyncio.wait_for(_own_timeouts(body(), name), timeout=timeout)
                logger.info("Background task completed", task=name)
            except asyncio.TimeoutError:
                logger.error("Background task timed out", task=name, timeout=timeout)
            except asyncio.CancelledError:
                logger.debug("Background task cancelled", task=name)
                raise
            except Exception as e:
                logger.error("Background task failed", task=name, error=str(e))

        task = asyncio.create_task(_run_detached(), name=f"background:{name}")
        self._detached.add(task)
        task.add_done_callback(self._detached.discard)
        return task

    async def shutdown(self) -> None:
        """Cancel in-flight work on daemon exit."""
        tasks = list(self._detached)
        if self._current is not None:
            tasks.append(self._current)
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
