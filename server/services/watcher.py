"""Hot reload - rebuild the MPC images when the source tree changes."""

import asyncio
from pathlib import Path
from typing import Awaitable, Callable, Optional

from watchfiles import Change, awatch

from constants import HOT_RELOAD_IGNORED_DIRS, HOT_RELOAD_IGNORED_EXTENSIONS
from core.logging import get_logger

logger = get_logger(__name__)


def should_trigger(change: Change, path: str) -> bool:
    """Only writes and creations of visible, non-temporary source files count."""
    if change not in (Change.added, Change.modified):
        return False

    p = Path(path)
    if p.name.startswith("."):
        return False
    if p.suffix in HOT_RELOAD_IGNORED_EXTENSIONS:
        return False
    return not any(part in HOT_RELOAD_IGNORED_DIRS for part in p.parts)


class HotReloadWatcher:
    """Watches a directory tree and calls ``on_change`` after a quiet period.

    ``on_change`` returns False when the rebuild could not be admitted (another
    operation is running); the change is then dropped, not queued.
    """

    def __init__(
        self,
        root: Path,
        on_change: Callable[[], Awaitable[bool]],
        debounce: float = 2.0,
    ):
        self.root = Path(root)
        self.on_change = on_change
        self.debounce = debounce
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    async def start(self) -> None:
        if self._task is not None:
            logger.warning("Hot reload watcher already running")
            return
        if not self.root.is_dir():
            logger.warning("Hot reload disabled, directory not found", path=str(self.root))
            return

        self._stop_event.clear()
        self._task = asyncio.create_task(self._watch_loop(), name="hot-reload-watcher")
        logger.info("Hot reload watcher started", path=str(self.root), debounce=self.debounce)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop_event.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Hot reload watcher stopped")

    async def _watch_loop(self) -> None:
        debounce_ms = int(self.debounce * 1000)
        async for changes in awatch(
            self.root,
            watch_filter=should_trigger,
            debounce=debounce_ms,
            step=min(debounce_ms, 200),
            stop_event=self._stop_event,
        ):
            logger.info("File changes detected, triggering rebuild",
                        changed=len(changes), sample=sorted(p for _, p in changes)[:3])
            try:
                admitted = await self.on_change()
            except Exception as e:
                logger.error("Hot reload rebuild could not start", error=str(e))
                continue
            if not admitted:
                logger.info("Hot reload rebuild skipped, another operation is in progress")
