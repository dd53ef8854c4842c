"""Shared-read / exclusive-write lock for asyncio.

Readers proceed together; a writer waits for active readers to drain and
excludes everyone while it holds the lock. Waiting writers block new readers
so a steady stream of status polls cannot starve a refresh.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class ReadWriteLock:
    """Reader/writer lock bound to the running event loop."""

    def __init__(self):
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @property
    def readers(self) -> int:
        return self._readers

    @property
    def write_locked(self) -> bool:
        return self._writer

    async def acquire_read(self) -> None:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer and self._waiting_writers == 0)
            self._readers += 1

    async def release_read(self) -> None:
        self._readers -= 1
        if self._readers == 0:
            await asyncio.shield(self._notify())

    async def acquire_write(self) -> None:
        async with self._cond:
            self._waiting_writers += 1
            acquired = False
            try:
                await self._cond.wait_for(lambda: not self._writer and self._readers == 0)
                acquired = True
            finally:
                self._waiting_writers -= 1
                if not acquired:
                    # Cancelled while queued; readers held back for us may go
                    self._cond.notify_all()
            self._writer = True

    async def release_write(self) -> None:
        self._writer = False
        await asyncio.shield(self._notify())

    async def _notify(self) -> None:
        # Callers update the counters before this is scheduled
        async with self._cond:
            self._cond.notify_all()

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        await self.acquire_read()
        try:
            yield
        finally:
            await self.release_read()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        await self.acquire_write()
        try:
            yield
        finally:
            await self.release_write()
