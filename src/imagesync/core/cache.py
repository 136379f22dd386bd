"""In-memory cache of the destination listing."""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from ..api_clients.base import DestinationEntry
from ..utils.logging import get_logger


class AsyncRWLock:
    """Reader/writer lock for coroutines.

    Any number of readers may hold the lock together; a writer holds it
    alone. Waiting writers block new readers so invalidation cannot starve.
    """

    def __init__(self):
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @asynccontextmanager
    async def read(self):
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer and self._writers_waiting == 0)
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @asynccontextmanager
    async def write(self):
        async with self._cond:
            self._writers_waiting += 1
            try:
                await self._cond.wait_for(lambda: not self._writer and self._readers == 0)
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()


class DestinationCache:
    """Most recent destination listing, valid until the next successful mutation.

    Never expires by time. ``get`` takes the shared side of the lock,
    ``set`` and ``invalidate`` the exclusive side.
    """

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)
        self._lock = AsyncRWLock()
        self._entries: Optional[List[DestinationEntry]] = None
        self._stored_at: Optional[datetime] = None

    async def get(self) -> Optional[List[DestinationEntry]]:
        """Return a copy of the cached listing, or None when a fresh listing is needed."""
        async with self._lock.read():
            if self._entries is None:
                return None
            return list(self._entries)

    async def set(self, entries: List[DestinationEntry]):
        async with self._lock.write():
            self._entries = list(entries)
            self._stored_at = datetime.now(timezone.utc)
        self.logger.debug("Destination listing cached", files=len(entries))

    async def invalidate(self):
        async with self._lock.write():
            self._entries = None
            self._stored_at = None
        self.logger.debug("Destination cache invalidated")

    @property
    def is_valid(self) -> bool:
        return self._entries is not None

    @property
    def stored_at(self) -> Optional[datetime]:
        return self._stored_at
