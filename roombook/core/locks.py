"""Per-room mutual exclusion for check-and-commit critical sections."""

import asyncio
import logging
from collections import Counter
from collections.abc import AsyncIterator, Hashable
from contextlib import asynccontextmanager

from roombook.core.exceptions import RoomBusyError

logger = logging.getLogger(__name__)


class RoomLockRegistry:
    """One asyncio lock per room, never a global one.

    Unrelated rooms proceed in parallel; writers on the same room queue up.
    Waiting for the lock and the work done while holding it are each bounded
    by ``timeout`` seconds. Exceeding either raises :class:`RoomBusyError`
    after the protected block has been unwound, so no half-applied write
    survives.

    A room's lock is dropped once nobody holds or waits for it. Locks are
    bound to the event loop they are first contended on; create one registry
    per loop.
    """

    def __init__(self, timeout: float = 5.0) -> None:
        self.timeout = timeout
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: Counter[Hashable] = Counter()

    def _lock_for(self, room_id: Hashable) -> asyncio.Lock:
        lock = self._locks.get(room_id)
        if lock is None:
            lock = self._locks[room_id] = asyncio.Lock()
        return lock

    def _leave(self, room_id: Hashable, lock: asyncio.Lock) -> None:
        self._users[room_id] -= 1
        if self._users[room_id] > 0:
            return
        del self._users[room_id]
        if not lock.locked() and self._locks.get(room_id) is lock:
            del self._locks[room_id]

    def is_locked(self, room_id: Hashable) -> bool:
        lock = self._locks.get(room_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, room_id: Hashable) -> AsyncIterator[asyncio.Timeout]:
        """Hold the room's lock, yielding the deadline of the protected block.

        Once a write has been handed to storage its outcome is what the caller
        must see, so callers clear the deadline (``deadline.reschedule(None)``)
        right before committing.
        """
        lock = self._lock_for(room_id)
        self._users[room_id] += 1
        try:
            try:
                async with asyncio.timeout(self.timeout):
                    await lock.acquire()
            except TimeoutError:
                logger.warning(f"Timed out waiting for room lock {room_id}")
                raise RoomBusyError(room_id) from None

            try:
                async with asyncio.timeout(self.timeout) as deadline:
                    yield deadline
            except TimeoutError:
                if not deadline.expired():
                    raise
                logger.warning(f"Room critical section exceeded {self.timeout}s for room {room_id}")
                raise RoomBusyError(room_id) from None
            finally:
                lock.release()
        finally:
            self._leave(room_id, lock)
