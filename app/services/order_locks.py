"""
Per-order asyncio locks so create/track/retry/reschedule on one order never interleave
inside this process. Locks are dropped once no task holds or waits on them.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class OrderLocks:
    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, order_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(order_id, asyncio.Lock())
        self._users[order_id] = self._users.get(order_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[order_id] -= 1
            if self._users[order_id] == 0:
                del self._users[order_id]
                self._locks.pop(order_id, None)

    def __len__(self) -> int:
        return len(self._locks)
