# services/locks.py
import asyncio
from contextlib import asynccontextmanager
from typing import Dict


class OrderLocks:
    """
    Per-order asyncio locks shared by the webhook handlers and both periodic
    jobs, so two runs never read and write the same order's sync state at
    the same time.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, order_id: str):
        key = str(order_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def is_locked(self, order_id: str) -> bool:
        lock = self._locks.get(str(order_id))
        return bool(lock and lock.locked())
