"""Per-aggregate locks serializing transitions inside one process."""

import asyncio
from contextlib import asynccontextmanager


class KeyedLocks:
    """Hand out one ``asyncio.Lock`` per key (e.g. ``completion:42``).

    A lock lives only while some caller holds or waits for it, so keys that
    are used once do not accumulate.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]
