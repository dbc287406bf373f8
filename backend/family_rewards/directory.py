"""Read-through lookup of children's display names.

Names are cached per id for ``ttl_seconds``; a renamed child shows the old
name for at most that long unless ``invalidate`` is called.
"""

import os
import time

from sqlalchemy.ext.asyncio import AsyncSession

from family_rewards.models import Child

DIRECTORY_TTL_SECONDS = float(os.getenv("DIRECTORY_TTL_SECONDS", "300"))


class DirectoryCache:
    def __init__(self, ttl_seconds: float = DIRECTORY_TTL_SECONDS, clock=time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[tuple[str, int], tuple[float, str]] = {}

    def _cached(self, key: tuple[str, int]) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, name = entry
        if self._clock() - stored_at > self.ttl_seconds:
            del self._entries[key]
            return None
        return name

    async def _lookup(self, db: AsyncSession, model, kind: str, record_id: int, attr: str) -> str:
        key = (kind, record_id)
        name = self._cached(key)
        if name is not None:
            return name
        record = await db.get(model, record_id)
        name = getattr(record, attr) if record is not None else f"{kind} {record_id}"
        self._entries[key] = (self._clock(), name)
        return name

    async def child_name(self, db: AsyncSession, child_id: int) -> str:
        return await self._lookup(db, Child, "child", child_id, "first_name")

    def invalidate(self, kind: str | None = None, record_id: int | None = None) -> None:
        """Drop one entry, all entries of a kind, or everything."""
        if kind is not None and record_id is not None:
            self._entries.pop((kind, record_id), None)
            return
        if kind is not None:
            for key in [k for k in self._entries if k[0] == kind]:
                del self._entries[key]
            return
        self._entries.clear()


directory = DirectoryCache()
