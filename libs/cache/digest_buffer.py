"""Per-chat buffers of updates waiting for the next digest."""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import TypeAdapter
from redis.asyncio import Redis

from libs.core.models import LinkUpdate

logger = logging.getLogger(__name__)

DIGEST_KEY_PREFIX = "digest:updates:"

_UPDATES = TypeAdapter(List[LinkUpdate])


def digest_key(chat_id: int) -> str:
    return f"{DIGEST_KEY_PREFIX}{chat_id}"


class DigestBuffer(ABC):
    @abstractmethod
    async def add(self, chat_id: int, update: LinkUpdate) -> None:
        ...

    @abstractmethod
    async def get(self, chat_id: int) -> List[LinkUpdate]:
        """Buffered updates in insertion order."""

    @abstractmethod
    async def clear(self, chat_id: int, count: Optional[int] = None) -> None:
        """Drop the first ``count`` updates, or all of them."""

    @abstractmethod
    async def chat_ids(self) -> List[int]:
        """Chats that currently have a buffer."""


class RedisDigestBuffer(DigestBuffer):
    """JSON array per chat under ``digest:updates:{chat_id}`` with a TTL.

    Appends are read-modify-write guarded by a per-chat lock of this process.
    """

    def __init__(self, redis: Redis, ttl: int = 86400) -> None:
        self.redis = redis
        self.ttl = ttl
        self._locks: Dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def add(self, chat_id: int, update: LinkUpdate) -> None:
        key = digest_key(chat_id)
        async with self._locks[chat_id]:
            raw = await self.redis.get(key)
            updates = _UPDATES.validate_json(raw) if raw else []
            updates.append(update)
            await self.redis.set(
                key, _UPDATES.dump_json(updates, by_alias=True), ex=self.ttl
            )

    async def get(self, chat_id: int) -> List[LinkUpdate]:
        raw = await self.redis.get(digest_key(chat_id))
        if not raw:
            return []
        return _UPDATES.validate_json(raw)

    async def clear(self, chat_id: int, count: Optional[int] = None) -> None:
        key = digest_key(chat_id)
        async with self._locks[chat_id]:
            if count is None:
                await self.redis.delete(key)
                return
            raw = await self.redis.get(key)
            remaining = (_UPDATES.validate_json(raw) if raw else [])[count:]
            if remaining:
                await self.redis.set(
                    key, _UPDATES.dump_json(remaining, by_alias=True), ex=self.ttl
                )
            else:
                await self.redis.delete(key)

    async def chat_ids(self) -> List[int]:
        ids: List[int] = []
        async for key in self.redis.scan_iter(match=f"{DIGEST_KEY_PREFIX}*"):
            suffix = key[len(DIGEST_KEY_PREFIX):]
            try:
                ids.append(int(suffix))
            except ValueError:
                logger.warning("Ignoring malformed digest key %s", key)
        return sorted(ids)


class InMemoryDigestBuffer(DigestBuffer):
    """Process-local buffer; contents are lost on restart."""

    def __init__(self, ttl: float = 86400, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._buffers: Dict[int, Tuple[float, List[LinkUpdate]]] = {}

    def _live(self, chat_id: int) -> List[LinkUpdate]:
        entry = self._buffers.get(chat_id)
        if entry is None:
            return []
        expires_at, updates = entry
        if self._clock() >= expires_at:
            del self._buffers[chat_id]
            return []
        return updates

    async def add(self, chat_id: int, update: LinkUpdate) -> None:
        updates = self._live(chat_id)
        updates.append(update.model_copy(deep=True))
        self._buffers[chat_id] = (self._clock() + self.ttl, updates)

    async def get(self, chat_id: int) -> List[LinkUpdate]:
        return [u.model_copy(deep=True) for u in self._live(chat_id)]

    async def clear(self, chat_id: int, count: Optional[int] = None) -> None:
        remaining = self._live(chat_id)[count:] if count is not None else []
        if remaining:
            self._buffers[chat_id] = (self._buffers[chat_id][0], remaining)
        else:
            self._buffers.pop(chat_id, None)

    async def chat_ids(self) -> List[int]:
        return sorted(chat_id for chat_id in list(self._buffers) if self._live(chat_id))


__all__ = [
    "DigestBuffer",
    "RedisDigestBuffer",
    "InMemoryDigestBuffer",
    "digest_key",
    "DIGEST_KEY_PREFIX",
]
