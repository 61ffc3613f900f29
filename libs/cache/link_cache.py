"""Read-through cache of the link list of each chat.

Cache failures are logged and treated as misses, they never fail the
operation that touched the cache.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import TypeAdapter, ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from libs.core.models import Link

logger = logging.getLogger(__name__)

_LINK_LIST = TypeAdapter(List[Link])


def link_list_key(chat_id: int) -> str:
    return f"links:{chat_id}"


class LinkListCache(ABC):
    @abstractmethod
    async def get(self, chat_id: int) -> Optional[List[Link]]:
        """Return cached links or ``None`` on a miss."""

    @abstractmethod
    async def set(self, chat_id: int, links: List[Link]) -> None:
        ...

    @abstractmethod
    async def invalidate(self, chat_id: int) -> None:
        ...


class RedisLinkListCache(LinkListCache):
    def __init__(self, redis: Redis, ttl: int = 3600) -> None:
        self.redis = redis
        self.ttl = ttl

    async def get(self, chat_id: int) -> Optional[List[Link]]:
        key = link_list_key(chat_id)
        try:
            raw = await self.redis.get(key)
        except RedisError as exc:
            logger.warning("Link cache get failed for chat %d: %s", chat_id, exc)
            return None
        if raw is None:
            return None
        try:
            return _LINK_LIST.validate_json(raw)
        except ValidationError:
            logger.warning("Dropping unreadable link cache entry for chat %d", chat_id)
            await self.invalidate(chat_id)
            return None

    async def set(self, chat_id: int, links: List[Link]) -> None:
        try:
            await self.redis.set(
                link_list_key(chat_id), _LINK_LIST.dump_json(links), ex=self.ttl
            )
        except RedisError as exc:
            logger.warning("Link cache set failed for chat %d: %s", chat_id, exc)

    async def invalidate(self, chat_id: int) -> None:
        try:
            await self.redis.delete(link_list_key(chat_id))
        except RedisError as exc:
            logger.warning("Link cache invalidation failed for chat %d: %s", chat_id, exc)


class InMemoryLinkListCache(LinkListCache):
    """Process-local cache used when no Redis URL is configured."""

    def __init__(self, ttl: float = 3600, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[int, Tuple[float, List[Link]]] = {}

    async def get(self, chat_id: int) -> Optional[List[Link]]:
        entry = self._entries.get(chat_id)
        if entry is None:
            return None
        expires_at, links = entry
        if self._clock() >= expires_at:
            del self._entries[chat_id]
            return None
        return [link.model_copy(deep=True) for link in links]

    async def set(self, chat_id: int, links: List[Link]) -> None:
        self._entries[chat_id] = (
            self._clock() + self.ttl,
            [link.model_copy(deep=True) for link in links],
        )

    async def invalidate(self, chat_id: int) -> None:
        self._entries.pop(chat_id, None)


__all__ = [
    "LinkListCache",
    "RedisLinkListCache",
    "InMemoryLinkListCache",
    "link_list_key",
]
