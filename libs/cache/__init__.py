"""Redis-backed caches with in-memory equivalents."""

from __future__ import annotations

from typing import Optional

import redis.asyncio as redis

from libs.core.settings import Settings

from .digest_buffer import (
    DigestBuffer,
    InMemoryDigestBuffer,
    RedisDigestBuffer,
    digest_key,
)
from .link_cache import (
    InMemoryLinkListCache,
    LinkListCache,
    RedisLinkListCache,
    link_list_key,
)


def create_redis(settings: Settings) -> Optional[redis.Redis]:
    """Redis client for ``CACHE_URL``; ``None`` selects the in-memory backends."""
    if not settings.cache_url:
        return None
    return redis.from_url(settings.cache_url, decode_responses=True)


def create_link_cache(settings: Settings, client: Optional[redis.Redis] = None) -> LinkListCache:
    if client is None:
        return InMemoryLinkListCache(ttl=settings.cache_ttl)
    return RedisLinkListCache(client, ttl=settings.cache_ttl)


def create_digest_buffer(settings: Settings, client: Optional[redis.Redis] = None) -> DigestBuffer:
    if client is None:
        return InMemoryDigestBuffer(ttl=settings.digest_ttl)
    return RedisDigestBuffer(client, ttl=settings.digest_ttl)


__all__ = [
    "DigestBuffer",
    "InMemoryDigestBuffer",
    "RedisDigestBuffer",
    "digest_key",
    "LinkListCache",
    "InMemoryLinkListCache",
    "RedisLinkListCache",
    "link_list_key",
    "create_redis",
    "create_link_cache",
    "create_digest_buffer",
]
