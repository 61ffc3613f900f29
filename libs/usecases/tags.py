"""Tagging of tracked links."""

from __future__ import annotations

from typing import List

from libs.cache import LinkListCache
from libs.core.exceptions import LinkNotFoundError
from libs.db import ChatRepo, Database, LinkRepo
from libs.core.models import Link


class TagService:
    """Tags belong to the link, so every follower sees a change."""

    def __init__(self, database: Database, cache: LinkListCache) -> None:
        self.database = database
        self.cache = cache

    async def add_tag(self, chat_id: int, url: str, tag: str) -> None:
        async with self.database.session() as session:
            link = await self._tracked_link(session, chat_id, url)
            await LinkRepo(session).add_tag(link.id, tag)
            followers = await ChatRepo(session).find_by_link(link.id)
        for chat in followers:
            await self.cache.invalidate(chat.id)

    async def remove_tag(self, chat_id: int, url: str, tag: str) -> None:
        async with self.database.session() as session:
            link = await self._tracked_link(session, chat_id, url)
            await LinkRepo(session).remove_tag(link.id, tag)
            followers = await ChatRepo(session).find_by_link(link.id)
        for chat in followers:
            await self.cache.invalidate(chat.id)

    async def links_by_tag(self, chat_id: int, tag: str) -> List[Link]:
        async with self.database.session() as session:
            await ChatRepo(session).find_by_id(chat_id)
            return await LinkRepo(session).find_by_tag(chat_id, tag)

    async def all_tags(self, chat_id: int) -> List[str]:
        async with self.database.session() as session:
            await ChatRepo(session).find_by_id(chat_id)
            return await LinkRepo(session).all_tags(chat_id)

    @staticmethod
    async def _tracked_link(session, chat_id: int, url: str) -> Link:
        await ChatRepo(session).find_by_id(chat_id)
        link = await LinkRepo(session).find_by_url(url.strip())
        if not await ChatRepo(session).exists(chat_id, link.id):
            raise LinkNotFoundError(f"link not tracked by chat {chat_id}: {url}")
        return link


__all__ = ["TagService"]
