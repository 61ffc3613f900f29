"""Chat registration and link subscription management."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from libs.cache import LinkListCache
from libs.core.exceptions import LinkAlreadyExistsError, LinkNotFoundError, UnsupportedLinkTypeError
from libs.core.models import Chat, Link, LinkType, NotificationMode
from libs.db import ChatRepo, Database, LinkRepo
from libs.links import analyze_link

logger = logging.getLogger(__name__)


class LinkService:
    """Operations behind the scrapper HTTP surface.

    Each call runs in its own transaction. The chat's cached link list is
    invalidated after the commit and before the call returns.
    """

    def __init__(self, database: Database, cache: LinkListCache) -> None:
        self.database = database
        self.cache = cache

    async def register_chat(self, chat_id: int) -> Chat:
        async with self.database.session() as session:
            chat = await ChatRepo(session).save(Chat(id=chat_id))
        logger.info("Chat %d registered", chat_id)
        return chat

    async def delete_chat(self, chat_id: int) -> None:
        async with self.database.session() as session:
            chats = ChatRepo(session)
            links = LinkRepo(session)
            chat = await chats.find_by_id(chat_id)
            for link_id in chat.links:
                link = await links.find_by_id(link_id)
                await links.delete_by_url(link.url, chat_id)
            await chats.delete(chat_id)
        await self.cache.invalidate(chat_id)
        logger.info("Chat %d deleted", chat_id)

    async def add_link(
        self,
        chat_id: int,
        url: str,
        tags: Sequence[str] = (),
        filters: Sequence[str] = (),
    ) -> Link:
        url = url.strip()
        link_type = analyze_link(url)
        if link_type == LinkType.UNKNOWN:
            raise UnsupportedLinkTypeError(f"unsupported link: {url}")

        async with self.database.session() as session:
            chats = ChatRepo(session)
            links = LinkRepo(session)
            await chats.find_by_id(chat_id)
            try:
                link = await links.find_by_url(url)
            except LinkNotFoundError:
                link = await links.save(
                    Link(url=url, type=link_type, tags=list(tags), filters=list(filters))
                )
            else:
                if await chats.exists(chat_id, link.id):
                    raise LinkAlreadyExistsError(f"link already tracked: {url}")
            await links.add_chat_link(chat_id, link.id)
        await self.cache.invalidate(chat_id)
        logger.info("Chat %d started tracking %s", chat_id, url)
        return link

    async def remove_link(self, chat_id: int, url: str) -> Link:
        async with self.database.session() as session:
            await ChatRepo(session).find_by_id(chat_id)
            link = await LinkRepo(session).delete_by_url(url.strip(), chat_id)
        await self.cache.invalidate(chat_id)
        logger.info("Chat %d stopped tracking %s", chat_id, url)
        return link

    async def get_links(self, chat_id: int) -> List[Link]:
        cached = await self.cache.get(chat_id)
        if cached is not None:
            return cached
        async with self.database.session() as session:
            await ChatRepo(session).find_by_id(chat_id)
            links = await LinkRepo(session).find_by_chat(chat_id)
        await self.cache.set(chat_id, links)
        return links

    async def update_notification_settings(
        self,
        chat_id: int,
        mode: NotificationMode,
        digest_hour: Optional[int] = None,
        digest_minute: Optional[int] = None,
    ) -> Chat:
        async with self.database.session() as session:
            chat = await ChatRepo(session).update_notification_settings(
                chat_id, mode, digest_hour, digest_minute
            )
        logger.info("Chat %d switched to %s notifications", chat_id, mode.value)
        return chat


__all__ = ["LinkService"]
