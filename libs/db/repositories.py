"""Repositories translating between ORM rows and domain models."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from libs.core import exceptions as exc
from libs.core.models import (
    Chat,
    ContentDetails,
    Link,
    LinkType,
    NotificationMode,
    as_utc,
    utcnow,
)

from . import models

DueCursor = Tuple[Optional[datetime], int]


def _unique(values: Iterable[str]) -> List[str]:
    seen: set[str] = set()
    result: List[str] = []
    for value in values:
        value = value.strip()
        if value and value not in seen:
            seen.add(value)
            result.append(value)
    return result


def _link_to_domain(row: models.Link, tags: List[str], filters: List[str]) -> Link:
    return Link(
        id=row.id,
        url=row.url,
        type=LinkType(row.type),
        tags=tags,
        filters=filters,
        last_checked=as_utc(row.last_checked),
        last_updated=as_utc(row.last_updated),
        created_at=as_utc(row.created_at) or utcnow(),
    )


class LinkRepo:
    """Storage of tracked links, their tags, filters and chat edges."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def save(self, link: Link) -> Link:
        if link.type == LinkType.UNKNOWN:
            raise exc.UnsupportedLinkTypeError(f"unsupported link type: {link.url}")
        if await self._row_by_url(link.url) is not None:
            raise exc.LinkAlreadyExistsError(f"link already exists: {link.url}")
        row = models.Link(
            url=link.url,
            type=link.type.value,
            last_checked=link.last_checked,
            last_updated=link.last_updated,
            created_at=link.created_at,
        )
        self.session.add(row)
        try:
            await self.session.flush()
        except IntegrityError as err:
            raise exc.LinkAlreadyExistsError(f"link already exists: {link.url}") from err
        tags = await self.save_tags(row.id, link.tags)
        filters = await self.save_filters(row.id, link.filters)
        return _link_to_domain(row, tags, filters)

    async def find_by_id(self, link_id: int) -> Link:
        row = await self.session.get(models.Link, link_id)
        if row is None:
            raise exc.LinkNotFoundError(f"link {link_id} not found")
        return (await self._to_domain([row]))[0]

    async def find_by_url(self, url: str) -> Link:
        row = await self._row_by_url(url)
        if row is None:
            raise exc.LinkNotFoundError(f"link not found: {url}")
        return (await self._to_domain([row]))[0]

    async def find_by_chat(self, chat_id: int) -> List[Link]:
        stmt = (
            select(models.Link)
            .join(models.ChatLink, models.ChatLink.link_id == models.Link.id)
            .where(models.ChatLink.chat_id == chat_id)
            .order_by(models.Link.id)
        )
        res = await self.session.execute(stmt)
        return await self._to_domain(res.scalars().all())

    async def find_by_tag(self, chat_id: int, tag: str) -> List[Link]:
        stmt = (
            select(models.Link)
            .join(models.ChatLink, models.ChatLink.link_id == models.Link.id)
            .join(models.LinkTag, models.LinkTag.link_id == models.Link.id)
            .join(models.Tag, models.Tag.id == models.LinkTag.tag_id)
            .where(models.ChatLink.chat_id == chat_id, models.Tag.name == tag)
            .order_by(models.Link.id)
        )
        res = await self.session.execute(stmt)
        return await self._to_domain(res.scalars().all())

    async def all_tags(self, chat_id: int) -> List[str]:
        stmt = (
            select(models.Tag.name)
            .join(models.LinkTag, models.LinkTag.tag_id == models.Tag.id)
            .join(models.ChatLink, models.ChatLink.link_id == models.LinkTag.link_id)
            .where(models.ChatLink.chat_id == chat_id)
            .distinct()
            .order_by(models.Tag.name)
        )
        res = await self.session.execute(stmt)
        return list(res.scalars().all())

    async def delete_by_url(self, url: str, chat_id: int) -> Link:
        """Remove the chat edge; the link itself goes once no chat follows it."""
        row = await self._row_by_url(url, for_update=True)
        if row is None:
            raise exc.LinkNotFoundError(f"link not found: {url}")
        link = (await self._to_domain([row]))[0]
        res = await self.session.execute(
            delete(models.ChatLink)
            .where(models.ChatLink.chat_id == chat_id, models.ChatLink.link_id == row.id)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 0:
            raise exc.LinkNotFoundError(f"link not tracked by chat {chat_id}: {url}")
        remaining = await self.session.scalar(
            select(func.count())
            .select_from(models.ChatLink)
            .where(models.ChatLink.link_id == row.id)
        )
        if not remaining:
            await self._delete_link(row.id)
        return link

    async def update(self, link: Link) -> bool:
        """Persist probe results; returns True if ``last_updated`` advanced.

        Both timestamps only ever move forward, an older write is a no-op.
        """
        table = models.Link
        advanced = False
        if link.last_updated is not None:
            res = await self.session.execute(
                update(table)
                .where(
                    table.id == link.id,
                    or_(table.last_updated.is_(None), table.last_updated < link.last_updated),
                )
                .values(last_updated=link.last_updated)
                .execution_options(synchronize_session=False)
            )
            advanced = res.rowcount > 0
        if link.last_checked is not None:
            await self.session.execute(
                update(table)
                .where(
                    table.id == link.id,
                    or_(table.last_checked.is_(None), table.last_checked < link.last_checked),
                )
                .values(last_checked=link.last_checked)
                .execution_options(synchronize_session=False)
            )
        return advanced

    async def add_chat_link(self, chat_id: int, link_id: int) -> None:
        if await self.session.get(models.Chat, chat_id) is None:
            raise exc.ChatNotFoundError(f"chat {chat_id} not found")
        stmt = select(models.Link).where(models.Link.id == link_id).with_for_update()
        if (await self.session.execute(stmt)).scalar_one_or_none() is None:
            raise exc.LinkNotFoundError(f"link {link_id} not found")
        await self.session.execute(
            self._insert(models.ChatLink)
            .values(chat_id=chat_id, link_id=link_id, created_at=utcnow())
            .on_conflict_do_nothing(index_elements=["chat_id", "link_id"])
        )

    async def find_due(
        self,
        limit: int,
        offset: int = 0,
        *,
        checked_before: Optional[datetime] = None,
        after: Optional[DueCursor] = None,
    ) -> List[Link]:
        """Links ordered by (last_checked ASC NULLS FIRST, id ASC).

        ``checked_before`` keeps only links not checked since that instant and
        ``after`` continues from the (last_checked, id) of a previous page.
        """
        table = models.Link
        stmt = select(table)
        if checked_before is not None:
            stmt = stmt.where(
                or_(table.last_checked.is_(None), table.last_checked < checked_before)
            )
        if after is not None:
            cursor_checked, cursor_id = after
            if cursor_checked is None:
                stmt = stmt.where(
                    or_(
                        and_(table.last_checked.is_(None), table.id > cursor_id),
                        table.last_checked.is_not(None),
                    )
                )
            else:
                stmt = stmt.where(
                    or_(
                        table.last_checked > cursor_checked,
                        and_(table.last_checked == cursor_checked, table.id > cursor_id),
                    )
                )
        stmt = (
            stmt.order_by(table.last_checked.asc().nulls_first(), table.id.asc())
            .limit(limit)
            .offset(offset)
        )
        res = await self.session.execute(stmt)
        return await self._to_domain(res.scalars().all())

    async def count(self) -> int:
        return int(await self.session.scalar(select(func.count()).select_from(models.Link)) or 0)

    async def save_tags(self, link_id: int, tags: Sequence[str]) -> List[str]:
        """Replace the tag set of a link, keeping the given order."""
        await self.session.execute(
            delete(models.LinkTag)
            .where(models.LinkTag.link_id == link_id)
            .execution_options(synchronize_session=False)
        )
        names = _unique(tags)
        for position, name in enumerate(names):
            tag_id = await self._tag_id(name)
            self.session.add(models.LinkTag(link_id=link_id, tag_id=tag_id, position=position))
        await self.session.flush()
        return names

    async def save_filters(self, link_id: int, filters: Sequence[str]) -> List[str]:
        """Replace the filter set of a link, keeping the given order."""
        await self.session.execute(
            delete(models.Filter)
            .where(models.Filter.link_id == link_id)
            .execution_options(synchronize_session=False)
        )
        values = _unique(filters)
        for position, value in enumerate(values):
            self.session.add(models.Filter(link_id=link_id, value=value, position=position))
        await self.session.flush()
        return values

    async def add_tag(self, link_id: int, tag: str) -> None:
        tag = tag.strip()
        if not tag:
            raise exc.ValidationError("tag must not be empty")
        tag_id = await self._tag_id(tag)
        if await self.session.get(models.LinkTag, (link_id, tag_id)) is not None:
            raise exc.TagAlreadyExistsError(f"tag already exists: {tag}")
        position = await self.session.scalar(
            select(func.coalesce(func.max(models.LinkTag.position) + 1, 0)).where(
                models.LinkTag.link_id == link_id
            )
        )
        self.session.add(models.LinkTag(link_id=link_id, tag_id=tag_id, position=position or 0))
        await self.session.flush()

    async def remove_tag(self, link_id: int, tag: str) -> None:
        tag_id = await self.session.scalar(select(models.Tag.id).where(models.Tag.name == tag))
        if tag_id is None:
            raise exc.TagNotFoundError(f"tag not found: {tag}")
        res = await self.session.execute(
            delete(models.LinkTag)
            .where(models.LinkTag.link_id == link_id, models.LinkTag.tag_id == tag_id)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 0:
            raise exc.TagNotFoundError(f"tag not found: {tag}")

    # ------------------------------------------------------------------

    async def _row_by_url(self, url: str, for_update: bool = False) -> Optional[models.Link]:
        stmt = select(models.Link).where(models.Link.url == url)
        if for_update:
            stmt = stmt.with_for_update()
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def _tag_id(self, name: str) -> int:
        stmt = select(models.Tag.id).where(models.Tag.name == name)
        tag_id = await self.session.scalar(stmt)
        if tag_id is not None:
            return tag_id
        # Another transaction may create the same tag concurrently
        await self.session.execute(
            self._insert(models.Tag).values(name=name).on_conflict_do_nothing(
                index_elements=["name"]
            )
        )
        return await self.session.scalar(stmt)

    def _insert(self, table):
        if self.session.bind.dialect.name == "postgresql":
            return pg_insert(table)
        return sqlite_insert(table)

    async def _delete_link(self, link_id: int) -> None:
        for table in (models.LinkTag, models.Filter, models.ContentDetails, models.ChatLink):
            await self.session.execute(
                delete(table)
                .where(table.link_id == link_id)
                .execution_options(synchronize_session=False)
            )
        await self.session.execute(
            delete(models.Link)
            .where(models.Link.id == link_id)
            .execution_options(synchronize_session=False)
        )

    async def _to_domain(self, rows: Sequence[models.Link]) -> List[Link]:
        if not rows:
            return []
        ids = [row.id for row in rows]
        tags: Dict[int, List[str]] = defaultdict(list)
        res = await self.session.execute(
            select(models.LinkTag.link_id, models.Tag.name)
            .join(models.Tag, models.Tag.id == models.LinkTag.tag_id)
            .where(models.LinkTag.link_id.in_(ids))
            .order_by(models.LinkTag.link_id, models.LinkTag.position)
        )
        for link_id, name in res.all():
            tags[link_id].append(name)
        filters: Dict[int, List[str]] = defaultdict(list)
        res = await self.session.execute(
            select(models.Filter.link_id, models.Filter.value)
            .where(models.Filter.link_id.in_(ids))
            .order_by(models.Filter.link_id, models.Filter.position)
        )
        for link_id, value in res.all():
            filters[link_id].append(value)
        return [_link_to_domain(row, tags[row.id], filters[row.id]) for row in rows]


class ChatRepo:
    """Storage of chats, their notification settings and followed links."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def save(self, chat: Chat) -> Chat:
        row = await self.session.get(models.Chat, chat.id)
        if row is None:
            row = models.Chat(
                id=chat.id,
                notification_mode=chat.notification_mode.value,
                digest_hour=chat.digest_hour,
                digest_minute=chat.digest_minute,
                created_at=chat.created_at,
                updated_at=chat.updated_at,
            )
            self.session.add(row)
        else:
            row.updated_at = utcnow()
        await self.session.flush()
        return (await self._to_domain([row]))[0]

    async def find_by_id(self, chat_id: int) -> Chat:
        row = await self.session.get(models.Chat, chat_id)
        if row is None:
            raise exc.ChatNotFoundError(f"chat {chat_id} not found")
        return (await self._to_domain([row]))[0]

    async def delete(self, chat_id: int) -> None:
        if await self.session.get(models.Chat, chat_id) is None:
            raise exc.ChatNotFoundError(f"chat {chat_id} not found")
        await self.session.execute(
            delete(models.ChatLink)
            .where(models.ChatLink.chat_id == chat_id)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(
            delete(models.Chat)
            .where(models.Chat.id == chat_id)
            .execution_options(synchronize_session=False)
        )

    async def add_link(self, chat_id: int, link_id: int) -> None:
        await LinkRepo(self.session).add_chat_link(chat_id, link_id)

    async def remove_link(self, chat_id: int, link_id: int) -> None:
        res = await self.session.execute(
            delete(models.ChatLink)
            .where(models.ChatLink.chat_id == chat_id, models.ChatLink.link_id == link_id)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 0:
            raise exc.LinkNotFoundError(f"link {link_id} not tracked by chat {chat_id}")

    async def exists(self, chat_id: int, link_id: int) -> bool:
        return await self.session.get(models.ChatLink, (chat_id, link_id)) is not None

    async def find_by_link(self, link_id: int) -> List[Chat]:
        stmt = (
            select(models.Chat)
            .join(models.ChatLink, models.ChatLink.chat_id == models.Chat.id)
            .where(models.ChatLink.link_id == link_id)
            .order_by(models.Chat.id)
        )
        res = await self.session.execute(stmt)
        return await self._to_domain(res.scalars().all())

    async def find_all(self) -> List[Chat]:
        res = await self.session.execute(select(models.Chat).order_by(models.Chat.id))
        return await self._to_domain(res.scalars().all())

    async def update_notification_settings(
        self,
        chat_id: int,
        mode: NotificationMode,
        digest_hour: Optional[int] = None,
        digest_minute: Optional[int] = None,
    ) -> Chat:
        if mode == NotificationMode.DIGEST:
            if digest_hour is None or digest_minute is None:
                raise exc.ValidationError("digest mode requires digest hour and minute")
            if not 0 <= digest_hour <= 23 or not 0 <= digest_minute <= 59:
                raise exc.ValidationError("digest time must be a valid hour and minute")
        else:
            digest_hour = digest_minute = None
        row = await self.session.get(models.Chat, chat_id)
        if row is None:
            raise exc.ChatNotFoundError(f"chat {chat_id} not found")
        row.notification_mode = mode.value
        row.digest_hour = digest_hour
        row.digest_minute = digest_minute
        row.updated_at = utcnow()
        await self.session.flush()
        return (await self._to_domain([row]))[0]

    async def _to_domain(self, rows: Sequence[models.Chat]) -> List[Chat]:
        if not rows:
            return []
        links: Dict[int, List[int]] = defaultdict(list)
        res = await self.session.execute(
            select(models.ChatLink.chat_id, models.ChatLink.link_id)
            .where(models.ChatLink.chat_id.in_([row.id for row in rows]))
            .order_by(models.ChatLink.chat_id, models.ChatLink.link_id)
        )
        for chat_id, link_id in res.all():
            links[chat_id].append(link_id)
        return [
            Chat(
                id=row.id,
                links=links[row.id],
                notification_mode=NotificationMode(row.notification_mode),
                digest_hour=row.digest_hour,
                digest_minute=row.digest_minute,
                created_at=as_utc(row.created_at) or utcnow(),
                updated_at=as_utc(row.updated_at) or utcnow(),
            )
            for row in rows
        ]


class ContentDetailsRepo:
    """Latest upstream details per link."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert(self, details: ContentDetails) -> None:
        row = await self.session.get(models.ContentDetails, details.link_id)
        if row is None:
            row = models.ContentDetails(link_id=details.link_id)
            self.session.add(row)
        row.link_type = details.link_type.value
        row.title = details.title
        row.author = details.author
        row.updated_at = details.updated_at
        row.content_text = details.content_text
        await self.session.flush()

    async def find_by_link_id(self, link_id: int) -> ContentDetails:
        row = await self.session.get(models.ContentDetails, link_id)
        if row is None:
            raise exc.DetailsNotFoundError(f"no details for link {link_id}")
        return ContentDetails(
            link_id=row.link_id,
            link_type=LinkType(row.link_type),
            title=row.title,
            author=row.author,
            updated_at=as_utc(row.updated_at),
            content_text=row.content_text,
        )


__all__ = ["LinkRepo", "ChatRepo", "ContentDetailsRepo", "DueCursor"]
