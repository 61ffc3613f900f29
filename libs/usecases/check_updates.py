"""Update detection: probe a link, advance its watermark, fan out the event."""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from libs.cache import LinkListCache
from libs.core.exceptions import (
    InvalidURLError,
    NotFoundError,
    NotificationError,
    UpstreamError,
)
from libs.core.models import (
    Chat,
    ContentDetails,
    Link,
    LinkType,
    LinkUpdate,
    NotificationMode,
    UpdateInfo,
    as_utc,
    utcnow,
)
from libs.db import ChatRepo, ContentDetailsRepo, Database, LinkRepo
from libs.links import LinkUpdater, LinkUpdaterFactory
from libs.metrics import (
    LINK_UPDATES_PROCESSED,
    NOTIFICATIONS,
    SCRAPE_DURATION,
    SCRAPE_REQUESTS,
)
from libs.notify import BotNotifier

from .digest import DigestService

logger = logging.getLogger(__name__)

# Probe failures that only skip this check
PROBE_ERRORS = (UpstreamError, NotFoundError, InvalidURLError)

DESCRIPTIONS = {
    LinkType.GITHUB: "GitHub repository updated",
    LinkType.STACKOVERFLOW: "StackOverflow question updated",
}


def describe(link_type: LinkType) -> str:
    return DESCRIPTIONS.get(link_type, "Link updated")


def is_filtered(filters: Sequence[str], info: Optional[UpdateInfo]) -> bool:
    """True if a ``user=<name>`` filter matches the update author."""
    if info is None or not info.author:
        return False
    author = info.author.lower()
    for item in filters:
        key, sep, value = item.partition("=")
        if not sep or key.strip().lower() != "user":
            logger.debug("Ignoring unsupported filter %r", item)
            continue
        if value.strip().lower() == author:
            return True
    return False


class LinkUpdateChecker:
    def __init__(
        self,
        database: Database,
        updaters: LinkUpdaterFactory,
        notifier: BotNotifier,
        digest: Optional[DigestService] = None,
        link_cache: Optional[LinkListCache] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.database = database
        self.updaters = updaters
        self.notifier = notifier
        self.digest = digest
        self.link_cache = link_cache
        self._clock = clock

    async def process_link(self, link: Link) -> bool:
        """Check one link; returns True if an update was detected and emitted."""
        status = "failed"
        try:
            status = await self._check(link)
        finally:
            LINK_UPDATES_PROCESSED.labels(status=status).inc()
        return status == "updated"

    async def _check(self, link: Link) -> str:
        updater = self.updaters.create(link.type)
        checked_at = self._clock()
        try:
            upstream = await self._probe(link, updater)
        except PROBE_ERRORS as exc:
            logger.warning("Probe failed for link %s (%s): %s", link.id, link.url, exc)
            await self._store(link, checked_at, None)
            return "failed"
        except Exception:
            await self._store(link, checked_at, None)
            raise

        if link.last_updated is not None and upstream <= link.last_updated:
            await self._store(link, checked_at, None)
            return "unchanged"

        if not await self._store(link, checked_at, upstream):
            logger.info("Link %s already recorded an update at or after %s", link.id, upstream)
            return "unchanged"
        logger.info(
            "Update detected for link %s (%s) at %s",
            link.id,
            link.url,
            upstream.isoformat(),
        )
        updated = link.model_copy(update={"last_checked": checked_at, "last_updated": upstream})
        await self._notify(updated, updater)
        return "updated"

    async def _probe(self, link: Link, updater: LinkUpdater) -> datetime:
        link_type = link.type.value
        start = time.perf_counter()
        try:
            upstream = as_utc(await updater.get_last_update(link.url))
        except Exception:
            SCRAPE_REQUESTS.labels(link_type=link_type, status="error").inc()
            raise
        finally:
            SCRAPE_DURATION.labels(link_type=link_type).observe(time.perf_counter() - start)
        SCRAPE_REQUESTS.labels(link_type=link_type, status="success").inc()
        return upstream

    async def _store(
        self, link: Link, checked_at: datetime, upstream: Optional[datetime]
    ) -> bool:
        probed = link.model_copy(update={"last_checked": checked_at, "last_updated": upstream})
        async with self.database.session() as session:
            return await LinkRepo(session).update(probed)

    async def _notify(self, link: Link, updater: LinkUpdater) -> None:
        async with self.database.session() as session:
            chats = await ChatRepo(session).find_by_link(link.id)
        if not chats:
            logger.debug("Link %s has no subscribers, nothing to send", link.id)
            return

        info: Optional[UpdateInfo] = None
        try:
            info = await updater.get_update_details(link.url)
        except PROBE_ERRORS as exc:
            logger.warning("Could not fetch details for link %s: %s", link.id, exc)
        except Exception:
            # The watermark already moved; the event still goes out without details
            logger.exception("Unexpected error fetching details for link %s", link.id)

        if info is not None:
            async with self.database.session() as session:
                await ContentDetailsRepo(session).upsert(
                    ContentDetails(
                        link_id=link.id,
                        link_type=link.type,
                        title=info.title,
                        author=info.author,
                        updated_at=info.updated_at,
                        content_text=info.full_text,
                    )
                )
            if is_filtered(link.filters, info):
                logger.info("Update of link %s by %s suppressed by filter", link.id, info.author)
                return

        update = LinkUpdate(
            id=link.id,
            url=link.url,
            description=describe(link.type),
            tg_chat_ids=[chat.id for chat in chats],
            update_info=info,
        )
        await self._invalidate(chats)
        await self._deliver(update, chats)

    async def _invalidate(self, chats: List[Chat]) -> None:
        if self.link_cache is None:
            return
        for chat in chats:
            await self.link_cache.invalidate(chat.id)

    async def _deliver(self, update: LinkUpdate, chats: List[Chat]) -> None:
        digest_ids: List[int] = []
        if self.digest is not None:
            digest_ids = [
                chat.id for chat in chats if chat.notification_mode == NotificationMode.DIGEST
            ]
        instant_ids = [chat.id for chat in chats if chat.id not in digest_ids]

        if digest_ids:
            try:
                await self.digest.add_update(update.model_copy(update={"tg_chat_ids": digest_ids}))
            except NotificationError as exc:
                logger.error("Could not buffer update %d for digest: %s", update.id, exc)
                NOTIFICATIONS.labels(mode="digest", status="failed").inc()
            else:
                NOTIFICATIONS.labels(mode="digest", status="buffered").inc()
        if instant_ids:
            try:
                await self.notifier.send_update(
                    update.model_copy(update={"tg_chat_ids": instant_ids})
                )
            except NotificationError as exc:
                logger.error("Update %d not delivered: %s", update.id, exc)
                NOTIFICATIONS.labels(mode="instant", status="failed").inc()
            else:
                NOTIFICATIONS.labels(mode="instant", status="sent").inc()


__all__ = ["LinkUpdateChecker", "describe", "is_filtered"]
