"""Wiring of the scrapper background jobs: link sweeps and digests."""

from __future__ import annotations

import logging
from typing import List, Optional

import redis.asyncio as redis

from libs.cache import LinkListCache, create_digest_buffer
from libs.clients import GitHubClient, StackOverflowClient
from libs.core.settings import Settings
from libs.db import Database
from libs.http import ResilientHttpClient
from libs.links import LinkUpdaterFactory
from libs.notify import BotNotifier, create_notifier
from libs.scheduler import ParallelScheduler
from libs.usecases import DigestScheduler, DigestService, LinkUpdateChecker

logger = logging.getLogger(__name__)


class BackgroundJobs:
    def __init__(
        self,
        scheduler: ParallelScheduler,
        notifier: BotNotifier,
        digest_scheduler: Optional[DigestScheduler] = None,
        http_clients: Optional[List[ResilientHttpClient]] = None,
    ) -> None:
        self.scheduler = scheduler
        self.notifier = notifier
        self.digest_scheduler = digest_scheduler
        self.http_clients = http_clients or []

    async def start(self) -> None:
        await self.notifier.start()
        self.scheduler.start()
        if self.digest_scheduler is not None:
            self.digest_scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
        if self.digest_scheduler is not None:
            await self.digest_scheduler.stop()
        await self.notifier.close()
        for client in self.http_clients:
            await client.close()


def build_jobs(
    settings: Settings,
    database: Database,
    link_cache: LinkListCache,
    redis_client: Optional[redis.Redis] = None,
) -> BackgroundJobs:
    github_http = ResilientHttpClient.from_settings("github", settings)
    stackoverflow_http = ResilientHttpClient.from_settings("stackoverflow", settings)
    bot_http = ResilientHttpClient.from_settings("bot", settings)

    updaters = LinkUpdaterFactory(
        GitHubClient(github_http, settings.github_base_url, settings.github_api_token or None),
        StackOverflowClient(
            stackoverflow_http,
            settings.stackoverflow_base_url,
            settings.stackoverflow_api_key or None,
        ),
    )
    notifier = create_notifier(settings, bot_http)

    digest: Optional[DigestService] = None
    digest_scheduler: Optional[DigestScheduler] = None
    if settings.digest_enabled:
        digest = DigestService(
            create_digest_buffer(settings, redis_client),
            notifier,
            max_entries=settings.digest_max_entries,
        )
        digest_scheduler = DigestScheduler(digest, settings.digest_hour, settings.digest_minute)

    checker = LinkUpdateChecker(database, updaters, notifier, digest, link_cache)
    scheduler = ParallelScheduler(
        checker,
        database,
        interval=settings.scheduler_interval,
        batch_size=settings.batch_size,
        workers=settings.workers,
    )
    return BackgroundJobs(
        scheduler,
        notifier,
        digest_scheduler,
        http_clients=[github_http, stackoverflow_http, bot_http],
    )


__all__ = ["BackgroundJobs", "build_jobs"]
