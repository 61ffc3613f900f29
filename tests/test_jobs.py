import asyncio
from unittest.mock import AsyncMock, MagicMock

from apps.api.jobs import BackgroundJobs, build_jobs
from libs.cache import InMemoryLinkListCache
from libs.core.settings import Settings


def test_stop_closes_every_http_client_once():
    settings = Settings(message_transport="HTTP", fallback_enabled=False, digest_enabled=False)
    jobs = build_jobs(settings, MagicMock(), InMemoryLinkListCache())
    assert len(jobs.http_clients) == 3

    asyncio.run(jobs.stop())

    assert all(client.client.is_closed for client in jobs.http_clients)


def test_stop_releases_notifier_then_clients():
    order = []
    scheduler = MagicMock()
    scheduler.stop = AsyncMock()
    notifier = AsyncMock()
    notifier.close.side_effect = lambda: order.append("notifier")
    http = MagicMock()
    http.close = AsyncMock(side_effect=lambda: order.append("http"))

    asyncio.run(BackgroundJobs(scheduler, notifier, http_clients=[http]).stop())

    scheduler.stop.assert_awaited_once()
    http.close.assert_awaited_once()
    assert order == ["notifier", "http"]
