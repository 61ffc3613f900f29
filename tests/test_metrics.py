import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

from fastapi.testclient import TestClient
from telegram.error import Forbidden

from apps.bot import main as bot_main
from apps.bot.delivery import TelegramUpdateSender
from libs.cache import InMemoryLinkListCache
from libs.core.exceptions import NetworkError, NotificationError
from libs.core.models import LinkUpdate, UpdateInfo
from libs.http import CircuitBreaker
from libs.metrics import REGISTRY
from libs.usecases import LinkService, LinkUpdateChecker

URL = "https://github.com/psf/requests"
PROCESSED = "link_tracker_scrapper_link_updates_processed_total"
SCRAPES = "link_tracker_scrapper_scrape_requests_total"
NOTIFIED = "link_tracker_scrapper_notifications_total"


def sample(name, **labels):
    return REGISTRY.get_sample_value(name, labels) or 0.0


def make_checker(database, updater, notifier):
    factory = MagicMock()
    factory.create.return_value = updater
    return LinkUpdateChecker(database, factory, notifier)


def tracked_link(database):
    service = LinkService(database, InMemoryLinkListCache())

    async def scenario():
        await service.register_chat(1)
        return await service.add_link(1, URL)

    return asyncio.run(scenario())


def updater_returning(last_update):
    updater = MagicMock()
    updater.get_last_update = AsyncMock(return_value=last_update)
    updater.get_update_details = AsyncMock(return_value=UpdateInfo(author="dev"))
    return updater


def test_requests_counted_by_route_template(client):
    labels = dict(service="scrapper", method="POST", endpoint="/tg-chat/{chat_id}", status="200")
    before = sample("link_tracker_http_requests_total", **labels)

    assert client.post("/tg-chat/41").status_code == 200
    assert client.post("/tg-chat/42").status_code == 200

    assert sample("link_tracker_http_requests_total", **labels) == before + 2
    assert (
        sample(
            "link_tracker_http_request_duration_seconds_count",
            service="scrapper",
            method="POST",
            endpoint="/tg-chat/{chat_id}",
        )
        >= 2
    )


def test_metrics_endpoint_serves_exposition_format(client):
    client.get("/health")

    response = client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert "link_tracker_http_requests_total" in response.text


def test_bot_exposes_metrics():
    response = TestClient(bot_main.app).get("/metrics")

    assert response.status_code == 200
    assert "link_tracker_bot_messages_sent" in response.text


def test_link_outcomes_are_counted(database):
    link = tracked_link(database)
    notifier = AsyncMock()
    t0 = datetime(2024, 5, 1, tzinfo=timezone.utc)
    updated = sample(PROCESSED, status="updated")
    unchanged = sample(PROCESSED, status="unchanged")
    sent = sample(NOTIFIED, mode="instant", status="sent")
    scrapes = sample(SCRAPES, link_type="github", status="success")

    checker = make_checker(database, updater_returning(t0), notifier)
    assert asyncio.run(checker.process_link(link)) is True
    assert asyncio.run(checker.process_link(link)) is False

    assert sample(PROCESSED, status="updated") == updated + 1
    assert (
        sample(PROCESSED, status="unchanged")
        == unchanged + 1
    )
    assert sample(NOTIFIED, mode="instant", status="sent") == sent + 1
    assert (
        sample(SCRAPES, link_type="github", status="success")
        == scrapes + 2
    )


def test_failed_checks_and_deliveries_are_counted(database):
    link = tracked_link(database)
    failed = sample(PROCESSED, status="failed")
    errors = sample(SCRAPES, link_type="github", status="error")
    undelivered = sample(NOTIFIED, mode="instant", status="failed")

    broken = updater_returning(None)
    broken.get_last_update.side_effect = NetworkError("down", "github")
    assert asyncio.run(make_checker(database, broken, AsyncMock()).process_link(link)) is False

    notifier = AsyncMock()
    notifier.send_update.side_effect = NotificationError("bot down")
    t0 = datetime(2024, 5, 1, tzinfo=timezone.utc)
    asyncio.run(make_checker(database, updater_returning(t0), notifier).process_link(link))

    assert sample(PROCESSED, status="failed") == failed + 1
    assert (
        sample(SCRAPES, link_type="github", status="error")
        == errors + 1
    )
    assert (
        sample(NOTIFIED, mode="instant", status="failed")
        == undelivered + 1
    )


def test_breaker_state_gauge_follows_transitions(clock):
    breaker = CircuitBreaker("gauge_test", min_calls=1, open_duration=30, clock=clock)

    breaker.after_call(breaker.before_call(), success=False)
    assert sample("link_tracker_circuit_breaker_state", breaker="gauge_test") == 2

    clock.advance(31)
    generation = breaker.before_call()
    assert sample("link_tracker_circuit_breaker_state", breaker="gauge_test") == 1

    breaker.after_call(generation, success=True)
    assert sample("link_tracker_circuit_breaker_state", breaker="gauge_test") == 0


def test_bot_messages_counted_per_chat():
    bot = AsyncMock()

    async def send_message(chat_id, text):
        if chat_id == 2:
            raise Forbidden("bot was blocked by the user")

    bot.send_message.side_effect = send_message
    sent = sample("link_tracker_bot_messages_sent_total", status="sent")
    failed = sample("link_tracker_bot_messages_sent_total", status="failed")
    update = LinkUpdate(id=1, url=URL, description="updated", tg_chat_ids=[1, 2, 3])

    assert asyncio.run(TelegramUpdateSender(bot)(update)) == 2

    assert sample("link_tracker_bot_messages_sent_total", status="sent") == sent + 2
    assert sample("link_tracker_bot_messages_sent_total", status="failed") == failed + 1
