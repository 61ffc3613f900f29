import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from telegram.error import Forbidden

from apps.bot import main
from apps.bot.delivery import TelegramUpdateSender, render_message, split_message
from libs.core.models import LinkUpdate
from libs.core.settings import Settings

URL = "https://github.com/psf/requests"


@pytest.fixture()
def sender():
    fake = AsyncMock()
    main.app.dependency_overrides[main.get_sender] = lambda: fake
    yield fake
    main.app.dependency_overrides.clear()


def test_updates_endpoint_delivers(sender):
    client = TestClient(main.app)

    response = client.post(
        "/updates",
        json={"id": 1, "url": URL, "description": "GitHub repository updated", "tgChatIds": [5, 6]},
    )

    assert response.status_code == 200
    update = sender.await_args.args[0]
    assert update.tg_chat_ids == [5, 6]
    assert update.url == URL


@pytest.mark.parametrize(
    "payload",
    [
        {"id": 1, "description": "d", "tgChatIds": [5]},
        {"id": 1, "url": URL, "tgChatIds": [5]},
        {"id": "one", "url": URL, "description": "d"},
    ],
)
def test_updates_endpoint_rejects_incomplete_updates(sender, payload):
    response = TestClient(main.app).post("/updates", json=payload)

    assert response.status_code == 400
    sender.assert_not_awaited()


def test_health():
    assert TestClient(main.app).get("/health").json() == {"status": "ok"}


def test_consumer_enabled():
    assert main.consumer_enabled(Settings(message_transport="KAFKA")) is True
    assert main.consumer_enabled(Settings(message_transport="HTTP", fallback_enabled=False)) is False
    assert (
        main.consumer_enabled(
            Settings(message_transport="HTTP", fallback_enabled=True, fallback_transport="kafka")
        )
        is True
    )


def test_sender_continues_after_failing_chat():
    bot = MagicMock()
    bot.send_message = AsyncMock(side_effect=[Forbidden("blocked"), None])
    update = LinkUpdate(id=1, url=URL, description="updated", tg_chat_ids=[5, 6])

    delivered = asyncio.run(TelegramUpdateSender(bot)(update))

    assert delivered == 1
    assert bot.send_message.await_args_list[1].kwargs == {
        "chat_id": 6,
        "text": f"updated\n\n{URL}",
    }


def test_render_message_does_not_repeat_url():
    digest = LinkUpdate(url=URL, description=f"1. {URL}")
    assert render_message(digest) == f"1. {URL}"


def test_split_message():
    assert split_message("abc", limit=5) == ["abc"]
    assert split_message("a" * 12, limit=5) == ["aaaaa", "aaaaa", "aa"]


def test_consumer_exit_is_logged(caplog):
    async def crash():
        raise RuntimeError("broker gone")

    async def scenario():
        task = asyncio.create_task(crash())
        task.add_done_callback(main.log_consumer_exit)
        with pytest.raises(RuntimeError):
            await task
        await asyncio.sleep(0)

    with caplog.at_level("ERROR", logger="apps.bot.main"):
        asyncio.run(scenario())

    assert "Update consumer exited: broker gone" in caplog.text
