from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any, AsyncIterator, Dict

from aiokafka import AIOKafkaProducer
from fastapi import Depends, FastAPI, Response
from telegram import Bot

from apps.bot.delivery import TelegramUpdateSender
from libs.api import RateLimitMiddleware, install_error_handlers
from libs.bus import DeadLetterPublisher, LinkUpdateConsumer, create_consumer
from libs.core.exceptions import ValidationError
from libs.core.models import LinkUpdate
from libs.core.settings import Settings, get_settings
from libs.logging import setup_logging
from libs.metrics import MetricsMiddleware, metrics_response
from libs.notify import TRANSPORT_KAFKA

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Dependency factories


@lru_cache
def get_telegram_bot() -> Bot:
    token = get_settings().telegram_bot_token
    if not token:
        raise RuntimeError("TELEGRAM_BOT_TOKEN is not configured")
    return Bot(token)


def get_sender() -> TelegramUpdateSender:
    return TelegramUpdateSender(get_telegram_bot())


def consumer_enabled(settings: Settings) -> bool:
    transports = {settings.message_transport.upper()}
    if settings.fallback_enabled:
        transports.add(settings.fallback_transport.upper())
    return TRANSPORT_KAFKA in transports


def log_consumer_exit(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Update consumer exited: %s", exc, exc_info=exc)


# ---------------------------------------------------------------------------
# FastAPI application


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    setup_logging("bot")
    bot = get_telegram_bot()
    await bot.initialize()

    consumer = producer = task = None
    if consumer_enabled(settings):
        consumer = create_consumer(settings)
        producer = AIOKafkaProducer(bootstrap_servers=settings.brokers, acks="all")
        await producer.start()
        await consumer.start()
        runner = LinkUpdateConsumer(
            consumer,
            DeadLetterPublisher(producer, settings.topic_dlq),
            TelegramUpdateSender(bot),
            commit_interval=settings.consumer_commit_interval,
        )
        task = asyncio.create_task(runner.run(), name="link-update-consumer")
        task.add_done_callback(log_consumer_exit)
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if consumer is not None:
            await consumer.stop()
        if producer is not None:
            await producer.stop()
        await bot.shutdown()


app = FastAPI(title="Link Tracker Bot API", lifespan=lifespan)
app.add_middleware(
    RateLimitMiddleware,
    requests=get_settings().rate_limit_requests,
    window=get_settings().rate_limit_window,
)
app.add_middleware(MetricsMiddleware, service="bot")
install_error_handlers(app)


# Routes ---------------------------------------------------------------------


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    return metrics_response()


@app.post("/updates")
async def receive_update(
    update: LinkUpdate,
    sender: TelegramUpdateSender = Depends(get_sender),
) -> Dict[str, Any]:
    if not update.url or not update.description:
        raise ValidationError("update must carry a URL and a description")
    await sender(update)
    return {}


if __name__ == "__main__":  # pragma: no cover
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=get_settings().bot_port)
