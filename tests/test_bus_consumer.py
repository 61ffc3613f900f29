import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiokafka import TopicPartition
from aiokafka.errors import KafkaConnectionError

from libs.bus import DeadLetterPublisher, LinkUpdateConsumer, encode_link_update, parse_link_update
from libs.core.exceptions import InvalidUpdateMessageError
from libs.core.models import LinkUpdate

VALID = json.dumps(
    {"id": 1, "url": "https://github.com/a/b", "description": "updated", "tgChatIds": [5]}
).encode()


def record(value, offset=7):
    rec = MagicMock()
    rec.topic = "updates"
    rec.partition = 0
    rec.offset = offset
    rec.value = value
    return rec


def make_consumer(handler=None, dlq_producer=None, kafka=None):
    kafka = kafka or MagicMock()
    kafka.commit = AsyncMock()
    dlq = DeadLetterPublisher(dlq_producer or AsyncMock(), "updates-dlq")
    return LinkUpdateConsumer(kafka, dlq, handler or AsyncMock(), retry_delay=0)


def test_parse_valid_record():
    update = parse_link_update(VALID)
    assert update.url == "https://github.com/a/b"
    assert update.tg_chat_ids == [5]


def test_encode_uses_camel_case():
    update = LinkUpdate(id=2, url="https://x", description="d", tg_chat_ids=[1])
    assert json.loads(encode_link_update(update))["tgChatIds"] == [1]


@pytest.mark.parametrize(
    "raw, message",
    [
        (b"", "deserialization error"),
        (b"{not json", "deserialization error"),
        (b'{"id": "x", "url": "u"}', "deserialization error"),
        (b'{"id": 1, "description": "d"}', "missing URL in update"),
    ],
)
def test_parse_rejects_bad_records(raw, message):
    with pytest.raises(InvalidUpdateMessageError) as exc_info:
        parse_link_update(raw)
    assert str(exc_info.value).startswith(message)


def test_valid_record_is_handled():
    handler = AsyncMock()
    consumer = make_consumer(handler=handler)

    assert asyncio.run(consumer.process(record(VALID))) is True

    handler.assert_awaited_once()
    assert handler.await_args.args[0].id == 1


def test_invalid_record_goes_to_dlq_with_headers():
    producer = AsyncMock()
    handler = AsyncMock()
    consumer = make_consumer(handler=handler, dlq_producer=producer)

    assert asyncio.run(consumer.process(record(b'{"id": 1}'))) is True

    handler.assert_not_awaited()
    args, kwargs = producer.send_and_wait.await_args
    assert args == ("updates-dlq",)
    assert kwargs["key"] == b"error"
    assert kwargs["value"] == b'{"id": 1}'
    headers = dict(kwargs["headers"])
    assert headers["error"] == b"missing URL in update"
    assert b"T" in headers["timestamp"]


def test_failed_dlq_write_seeks_back():
    producer = AsyncMock()
    producer.send_and_wait.side_effect = KafkaConnectionError()
    kafka = MagicMock()
    consumer = make_consumer(dlq_producer=producer, kafka=kafka)

    assert asyncio.run(consumer.process(record(b"garbage", offset=11))) is False

    kafka.seek.assert_called_once_with(TopicPartition("updates", 0), 11)


def test_handler_errors_do_not_block_the_partition():
    handler = AsyncMock(side_effect=RuntimeError("telegram down"))
    consumer = make_consumer(handler=handler)

    assert asyncio.run(consumer.process(record(VALID))) is True


def test_run_commits_on_exit():
    kafka = MagicMock()
    kafka.getone = AsyncMock(side_effect=[record(VALID, 1), record(VALID, 2), RuntimeError("stop")])
    handler = AsyncMock()
    consumer = make_consumer(handler=handler, kafka=kafka)

    with pytest.raises(RuntimeError):
        asyncio.run(consumer.run())

    assert handler.await_count == 2
    kafka.commit.assert_awaited()


def test_run_survives_fetch_errors():
    kafka = MagicMock()
    kafka.getone = AsyncMock(
        side_effect=[KafkaConnectionError(), record(VALID, 3), RuntimeError("stop")]
    )
    handler = AsyncMock()
    consumer = make_consumer(handler=handler, kafka=kafka)

    with pytest.raises(RuntimeError):
        asyncio.run(consumer.run())

    assert kafka.getone.await_count == 3
    handler.assert_awaited_once()
