"""Wire format of update records on the message bus."""

from __future__ import annotations

import json
from typing import Optional, Union

from pydantic import ValidationError as SchemaError

from libs.core.exceptions import InvalidUpdateMessageError
from libs.core.models import LinkUpdate


def encode_link_update(update: LinkUpdate) -> bytes:
    return json.dumps(update.to_payload(), ensure_ascii=False).encode("utf-8")


def parse_link_update(raw: Optional[Union[bytes, str]]) -> LinkUpdate:
    """Decode and validate a bus record.

    Raises :class:`InvalidUpdateMessageError` for records that belong in the
    dead-letter topic.
    """
    if not raw:
        raise InvalidUpdateMessageError("deserialization error: empty record")
    try:
        update = LinkUpdate.model_validate_json(raw)
    except SchemaError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ())) or "record"
        raise InvalidUpdateMessageError(
            f"deserialization error: {location}: {first.get('msg')}"
        ) from exc
    if not update.url:
        raise InvalidUpdateMessageError("missing URL in update")
    return update


__all__ = ["encode_link_update", "parse_link_update"]
