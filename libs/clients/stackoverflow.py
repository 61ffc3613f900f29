"""StackExchange API probe for StackOverflow questions."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from libs.core.exceptions import (
    DetailsNotFoundError,
    MalformedResponseError,
    UpstreamStatusError,
)
from libs.core.models import ContentDetails, LinkType
from libs.http import ResilientHttpClient

logger = logging.getLogger(__name__)


def _activity_time(item: Dict[str, Any]) -> datetime:
    return datetime.fromtimestamp(item["last_activity_date"], tz=timezone.utc)


class StackOverflowClient:
    def __init__(
        self,
        http: ResilientHttpClient,
        base_url: str = "https://api.stackexchange.com/2.3",
        api_key: Optional[str] = None,
    ) -> None:
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key

    async def get_question_last_update(self, question_id: int) -> datetime:
        item = await self._get_question(question_id)
        try:
            return _activity_time(item)
        except (KeyError, TypeError, ValueError, OverflowError) as exc:
            raise self._malformed(question_id, exc) from exc

    async def get_question_details(self, question_id: int) -> ContentDetails:
        item = await self._get_question(question_id, with_body=True)
        try:
            return ContentDetails(
                link_id=0,
                link_type=LinkType.STACKOVERFLOW,
                title=item.get("title", ""),
                author=(item.get("owner") or {}).get("display_name", ""),
                updated_at=_activity_time(item),
                content_text=item.get("body", ""),
            )
        except (KeyError, TypeError, ValueError, OverflowError, AttributeError) as exc:
            raise self._malformed(question_id, exc) from exc

    async def _get_question(self, question_id: int, with_body: bool = False) -> Dict[str, Any]:
        params: Dict[str, Any] = {"site": "stackoverflow"}
        if with_body:
            params["filter"] = "withbody"
        if self.api_key:
            params["key"] = self.api_key
        response = await self.http.get(
            f"{self.base_url}/questions/{question_id}", params=params
        )
        if response.status_code != 200:
            logger.warning(
                "StackExchange API returned %d for question %d",
                response.status_code,
                question_id,
            )
            raise UpstreamStatusError(
                f"StackExchange API returned {response.status_code} for question {question_id}",
                self.http.service_name,
                status_code=response.status_code,
            )
        try:
            items = response.json().get("items") or []
        except (ValueError, AttributeError) as exc:
            raise self._malformed(question_id, exc) from exc
        if not items:
            raise DetailsNotFoundError(f"question {question_id} not found")
        if not isinstance(items[0], dict):
            raise self._malformed(question_id, TypeError("expected a JSON object"))
        return items[0]

    def _malformed(self, question_id: int, exc: Exception) -> MalformedResponseError:
        logger.warning("Unreadable StackExchange response for question %d: %s", question_id, exc)
        return MalformedResponseError(
            f"unreadable StackExchange response for question {question_id}: {exc}",
            self.http.service_name,
        )


__all__ = ["StackOverflowClient"]
