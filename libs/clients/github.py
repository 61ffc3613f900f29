"""GitHub REST API probe."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from libs.core.exceptions import MalformedResponseError, UpstreamStatusError
from libs.core.models import ContentDetails, LinkType
from libs.http import ResilientHttpClient

logger = logging.getLogger(__name__)

GITHUB_ACCEPT = "application/vnd.github.v3+json"


def parse_github_time(value: str) -> datetime:
    """Parse GitHub's ``2024-01-01T12:00:00Z`` timestamps as UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class GitHubClient:
    def __init__(
        self,
        http: ResilientHttpClient,
        base_url: str = "https://api.github.com",
        token: Optional[str] = None,
    ) -> None:
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.token = token

    async def get_repository_last_update(self, owner: str, repo: str) -> datetime:
        data = await self._get_repository(owner, repo)
        try:
            return parse_github_time(data["updated_at"])
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise self._malformed(owner, repo, exc) from exc

    async def get_repository_details(self, owner: str, repo: str) -> ContentDetails:
        data = await self._get_repository(owner, repo)
        try:
            updated_at = data.get("updated_at")
            return ContentDetails(
                link_id=0,
                link_type=LinkType.GITHUB,
                title=data.get("full_name") or f"{owner}/{repo}",
                author=(data.get("owner") or {}).get("login", ""),
                updated_at=parse_github_time(updated_at) if updated_at else None,
                content_text=data.get("description") or "",
            )
        except (TypeError, ValueError, AttributeError) as exc:
            raise self._malformed(owner, repo, exc) from exc

    async def _get_repository(self, owner: str, repo: str) -> Dict[str, Any]:
        url = f"{self.base_url}/repos/{owner}/{repo}"
        headers = {"Accept": GITHUB_ACCEPT}
        if self.token:
            headers["Authorization"] = f"token {self.token}"
        response = await self.http.get(url, headers=headers)
        if response.status_code != 200:
            logger.warning(
                "GitHub API returned %d for %s/%s", response.status_code, owner, repo
            )
            raise UpstreamStatusError(
                f"GitHub API returned {response.status_code} for {owner}/{repo}",
                self.http.service_name,
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise self._malformed(owner, repo, exc) from exc
        if not isinstance(data, dict):
            raise self._malformed(owner, repo, TypeError("expected a JSON object"))
        return data

    def _malformed(self, owner: str, repo: str, exc: Exception) -> MalformedResponseError:
        logger.warning("Unreadable GitHub response for %s/%s: %s", owner, repo, exc)
        return MalformedResponseError(
            f"unreadable GitHub response for {owner}/{repo}: {exc}",
            self.http.service_name,
        )


__all__ = ["GitHubClient", "parse_github_time", "GITHUB_ACCEPT"]
