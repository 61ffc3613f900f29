"""Per-type link updaters and the factory dispatching to them."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from libs.clients import GitHubClient, StackOverflowClient
from libs.core.exceptions import UnsupportedLinkTypeError
from libs.core.models import LinkType, UpdateInfo, text_preview

from .analyzer import parse_github_url, parse_stackoverflow_url


class LinkUpdater(ABC):
    """Probe for one upstream kind."""

    @abstractmethod
    async def get_last_update(self, url: str) -> datetime:
        """Return the upstream last-modified instant (UTC)."""

    @abstractmethod
    async def get_update_details(self, url: str) -> UpdateInfo:
        """Return a details snapshot for notification text."""


class GitHubUpdater(LinkUpdater):
    def __init__(self, client: GitHubClient) -> None:
        self.client = client

    async def get_last_update(self, url: str) -> datetime:
        owner, repo = parse_github_url(url)
        return await self.client.get_repository_last_update(owner, repo)

    async def get_update_details(self, url: str) -> UpdateInfo:
        owner, repo = parse_github_url(url)
        details = await self.client.get_repository_details(owner, repo)
        return UpdateInfo(
            title=details.title,
            author=details.author,
            updated_at=details.updated_at,
            content_type="repository",
            text_preview=text_preview(details.content_text),
            full_text=details.content_text,
        )


class StackOverflowUpdater(LinkUpdater):
    def __init__(self, client: StackOverflowClient) -> None:
        self.client = client

    async def get_last_update(self, url: str) -> datetime:
        return await self.client.get_question_last_update(parse_stackoverflow_url(url))

    async def get_update_details(self, url: str) -> UpdateInfo:
        details = await self.client.get_question_details(parse_stackoverflow_url(url))
        return UpdateInfo(
            title=details.title,
            author=details.author,
            updated_at=details.updated_at,
            content_type="question",
            text_preview=text_preview(details.content_text),
            full_text=details.content_text,
        )


class LinkUpdaterFactory:
    """Maps a link type to the updater able to probe it."""

    def __init__(self, github: GitHubClient, stackoverflow: StackOverflowClient) -> None:
        self._updaters = {
            LinkType.GITHUB: GitHubUpdater(github),
            LinkType.STACKOVERFLOW: StackOverflowUpdater(stackoverflow),
        }

    def create(self, link_type: LinkType) -> LinkUpdater:
        try:
            return self._updaters[link_type]
        except KeyError:
            raise UnsupportedLinkTypeError(f"unsupported link type: {link_type}") from None


__all__ = [
    "LinkUpdater",
    "GitHubUpdater",
    "StackOverflowUpdater",
    "LinkUpdaterFactory",
]
