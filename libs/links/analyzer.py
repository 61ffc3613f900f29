"""Classification and parsing of tracked URLs."""

from __future__ import annotations

import re
from typing import Tuple

from libs.core.exceptions import InvalidURLError
from libs.core.models import LinkType

GITHUB_RE = re.compile(r"^https?://(?:www\.)?github\.com/([^/]+)/([^/?#]+)(?:[/?#].*)?$")
STACKOVERFLOW_RE = re.compile(
    r"^https?://(?:www\.)?stackoverflow\.com/questions/(\d+)(?:[/?#].*)?$"
)


def analyze_link(url: str) -> LinkType:
    url = url.strip()
    if GITHUB_RE.match(url):
        return LinkType.GITHUB
    if STACKOVERFLOW_RE.match(url):
        return LinkType.STACKOVERFLOW
    return LinkType.UNKNOWN


def parse_github_url(url: str) -> Tuple[str, str]:
    """Return ``(owner, repo)`` for a repository URL."""
    match = GITHUB_RE.match(url.strip())
    if not match:
        raise InvalidURLError(f"invalid GitHub URL: {url}")
    owner, repo = match.groups()
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    return owner, repo


def parse_stackoverflow_url(url: str) -> int:
    match = STACKOVERFLOW_RE.match(url.strip())
    if not match:
        raise InvalidURLError(f"invalid StackOverflow URL: {url}")
    return int(match.group(1))


__all__ = ["analyze_link", "parse_github_url", "parse_stackoverflow_url"]
