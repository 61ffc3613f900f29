"""URL analysis and upstream updaters."""

from .analyzer import analyze_link, parse_github_url, parse_stackoverflow_url
from .updaters import (
    GitHubUpdater,
    LinkUpdater,
    LinkUpdaterFactory,
    StackOverflowUpdater,
)

__all__ = [
    "analyze_link",
    "parse_github_url",
    "parse_stackoverflow_url",
    "LinkUpdater",
    "GitHubUpdater",
    "StackOverflowUpdater",
    "LinkUpdaterFactory",
]
