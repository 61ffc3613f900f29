"""Upstream API probes."""

from .github import GitHubClient
from .stackoverflow import StackOverflowClient

__all__ = ["GitHubClient", "StackOverflowClient"]
