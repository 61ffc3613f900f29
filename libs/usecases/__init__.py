"""Application use cases of the scrapper."""

from .check_updates import LinkUpdateChecker
from .digest import DigestScheduler, DigestService, next_digest_run, render_digest
from .links import LinkService
from .tags import TagService

__all__ = [
    "LinkUpdateChecker",
    "DigestScheduler",
    "DigestService",
    "next_digest_run",
    "render_digest",
    "LinkService",
    "TagService",
]
