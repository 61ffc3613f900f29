"""Human readable update descriptions."""

from __future__ import annotations

from libs.core.models import LinkUpdate, UpdateInfo

GITHUB_CONTENT_TYPES = {"repository", "issue", "pull_request"}
STACKOVERFLOW_CONTENT_TYPES = {"question", "answer", "comment"}

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def _block(header: str, title_label: str, author_label: str, info: UpdateInfo) -> str:
    updated = info.updated_at.strftime(TIME_FORMAT) if info.updated_at else "-"
    return (
        f"{header}\n"
        f"{title_label}: {info.title}\n"
        f"{author_label}: {info.author}\n"
        f"Time: {updated}\n"
        f"Type: {info.content_type}\n"
        f"Preview:\n{info.text_preview}"
    )


def format_description(update: LinkUpdate) -> str:
    """Append the details snapshot, if any, to the update description."""
    info = update.update_info
    if info is None:
        return update.description
    if info.content_type in GITHUB_CONTENT_TYPES:
        block = _block("GitHub update", "Title", "Author", info)
    elif info.content_type in STACKOVERFLOW_CONTENT_TYPES:
        block = _block("StackOverflow update", "Question", "User", info)
    else:
        block = _block("Resource update", "Title", "Author", info)
    return f"{update.description}\n\n{block}"


def with_formatted_description(update: LinkUpdate) -> LinkUpdate:
    return update.model_copy(update={"description": format_description(update)})


__all__ = ["format_description", "with_formatted_description"]
