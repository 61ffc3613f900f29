from __future__ import annotations

from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any, AsyncIterator, Dict, List, Optional

import redis.asyncio as redis
from fastapi import Depends, FastAPI, Header, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field

from apps.api.jobs import build_jobs
from libs.api import RateLimitMiddleware, install_error_handlers
from libs.cache import LinkListCache, create_link_cache, create_redis
from libs.core.exceptions import ValidationError
from libs.core.models import Link, NotificationMode
from libs.core.settings import get_settings
from libs.db import Database, get_database
from libs.logging import setup_logging
from libs.metrics import MetricsMiddleware, metrics_response
from libs.usecases import LinkService, TagService

# ---------------------------------------------------------------------------
# Dependency factories


@lru_cache
def get_redis() -> Optional[redis.Redis]:
    return create_redis(get_settings())


@lru_cache
def get_link_cache() -> LinkListCache:
    return create_link_cache(get_settings(), get_redis())


def link_service(
    database: Database = Depends(get_database),
    cache: LinkListCache = Depends(get_link_cache),
) -> LinkService:
    return LinkService(database, cache)


def tag_service(
    database: Database = Depends(get_database),
    cache: LinkListCache = Depends(get_link_cache),
) -> TagService:
    return TagService(database, cache)


def tg_chat_id(
    header: Optional[int] = Header(None, alias="Tg-Chat-Id"),
    query: Optional[int] = Query(None, alias="tgChatId"),
) -> int:
    chat_id = header if header is not None else query
    if chat_id is None:
        raise ValidationError("Tg-Chat-Id header or tgChatId query parameter is required")
    return chat_id


# ---------------------------------------------------------------------------
# Pydantic schemas


class LinkResponse(BaseModel):
    id: int
    url: str
    tags: List[str] = Field(default_factory=list)
    filters: List[str] = Field(default_factory=list)

    @classmethod
    def from_link(cls, link: Link) -> "LinkResponse":
        return cls(id=link.id, url=link.url, tags=link.tags, filters=link.filters)


class ListLinksResponse(BaseModel):
    links: List[LinkResponse]
    size: int


class AddLinkRequest(BaseModel):
    link: str = Field(..., min_length=1)
    tags: List[str] = Field(default_factory=list)
    filters: List[str] = Field(default_factory=list)


class RemoveLinkRequest(BaseModel):
    link: str = Field(..., min_length=1)


class LinkTagRequest(BaseModel):
    link: str = Field(..., min_length=1)
    tag: str = Field(..., min_length=1)


class NotificationSettingsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    mode: NotificationMode
    digest_hour: Optional[int] = Field(None, alias="digestHour", ge=0, le=23)
    digest_minute: Optional[int] = Field(None, alias="digestMinute", ge=0, le=59)


# ---------------------------------------------------------------------------
# FastAPI application


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    setup_logging("scrapper")
    database = get_database()
    await database.init_db()
    jobs = None
    if settings.background_jobs_enabled:
        jobs = build_jobs(settings, database, get_link_cache(), get_redis())
        await jobs.start()
    try:
        yield
    finally:
        if jobs is not None:
            await jobs.stop()
        client = get_redis()
        if client is not None:
            await client.aclose()
        await database.dispose()


app = FastAPI(title="Link Tracker Scrapper API", lifespan=lifespan)
app.add_middleware(
    RateLimitMiddleware,
    requests=get_settings().rate_limit_requests,
    window=get_settings().rate_limit_window,
)
app.add_middleware(MetricsMiddleware, service="scrapper")
install_error_handlers(app)


# Routes ---------------------------------------------------------------------


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    return metrics_response()


@app.post("/tg-chat/{chat_id}")
async def register_chat(chat_id: int, service: LinkService = Depends(link_service)) -> Dict[str, Any]:
    await service.register_chat(chat_id)
    return {}


@app.delete("/tg-chat/{chat_id}")
async def delete_chat(chat_id: int, service: LinkService = Depends(link_service)) -> Dict[str, Any]:
    await service.delete_chat(chat_id)
    return {}


@app.get("/links", response_model=ListLinksResponse)
async def list_links(
    tag: Optional[str] = Query(None),
    chat_id: int = Depends(tg_chat_id),
    service: LinkService = Depends(link_service),
    tags: TagService = Depends(tag_service),
) -> ListLinksResponse:
    if tag:
        links = await tags.links_by_tag(chat_id, tag)
    else:
        links = await service.get_links(chat_id)
    return ListLinksResponse(
        links=[LinkResponse.from_link(link) for link in links], size=len(links)
    )


@app.post("/links", response_model=LinkResponse)
async def add_link(
    req: AddLinkRequest,
    chat_id: int = Depends(tg_chat_id),
    service: LinkService = Depends(link_service),
) -> LinkResponse:
    link = await service.add_link(chat_id, req.link, req.tags, req.filters)
    return LinkResponse.from_link(link)


@app.delete("/links", response_model=LinkResponse)
async def remove_link(
    req: RemoveLinkRequest,
    chat_id: int = Depends(tg_chat_id),
    service: LinkService = Depends(link_service),
) -> LinkResponse:
    link = await service.remove_link(chat_id, req.link)
    return LinkResponse.from_link(link)


@app.post("/notification-settings")
async def update_notification_settings(
    req: NotificationSettingsRequest,
    chat_id: int = Depends(tg_chat_id),
    service: LinkService = Depends(link_service),
) -> Dict[str, Any]:
    await service.update_notification_settings(
        chat_id, req.mode, req.digest_hour, req.digest_minute
    )
    return {}


@app.post("/links/tags")
async def add_tag(
    req: LinkTagRequest,
    chat_id: int = Depends(tg_chat_id),
    tags: TagService = Depends(tag_service),
) -> Dict[str, Any]:
    await tags.add_tag(chat_id, req.link, req.tag)
    return {}


@app.delete("/links/tags")
async def remove_tag(
    req: LinkTagRequest,
    chat_id: int = Depends(tg_chat_id),
    tags: TagService = Depends(tag_service),
) -> Dict[str, Any]:
    await tags.remove_tag(chat_id, req.link, req.tag)
    return {}


@app.get("/tags")
async def list_tags(
    chat_id: int = Depends(tg_chat_id),
    tags: TagService = Depends(tag_service),
) -> Dict[str, List[str]]:
    return {"tags": await tags.all_tags(chat_id)}


if __name__ == "__main__":  # pragma: no cover
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=get_settings().scrapper_port)
