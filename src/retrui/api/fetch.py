"""单个 Feed 抓取与全文提取 API."""

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from retrui.api.deps import get_context
from retrui.core.context import AppContext
from retrui.core.errors import FetchError, FetchErrorKind
from retrui.utils.html_parser import estimate_tokens

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["fetch"])

CONTENT_CACHE_PREFIX = "content:"


class UrlRequest(BaseModel):
    """请求体 {url}."""

    url: str | None = None


def _require_url(payload: UrlRequest, message: str) -> str:
    if not payload.url or not payload.url.strip():
        raise FetchError(FetchErrorKind.INVALID_URL, message)
    return payload.url.strip()


@router.post("/fetch-rss")
async def fetch_rss(
    payload: UrlRequest,
    ctx: AppContext = Depends(get_context),
) -> dict:
    """抓取并解析单个 Feed（交互式重试策略）."""
    url = _require_url(payload, "RSS feed URL is required")
    feed = await ctx.fetcher.fetch_feed(url, ctx.interactive_policy)
    return {"success": True, "data": feed.model_dump(by_alias=True)}


@router.post("/fetch-content")
async def fetch_content(
    payload: UrlRequest,
    ctx: AppContext = Depends(get_context),
) -> dict:
    """提取文章正文，结果缓存 24 小时."""
    url = _require_url(payload, "URL is required")

    cache_key = f"{CONTENT_CACHE_PREFIX}{url}"
    ttl = timedelta(seconds=ctx.settings.content_cache_ttl_seconds)
    cached = await ctx.cache.get_fresh(cache_key, ttl)
    if cached is not None:
        return {"success": True, "data": cached.value(), "cached": True}

    content = await ctx.extractor.extract(url)
    data = {
        **content.model_dump(by_alias=True),
        "tokensUsed": estimate_tokens(content.text),
    }
    await ctx.cache.set(cache_key, data)
    logger.info(f"正文提取完成: {url} ({len(content.text)} 字符)")
    return {"success": True, "data": data}
