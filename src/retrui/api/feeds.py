"""订阅源目录、偏好与健康状态 API."""

from dataclasses import asdict
from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from retrui.api.deps import get_context
from retrui.core import preferences as prefs_ops
from retrui.core.catalog import (
    MAIN_CATEGORIES,
    RSS_FEEDS,
    all_languages,
    all_regions,
    all_subcategories,
    find_feed,
    get_feeds_by_category,
    get_feeds_by_language,
    get_feeds_by_region,
    unique_by_url,
)
from retrui.core.context import AppContext
from retrui.core.health import FeedHealthRecord
from retrui.core.preferences import FeedPreferences
from retrui.models.feed import FeedDescriptor

router = APIRouter(prefix="/api/feeds", tags=["feeds"])

FeedAction = Literal["enable", "disable", "block", "unblock", "favorite"]
CategoryAction = Literal["enable", "disable", "hide", "show"]


class FeedUrlRequest(BaseModel):
    url: str


class CategoryRequest(BaseModel):
    category: str


class CustomFeedRequest(BaseModel):
    name: str
    url: str
    category: str = "Technology"
    subcategory: str | None = None
    region: str | None = None
    language: str | None = "en"


def preferences_payload(prefs: FeedPreferences) -> dict:
    return {
        "enabled_feeds": sorted(prefs.enabled_feeds),
        "blocked_feeds": sorted(prefs.blocked_feeds),
        "favorite_feeds": sorted(prefs.favorite_feeds),
        "hidden_categories": sorted(prefs.hidden_categories),
        "fingerprint": prefs.fingerprint(),
    }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def health_payload(record: FeedHealthRecord) -> dict:
    return {
        "url": record.url,
        "consecutive_failures": record.consecutive_failures,
        "success_count": record.success_count,
        "failure_count": record.failure_count,
        "last_success_at": _iso(record.last_success_at),
        "last_failure_at": _iso(record.last_failure_at),
        "disabled_until": _iso(record.disabled_until),
        "last_error": record.last_error,
    }


async def all_feeds(ctx: AppContext) -> list[FeedDescriptor]:
    """内置目录 + 自定义订阅源（按 URL 去重）."""
    custom = await ctx.preferences.custom_feeds()
    return unique_by_url([*RSS_FEEDS, *custom])


async def _require_feed(ctx: AppContext, url: str) -> FeedDescriptor:
    feed = find_feed(url, await all_feeds(ctx))
    if feed is None:
        raise HTTPException(status_code=404, detail="订阅源不存在")
    return feed


@router.get("")
async def list_feeds(
    category: str | None = Query(None, description="按分类筛选"),
    region: str | None = Query(None, description="按地区筛选"),
    language: str | None = Query(None, description="按语言筛选"),
    ctx: AppContext = Depends(get_context),
) -> dict:
    """获取订阅源列表，附带偏好与熔断状态."""
    feeds = await all_feeds(ctx)
    custom_urls = {feed.url for feed in await ctx.preferences.custom_feeds()}
    prefs = await ctx.preferences.get()

    if category:
        feeds = get_feeds_by_category(category, feeds)
    if region:
        feeds = get_feeds_by_region(region, feeds)
    if language:
        feeds = get_feeds_by_language(language, feeds)

    items = []
    for feed in feeds:
        record = ctx.health.get(feed.url)
        items.append(
            {
                **feed.model_dump(),
                "enabled": prefs_ops.is_enabled(feed, prefs),
                "blocked": prefs_ops.is_blocked(feed, prefs),
                "favorite": prefs_ops.is_favorite(feed, prefs),
                "hidden": feed.category in prefs.hidden_categories,
                "custom": feed.url in custom_urls,
                "available": ctx.health.is_available(feed.url),
                "consecutive_failures": record.consecutive_failures if record else 0,
            }
        )

    return {"total": len(items), "items": items}


@router.get("/meta")
async def feeds_meta(ctx: AppContext = Depends(get_context)) -> dict:
    """分类、子分类、地区和语言列表."""
    feeds = await all_feeds(ctx)
    return {
        "categories": list(MAIN_CATEGORIES),
        "subcategories": all_subcategories(feeds),
        "regions": all_regions(feeds),
        "languages": all_languages(feeds),
    }


@router.get("/preferences")
async def get_preferences(ctx: AppContext = Depends(get_context)) -> dict:
    """获取订阅偏好与统计."""
    prefs = await ctx.preferences.get()
    stats = prefs_ops.preference_stats(await all_feeds(ctx), prefs)
    return {**preferences_payload(prefs), "stats": asdict(stats)}


@router.post("/preferences/reset")
async def reset_preferences(ctx: AppContext = Depends(get_context)) -> dict:
    """恢复默认偏好."""
    return preferences_payload(await ctx.preferences.reset())


@router.post("/preferences/category/{action}")
async def update_category(
    action: CategoryAction,
    payload: CategoryRequest,
    ctx: AppContext = Depends(get_context),
) -> dict:
    """按分类批量启用、禁用、隐藏或显示."""
    feeds = await all_feeds(ctx)
    category = payload.category

    if action == "enable":
        prefs = await ctx.preferences.update(
            lambda p: prefs_ops.enable_category(p, category, feeds)
        )
    elif action == "disable":
        prefs = await ctx.preferences.update(
            lambda p: prefs_ops.disable_category(p, category, feeds)
        )
    elif action == "hide":
        prefs = await ctx.preferences.update(lambda p: prefs_ops.hide_category(p, category))
    else:
        prefs = await ctx.preferences.update(lambda p: prefs_ops.show_category(p, category))

    return preferences_payload(prefs)


@router.post("/preferences/{action}")
async def update_feed_preference(
    action: FeedAction,
    payload: FeedUrlRequest,
    ctx: AppContext = Depends(get_context),
) -> dict:
    """修改单个订阅源的偏好."""
    feed = await _require_feed(ctx, payload.url)
    mutators = {
        "enable": prefs_ops.enable_feed,
        "disable": prefs_ops.disable_feed,
        "block": prefs_ops.block_feed,
        "unblock": prefs_ops.unblock_feed,
        "favorite": prefs_ops.toggle_favorite,
    }
    mutate = mutators[action]
    prefs = await ctx.preferences.update(lambda p: mutate(p, feed.url))
    return preferences_payload(prefs)


@router.get("/custom")
async def list_custom_feeds(ctx: AppContext = Depends(get_context)) -> dict:
    feeds = await ctx.preferences.custom_feeds()
    return {"total": len(feeds), "items": [feed.model_dump() for feed in feeds]}


@router.post("/custom")
async def add_custom_feed(
    payload: CustomFeedRequest,
    ctx: AppContext = Depends(get_context),
) -> dict:
    """添加自定义订阅源（URL 需通过安全校验且不重复）."""
    feed = FeedDescriptor(
        name=payload.name.strip(),
        url=payload.url.strip(),
        category=payload.category,
        subcategory=payload.subcategory,
        region=payload.region,
        language=payload.language,
    )
    try:
        added = await ctx.preferences.add_custom_feed(feed, existing=RSS_FEEDS)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return added.model_dump()


@router.delete("/custom")
async def remove_custom_feed(
    url: str = Query(..., description="订阅源 URL"),
    ctx: AppContext = Depends(get_context),
) -> dict:
    removed = await ctx.preferences.remove_custom_feed(url)
    if not removed:
        raise HTTPException(status_code=404, detail="自定义订阅源不存在")
    return {"url": url, "removed": True}


@router.get("/health")
async def feed_health(ctx: AppContext = Depends(get_context)) -> dict:
    """订阅源健康统计与熔断中的订阅源."""
    stats = ctx.health.stats()
    disabled = set(ctx.health.disabled_urls())
    return {
        "stats": asdict(stats),
        "disabled": [
            health_payload(record)
            for record in ctx.health.records()
            if record.url in disabled
        ],
        "records": [health_payload(record) for record in ctx.health.records()],
    }


@router.post("/health/re-enable")
async def re_enable_feed(
    payload: FeedUrlRequest,
    ctx: AppContext = Depends(get_context),
) -> dict:
    """手动解除订阅源熔断."""
    if not await ctx.health.re_enable(payload.url):
        raise HTTPException(status_code=404, detail="没有该订阅源的健康记录")
    return {"url": payload.url, "available": True}
