"""新闻 API."""

import json
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse

from retrui.api.deps import get_context
from retrui.core.aggregator import AggregationSnapshot
from retrui.core.context import AppContext
from retrui.models.news import News
from retrui.utils.clock import from_db_time

router = APIRouter(prefix="/api/news", tags=["news"])


def snapshot_payload(snapshot: AggregationSnapshot, limit: int | None = None) -> dict:
    items = snapshot.items[:limit] if limit else snapshot.items
    return {
        "items": [item.model_dump(mode="json") for item in items],
        "total": len(snapshot.items),
        "completed_feeds": snapshot.completed_feeds,
        "total_feeds": snapshot.total_feeds,
        "batch_index": snapshot.batch_index,
        "batch_count": snapshot.batch_count,
        "from_cache": snapshot.from_cache,
        "failed_feeds": list(snapshot.failed_feeds),
    }


def news_payload(row: News) -> dict:
    published_at = from_db_time(row.published_at)
    created_at = from_db_time(row.created_at)
    return {
        "id": row.id,
        "slug": row.slug,
        "title": row.title,
        "description": row.description,
        "content": row.content,
        "url": row.url,
        "source": row.source,
        "category": row.category,
        "subcategory": row.subcategory,
        "language": row.language,
        "region": row.region,
        "author": row.author,
        "published_at": published_at.isoformat() if published_at else None,
        "created_at": created_at.isoformat() if created_at else None,
    }


@router.get("")
async def aggregate_news(
    language: str | None = Query(None, description="语言代码"),
    limit: int = Query(100, ge=1, le=100, description="返回数量"),
    ctx: AppContext = Depends(get_context),
) -> dict:
    """聚合所有启用的订阅源，返回合并后的新闻列表."""
    snapshot = await ctx.pipeline.collect(language)
    if snapshot is None:
        return {
            "items": [],
            "total": 0,
            "completed_feeds": 0,
            "total_feeds": 0,
            "batch_index": 0,
            "batch_count": 0,
            "from_cache": False,
            "failed_feeds": [],
        }
    return snapshot_payload(snapshot, limit)


@router.get("/stream")
async def stream_news(
    language: str | None = Query(None, description="语言代码"),
    ctx: AppContext = Depends(get_context),
) -> StreamingResponse:
    """逐批推送聚合结果（SSE）."""

    async def generate() -> AsyncIterator[str]:
        yield f"event: start\ndata: {json.dumps({'status': 'aggregating'})}\n\n"

        async for snapshot in ctx.pipeline.stream(language):
            payload = json.dumps(snapshot_payload(snapshot), ensure_ascii=False)
            yield f"event: snapshot\ndata: {payload}\n\n"

        yield f"event: done\ndata: {json.dumps({'status': 'completed'})}\n\n"

    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )


@router.get("/recent")
async def recent_news(
    language: str | None = Query(None, description="语言代码"),
    limit: int = Query(25, ge=1, le=100, description="返回数量"),
    ctx: AppContext = Depends(get_context),
) -> dict:
    """从持久化存储读取最近的新闻."""
    rows = await ctx.store.find_recent(language, limit)
    return {"items": [news_payload(row) for row in rows], "total": len(rows)}


@router.get("/{slug}")
async def get_news(
    slug: str,
    ctx: AppContext = Depends(get_context),
) -> dict:
    """按 slug 获取新闻（精确匹配失败时按前缀查找）."""
    row = await ctx.store.resolve_slug(slug)
    if row is None:
        raise HTTPException(status_code=404, detail="新闻不存在")
    return news_payload(row)
