"""定时同步触发 API."""

import hmac
import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from retrui.api.deps import get_context
from retrui.core.context import AppContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cron", tags=["cron"])


def _authorized(secret: str, token: str | None, authorization: str | None) -> bool:
    """未配置密钥时放行；否则接受 ?token= 或 Bearer 头."""
    if not secret:
        return True
    if token is not None and hmac.compare_digest(token, secret):
        return True
    return authorization is not None and hmac.compare_digest(
        authorization, f"Bearer {secret}"
    )


@router.get("/sync-news")
async def sync_news(
    batch: int | None = Query(None, ge=0, description="轮转序号"),
    token: str | None = Query(None, description="同步密钥"),
    authorization: str | None = Header(None),
    ctx: AppContext = Depends(get_context),
) -> dict:
    """触发一次新闻同步."""
    if not _authorized(ctx.settings.cron_secret, token, authorization):
        raise HTTPException(status_code=401, detail="Unauthorized")

    report = await ctx.run_sync(batch if batch is not None else 0)
    payload = asdict(report)
    return {
        "success": True,
        **payload,
        "message": "Synchronization completed successfully",
    }
