"""Retrui 主应用入口."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from retrui import __version__
from retrui.api import cron, feeds, fetch, news
from retrui.api.errors import register_error_handlers
from retrui.config import get_settings
from retrui.core.context import AppContext
from retrui.middleware import FixedWindowRateLimiter, RateLimitMiddleware
from retrui.scheduler import create_scheduler, shutdown_scheduler

# 配置日志
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """应用生命周期管理."""
    app_settings = get_settings()

    logger.info("正在初始化应用上下文...")
    ctx = await AppContext.create(app_settings)
    app.state.context = ctx

    logger.info("正在启动定时任务...")
    create_scheduler(app_settings, ctx)

    logger.info("Retrui 启动完成！")
    yield

    # 关闭时清理
    logger.info("正在关闭...")
    await shutdown_scheduler()
    await ctx.close()
    logger.info("Retrui 已关闭")


settings = get_settings()

app = FastAPI(
    title="Retrui",
    description="多源 RSS 新闻聚合 - 重试退避、订阅源熔断与分批增量合并",
    version=__version__,
    lifespan=lifespan,
)

# CORS 配置
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 限流（仅 /api/ 路径）
rate_limiter = FixedWindowRateLimiter(
    requests=settings.rate_limit_requests,
    window_seconds=settings.rate_limit_window_seconds,
)
app.add_middleware(
    RateLimitMiddleware,
    limiter=rate_limiter,
    enabled=settings.rate_limit_enabled,
)

register_error_handlers(app)

# 注册路由
app.include_router(fetch.router)
app.include_router(news.router)
app.include_router(feeds.router)
app.include_router(cron.router)


@app.get("/")
async def root() -> dict:
    """根路径."""
    return {
        "name": "Retrui",
        "version": __version__,
        "description": "多源 RSS 新闻聚合服务",
    }


@app.get("/health")
async def health() -> dict:
    """健康检查."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "retrui.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
