"""定时任务定义."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from retrui.config import Settings
from retrui.core.context import AppContext

logger = logging.getLogger(__name__)

_scheduler: AsyncIOScheduler | None = None


async def sync_task(ctx: AppContext) -> None:
    """同步任务：按轮转游标同步下一批订阅源."""
    if ctx.sync_lock.locked():
        logger.info("已有同步任务在运行，跳过本次调度")
        return

    try:
        report = await ctx.run_sync()
        logger.info(
            f"定时同步完成: 轮次={report.batch_index}, 写入={report.synced_count}, "
            f"失败={report.error_count}"
        )
    except Exception as e:
        logger.exception(f"同步任务失败: {e}")


async def prune_health_task(ctx: AppContext) -> None:
    """清理过期的订阅源健康记录."""
    removed = await ctx.health.prune()
    if removed:
        logger.info(f"健康记录清理完成: {removed} 条")


def create_scheduler(settings: Settings, ctx: AppContext) -> AsyncIOScheduler:
    """创建并启动定时任务调度器."""
    global _scheduler

    _scheduler = AsyncIOScheduler()

    if settings.sync_enabled:
        _scheduler.add_job(
            sync_task,
            "interval",
            minutes=settings.sync_interval_minutes,
            args=[ctx],
            id="sync_news_task",
            name="新闻同步",
            replace_existing=True,
        )

        # 启动时立即执行一次同步
        _scheduler.add_job(
            sync_task,
            "date",
            args=[ctx],
            id="sync_news_task_initial",
            name="初始同步",
        )

    _scheduler.add_job(
        prune_health_task,
        "interval",
        hours=24,
        args=[ctx],
        id="prune_health_task",
        name="清理健康记录",
        replace_existing=True,
    )

    _scheduler.start()
    logger.info(
        f"定时任务调度器已启动，同步间隔: {settings.sync_interval_minutes} 分钟"
        if settings.sync_enabled
        else "定时任务调度器已启动，新闻同步已禁用"
    )

    return _scheduler


async def shutdown_scheduler() -> None:
    """关闭定时任务调度器."""
    global _scheduler
    if _scheduler:
        _scheduler.shutdown(wait=False)
        logger.info("定时任务调度器已关闭")
        _scheduler = None
