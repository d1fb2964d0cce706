"""应用上下文：进程内共享的组件集合."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from retrui.config import Settings
from retrui.core.aggregator import AggregatorOptions, BatchAggregator
from retrui.core.cache import FreshnessCache, MemoryCacheBackend, SqlCacheBackend
from retrui.core.health import BreakerPolicy, FeedHealthTracker, HealthStore
from retrui.core.pipeline import NewsPipeline
from retrui.core.preferences import PreferenceService
from retrui.core.retry import RetryPolicy, Sleep
from retrui.core.store import NewsStore
from retrui.core.sync import SyncOptions, SyncReport, SyncService
from retrui.fetcher import ContentExtractor, RssFetcher
from retrui.models.database import close_db, init_db
from retrui.utils.clock import Clock, utc_now

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """组件容器，在 lifespan 中创建，测试中可直接构造."""

    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    client: httpx.AsyncClient
    fetcher: RssFetcher
    extractor: ContentExtractor
    health: FeedHealthTracker
    cache: FreshnessCache
    preferences: PreferenceService
    aggregator: BatchAggregator
    pipeline: NewsPipeline
    store: NewsStore
    sync: SyncService
    owns_database: bool = False
    sync_cursor: int = 0
    sync_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @classmethod
    async def create(
        cls,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Clock = utc_now,
        sleep: Sleep = asyncio.sleep,
    ) -> "AppContext":
        """
        组装全部组件.

        Args:
            settings: 应用配置
            session_factory: 已有的会话工厂；为空时按配置初始化数据库
            transport: httpx 传输层（测试中传入 MockTransport）
            clock: 时钟
            sleep: 异步等待函数
        """
        owns_database = session_factory is None
        if session_factory is None:
            session_factory = await init_db(settings.database_url)

        client = httpx.AsyncClient(
            headers={"User-Agent": settings.user_agent},
            follow_redirects=False,
            transport=transport,
        )

        fetcher = RssFetcher(client, resolve_dns=settings.ssrf_resolve_dns, sleep=sleep)
        extractor = ContentExtractor(
            client,
            timeout=settings.content_timeout_seconds,
            resolve_dns=settings.ssrf_resolve_dns,
        )

        health = FeedHealthTracker(
            BreakerPolicy.from_settings(settings),
            HealthStore(session_factory),
            clock=clock,
            record_ttl=timedelta(days=settings.health_record_ttl_days),
        )
        await health.load()

        backend = (
            MemoryCacheBackend()
            if settings.cache_backend == "memory"
            else SqlCacheBackend(session_factory)
        )
        cache = FreshnessCache(backend, clock=clock)
        preferences = PreferenceService(session_factory)

        aggregator = BatchAggregator(
            fetcher,
            health,
            cache,
            RetryPolicy.aggregator(settings),
            AggregatorOptions.from_settings(settings),
            clock=clock,
            sleep=sleep,
        )
        store = NewsStore(session_factory)

        return cls(
            settings=settings,
            session_factory=session_factory,
            client=client,
            fetcher=fetcher,
            extractor=extractor,
            health=health,
            cache=cache,
            preferences=preferences,
            aggregator=aggregator,
            pipeline=NewsPipeline(aggregator, preferences, health),
            store=store,
            sync=SyncService(
                fetcher,
                store,
                RetryPolicy.sync(settings),
                SyncOptions.from_settings(settings),
                clock=clock,
                sleep=sleep,
            ),
            owns_database=owns_database,
        )

    @property
    def interactive_policy(self) -> RetryPolicy:
        return RetryPolicy.interactive(self.settings)

    async def run_sync(self, batch_index: int | None = None) -> SyncReport:
        """
        执行一次同步；未指定轮转序号时使用并推进内部游标.

        同一时刻只允许一个同步运行。
        """
        async with self.sync_lock:
            if batch_index is None:
                batch_index = self.sync_cursor
                self.sync_cursor += 1
            return await self.sync.run(batch_index)

    async def close(self) -> None:
        """释放 HTTP 客户端、线程池和数据库连接."""
        await self.client.aclose()
        self.extractor.close()
        if self.owns_database:
            await close_db()
        logger.info("应用上下文已关闭")
