"""批量聚合：分批并发抓取多个订阅源，逐批合并排序并输出快照."""

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from pydantic import TypeAdapter, ValidationError

from retrui.config import Settings
from retrui.core.cache import FreshnessCache
from retrui.core.errors import FetchError, UrlRejectedError
from retrui.core.health import FeedHealthTracker
from retrui.core.retry import RetryPolicy, Sleep
from retrui.fetcher.rss import RssFetcher
from retrui.models.feed import FeedDescriptor, FeedEntry
from retrui.models.news import NewsItem
from retrui.utils.clock import Clock, parse_datetime, utc_now
from retrui.utils.html_parser import clean_description

logger = logging.getLogger(__name__)

_ITEMS = TypeAdapter(list[NewsItem])

FEED_CACHE_PREFIX = "rss:"


def normalize_entries(
    feed: FeedDescriptor,
    entries: Sequence[FeedEntry],
    *,
    now: datetime,
    max_items: int = 15,
    freshness_window: timedelta = timedelta(hours=24),
) -> list[NewsItem]:
    """
    把 Feed 条目转换为 NewsItem.

    超出时间窗口的条目被丢弃；发布时间无法解析的条目保留，时间记为当前时间。
    没有链接的条目无法去重，直接跳过。
    """
    cutoff = now - freshness_window
    items: list[NewsItem] = []

    for entry in entries[:max_items]:
        if not entry.link:
            continue

        published = parse_datetime(entry.pub_date)
        if published is not None and published < cutoff:
            continue

        items.append(
            NewsItem(
                id=uuid.uuid4().hex,
                title=entry.title or "Untitled",
                description=clean_description(entry.content_snippet or entry.content or ""),
                content=clean_description(entry.content or entry.content_snippet or ""),
                author=entry.creator or entry.author or feed.name,
                published_at=published or now,
                source=feed.name,
                category=feed.category,
                url=entry.link,
            )
        )

    return items


def merge_items(
    current: Sequence[NewsItem], incoming: Sequence[NewsItem], limit: int
) -> list[NewsItem]:
    """按 url 去重合并（保留先到的条目），按发布时间倒序并截断."""
    seen: set[str] = set()
    merged: list[NewsItem] = []
    for item in [*current, *incoming]:
        if item.url in seen:
            continue
        seen.add(item.url)
        merged.append(item)

    merged.sort(key=lambda item: item.published_at, reverse=True)
    return merged[:limit]


class CancellationToken:
    """协作式取消令牌，取消时同时中止登记的进行中任务."""

    def __init__(self) -> None:
        self._cancelled = False
        self._tasks: set[asyncio.Task] = set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        for task in list(self._tasks):
            task.cancel()

    def track(self, task: asyncio.Task) -> asyncio.Task:
        """登记任务；令牌已取消时立即取消该任务."""
        if self._cancelled:
            task.cancel()
            return task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task


class RunCoordinator:
    """同一缓存键同时只保留一个聚合运行，新运行会取消旧运行."""

    def __init__(self) -> None:
        self._tokens: dict[str, CancellationToken] = {}

    def start(self, key: str) -> CancellationToken:
        previous = self._tokens.get(key)
        if previous is not None and not previous.cancelled:
            logger.info(f"取消被替代的聚合运行: {key}")
            previous.cancel()
        token = CancellationToken()
        self._tokens[key] = token
        return token

    def finish(self, key: str, token: CancellationToken) -> None:
        if self._tokens.get(key) is token:
            del self._tokens[key]

    def active(self, key: str) -> CancellationToken | None:
        return self._tokens.get(key)


@dataclass(frozen=True)
class AggregationSnapshot:
    """一次增量结果."""

    items: list[NewsItem]
    completed_feeds: int
    total_feeds: int
    batch_index: int
    batch_count: int
    from_cache: bool = False
    failed_feeds: tuple[str, ...] = ()


@dataclass
class FeedOutcome:
    feed: FeedDescriptor
    items: list[NewsItem] = field(default_factory=list)
    error: str | None = None


@dataclass(frozen=True)
class AggregatorOptions:
    """聚合参数."""

    batch_size: int = 8
    batch_delay: float = 0.05
    max_items: int = 100
    items_per_feed: int = 15
    freshness_window: timedelta = timedelta(hours=24)
    feed_cache_ttl: timedelta = timedelta(minutes=5)
    news_cache_ttl: timedelta = timedelta(minutes=2)

    @classmethod
    def from_settings(cls, settings: Settings) -> "AggregatorOptions":
        return cls(
            batch_size=settings.batch_size,
            batch_delay=settings.batch_delay_ms / 1000,
            max_items=settings.max_news_items,
            items_per_feed=settings.items_per_feed,
            freshness_window=timedelta(hours=settings.freshness_window_hours),
            feed_cache_ttl=timedelta(seconds=settings.feed_cache_ttl_seconds),
            news_cache_ttl=timedelta(seconds=settings.news_cache_ttl_seconds),
        )


class BatchAggregator:
    """分批聚合多个订阅源."""

    def __init__(
        self,
        fetcher: RssFetcher,
        health: FeedHealthTracker,
        cache: FreshnessCache,
        policy: RetryPolicy,
        options: AggregatorOptions | None = None,
        *,
        clock: Clock = utc_now,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.fetcher = fetcher
        self.health = health
        self.cache = cache
        self.policy = policy
        self.options = options or AggregatorOptions()
        self._clock = clock
        self._sleep = sleep

    async def _read_items(self, key: str, ttl: timedelta) -> list[NewsItem] | None:
        entry = await self.cache.get_fresh(key, ttl)
        if entry is None:
            return None
        try:
            return _ITEMS.validate_json(entry.data)
        except ValidationError as e:
            logger.warning(f"缓存数据无法解析，忽略: {key} ({e})")
            return None

    async def _write_items(self, key: str, items: Sequence[NewsItem]) -> None:
        await self.cache.set(key, [item.model_dump(mode="json") for item in items])

    async def fetch_feed(self, feed: FeedDescriptor) -> FeedOutcome:
        """抓取单个订阅源并更新健康状态，失败时返回空结果."""
        cache_key = f"{FEED_CACHE_PREFIX}{feed.url}"
        cached = await self._read_items(cache_key, self.options.feed_cache_ttl)
        if cached is not None:
            # 缓存条目每次运行换新 id，并重新按时间窗口过滤
            cutoff = self._clock() - self.options.freshness_window
            items = [
                item.model_copy(update={"id": uuid.uuid4().hex})
                for item in cached
                if item.published_at >= cutoff
            ]
            return FeedOutcome(feed=feed, items=items)

        try:
            parsed = await self.fetcher.fetch_feed(feed.url, self.policy)
        except UrlRejectedError as e:
            logger.warning(f"订阅源 URL 被拒绝: {feed.name} ({feed.url}): {e.message}")
            return FeedOutcome(feed=feed, error=e.message)
        except FetchError as e:
            logger.warning(f"订阅源抓取失败: {feed.name} ({feed.url}): {e.message}")
            await self.health.record_failure(feed.url, e.message)
            return FeedOutcome(feed=feed, error=e.message)
        except Exception as e:
            logger.exception(f"订阅源抓取异常: {feed.name} ({feed.url})")
            await self.health.record_failure(feed.url, str(e))
            return FeedOutcome(feed=feed, error=str(e))

        await self.health.record_success(feed.url)
        items = normalize_entries(
            feed,
            parsed.items,
            now=self._clock(),
            max_items=self.options.items_per_feed,
            freshness_window=self.options.freshness_window,
        )
        await self._write_items(cache_key, items)
        return FeedOutcome(feed=feed, items=items)

    async def stream(
        self,
        feeds: Sequence[FeedDescriptor],
        cache_key: str,
        token: CancellationToken | None = None,
    ) -> AsyncIterator[AggregationSnapshot]:
        """
        逐批聚合，每批完成后输出一次快照.

        合并结果缓存新鲜时只输出一次 from_cache 快照。令牌取消后静默结束，
        已输出的快照不受影响，但不会写入合并缓存。
        """
        token = token or CancellationToken()

        cached = await self._read_items(cache_key, self.options.news_cache_ttl)
        if cached is not None:
            yield AggregationSnapshot(
                items=cached,
                completed_feeds=len(feeds),
                total_feeds=len(feeds),
                batch_index=0,
                batch_count=0,
                from_cache=True,
            )
            return

        size = max(1, self.options.batch_size)
        batches = [feeds[i : i + size] for i in range(0, len(feeds), size)]
        accumulated: list[NewsItem] = []
        failed: list[str] = []
        completed = 0

        logger.info(f"开始聚合 {len(feeds)} 个订阅源，共 {len(batches)} 批")

        for index, batch in enumerate(batches):
            if token.cancelled:
                logger.info(f"聚合已取消（第 {index + 1} 批之前）: {cache_key}")
                return

            if index > 0 and self.options.batch_delay > 0:
                await self._sleep(self.options.batch_delay)
                if token.cancelled:
                    return

            tasks = [
                token.track(asyncio.create_task(self.fetch_feed(feed))) for feed in batch
            ]
            results = await asyncio.gather(*tasks, return_exceptions=True)

            if token.cancelled:
                logger.info(f"聚合已取消（第 {index + 1} 批进行中）: {cache_key}")
                return

            incoming: list[NewsItem] = []
            for feed, result in zip(batch, results, strict=True):
                if isinstance(result, BaseException):
                    # fetch_feed 自身吞掉了普通异常，这里只会是任务被取消
                    failed.append(feed.url)
                    continue
                if result.error is not None:
                    failed.append(feed.url)
                incoming.extend(result.items)

            completed += len(batch)
            accumulated = merge_items(accumulated, incoming, self.options.max_items)

            yield AggregationSnapshot(
                items=list(accumulated),
                completed_feeds=completed,
                total_feeds=len(feeds),
                batch_index=index,
                batch_count=len(batches),
                failed_feeds=tuple(failed),
            )

        if token.cancelled:
            return

        await self._write_items(cache_key, accumulated)
        logger.info(
            f"聚合完成: {len(accumulated)} 条新闻, "
            f"{len(feeds) - len(failed)}/{len(feeds)} 个订阅源成功"
        )

    async def fetch_all(
        self,
        feeds: Sequence[FeedDescriptor],
        cache_key: str,
        on_update: Callable[[list[NewsItem]], Awaitable[None] | None],
        on_progress: Callable[[int, int], Awaitable[None] | None] | None = None,
        token: CancellationToken | None = None,
    ) -> list[NewsItem]:
        """回调风格的聚合接口，返回最后一次快照的条目."""
        last: list[NewsItem] = []
        async for snapshot in self.stream(feeds, cache_key, token):
            last = snapshot.items
            result = on_update(snapshot.items)
            if asyncio.iscoroutine(result):
                await result
            if on_progress is not None:
                progress = on_progress(snapshot.completed_feeds, snapshot.total_feeds)
                if asyncio.iscoroutine(progress):
                    await progress
        return last
