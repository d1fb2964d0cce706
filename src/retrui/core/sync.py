"""新闻同步服务：轮转抓取目录中的订阅源并写入持久化存储."""

import asyncio
import logging
import re
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import timedelta

from retrui.config import Settings
from retrui.core.catalog import RSS_FEEDS, unique_by_url
from retrui.core.errors import FetchError
from retrui.core.retry import RetryPolicy, Sleep
from retrui.core.store import NewsStore
from retrui.fetcher.rss import RssFetcher
from retrui.models.feed import FeedDescriptor, FeedEntry
from retrui.utils.clock import Clock, parse_datetime, utc_now

logger = logging.getLogger(__name__)

SLUG_HASH_LENGTH = 5
DESCRIPTION_FALLBACK_LENGTH = 200

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def url_hash(url: str) -> int:
    """32 位有符号整数哈希（h * 31 + c，按 UTF-16 码元计算）."""
    value = 0
    encoded = url.encode("utf-16-le")
    for i in range(0, len(encoded), 2):
        unit = encoded[i] | (encoded[i + 1] << 8)
        value = ((value << 5) - value + unit) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return value


def slugify(title: str) -> str:
    text = title.lower().strip()
    text = re.sub(r"[^\w\s-]", "", text)
    text = re.sub(r"[\s_-]+", "-", text)
    return text.strip("-")


def generate_slug(title: str, url: str) -> str:
    """
    生成稳定的 slug.

    标题部分转为小写连字符形式，末尾附加 URL 哈希的前 5 位 36 进制字符，
    同一 URL 多次同步得到相同的 slug。
    """
    base = slugify(title) or "news"
    digest = _to_base36(abs(url_hash(url)))[:SLUG_HASH_LENGTH]
    return f"{base}-{digest}"


def rotate_feeds(
    feeds: Sequence[FeedDescriptor], batch_index: int, per_run: int
) -> list[FeedDescriptor]:
    """取第 batch_index 轮的订阅源切片，到末尾后从头补足."""
    if not feeds or per_run <= 0:
        return []
    count = min(per_run, len(feeds))
    start = (batch_index * per_run) % len(feeds)
    return [feeds[(start + offset) % len(feeds)] for offset in range(count)]


@dataclass
class FeedSyncResult:
    """单个订阅源的同步结果."""

    feed: str
    success: bool
    count: int = 0
    error: str | None = None


@dataclass
class SyncReport:
    """一次同步运行的统计."""

    batch_index: int
    synced_count: int = 0
    deleted_old_count: int = 0
    error_count: int = 0
    feeds_processed: int = 0
    duration_seconds: float = 0.0
    results: list[FeedSyncResult] = field(default_factory=list)


@dataclass(frozen=True)
class SyncOptions:
    feeds_per_run: int = 30
    batch_size: int = 5
    batch_delay: float = 2.0
    retention: timedelta = timedelta(days=5)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SyncOptions":
        return cls(
            feeds_per_run=settings.sync_feeds_per_run,
            batch_size=settings.sync_batch_size,
            batch_delay=settings.sync_batch_delay_ms / 1000,
            retention=timedelta(days=settings.news_retention_days),
        )


class SyncService:
    """新闻同步服务（不经过熔断器，偏向完整性）."""

    def __init__(
        self,
        fetcher: RssFetcher,
        store: NewsStore,
        policy: RetryPolicy,
        options: SyncOptions | None = None,
        catalog: Sequence[FeedDescriptor] = RSS_FEEDS,
        *,
        clock: Clock = utc_now,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.fetcher = fetcher
        self.store = store
        self.policy = policy
        self.options = options or SyncOptions()
        self.catalog = unique_by_url(list(catalog))
        self._clock = clock
        self._sleep = sleep

    async def run(self, batch_index: int = 0) -> SyncReport:
        """
        执行一次同步.

        先清理超过保留期的新闻，再按轮转切片分批抓取并写入。

        Args:
            batch_index: 轮转序号

        Returns:
            SyncReport: 同步统计
        """
        started = time.monotonic()
        report = SyncReport(batch_index=batch_index)

        logger.info("开始同步新闻...")
        report.deleted_old_count = await self.store.delete_older_than(
            self._clock() - self.options.retention
        )

        feeds = rotate_feeds(self.catalog, batch_index, self.options.feeds_per_run)
        report.feeds_processed = len(feeds)

        size = max(1, self.options.batch_size)
        batches = [feeds[i : i + size] for i in range(0, len(feeds), size)]

        for index, batch in enumerate(batches):
            logger.info(f"同步第 {index + 1}/{len(batches)} 批 ({len(batch)} 个订阅源)")
            results = await asyncio.gather(*(self.sync_feed(feed) for feed in batch))

            for result in results:
                report.results.append(result)
                if result.success:
                    report.synced_count += result.count
                else:
                    report.error_count += 1

            if index < len(batches) - 1 and self.options.batch_delay > 0:
                await self._sleep(self.options.batch_delay)

        report.duration_seconds = round(time.monotonic() - started, 2)
        logger.info(
            f"同步完成: 写入 {report.synced_count} 条, 清理 {report.deleted_old_count} 条, "
            f"失败订阅源 {report.error_count} 个, 耗时 {report.duration_seconds}s"
        )
        return report

    async def sync_feed(self, feed: FeedDescriptor) -> FeedSyncResult:
        """同步单个订阅源，失败不影响其他订阅源."""
        try:
            parsed = await self.fetcher.fetch_feed(feed.url, self.policy)
            count = 0
            for entry in parsed.items:
                if not entry.link or not entry.title:
                    continue
                await self.store.upsert(entry.link, self._fields(feed, entry))
                count += 1
        except FetchError as e:
            logger.warning(f"同步订阅源失败: {feed.name} ({feed.url}): {e.message}")
            return FeedSyncResult(feed=feed.name, success=False, error=e.message)
        except Exception as e:
            logger.exception(f"同步订阅源异常: {feed.name} ({feed.url})")
            return FeedSyncResult(feed=feed.name, success=False, error=str(e))

        return FeedSyncResult(feed=feed.name, success=True, count=count)

    def _fields(self, feed: FeedDescriptor, entry: FeedEntry) -> dict[str, object]:
        title = entry.title or ""
        description = entry.content_snippet or (
            entry.content[:DESCRIPTION_FALLBACK_LENGTH] if entry.content else None
        )
        return {
            "title": title,
            "slug": generate_slug(title, entry.link or ""),
            "description": description,
            "content": entry.content,
            "source": feed.name,
            "category": feed.category,
            "subcategory": feed.subcategory,
            "language": feed.language or "en",
            "region": feed.region,
            "author": entry.creator or entry.author,
            "published_at": parse_datetime(entry.pub_date) or self._clock(),
        }
