"""订阅源健康追踪（熔断器）.

连续失败达到阈值的订阅源在冷却期内不再抓取，冷却时间随失败次数翻倍
（有上限）；冷却结束后自动恢复尝试，成功一次即清零。
"""

import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import delete, select

from retrui.config import Settings
from retrui.models.feed import FeedDescriptor
from retrui.models.health import FeedHealth
from retrui.utils.clock import Clock, from_db_time, to_db_time, utc_now

logger = logging.getLogger(__name__)

UNHEALTHY_FAILURE_RATE = 0.5


@dataclass(frozen=True)
class FeedHealthRecord:
    """单个订阅源的健康记录."""

    url: str
    consecutive_failures: int = 0
    success_count: int = 0
    failure_count: int = 0
    last_success_at: datetime | None = None
    last_failure_at: datetime | None = None
    disabled_until: datetime | None = None
    last_error: str | None = None

    def is_disabled(self, now: datetime) -> bool:
        """熔断是否生效."""
        return self.disabled_until is not None and self.disabled_until > now

    @property
    def last_activity(self) -> datetime | None:
        """最近一次尝试时间."""
        moments = [m for m in (self.last_success_at, self.last_failure_at) if m]
        return max(moments) if moments else None

    @property
    def failure_rate(self) -> float:
        total = self.success_count + self.failure_count
        return self.failure_count / total if total else 0.0


@dataclass(frozen=True)
class BreakerPolicy:
    """熔断策略."""

    threshold: int = 3
    base_cooldown: timedelta = timedelta(minutes=30)
    max_cooldown: timedelta = timedelta(hours=6)

    def cooldown_for(self, consecutive_failures: int) -> timedelta:
        """第 N 次连续失败后的冷却时间（达到阈值时为基础冷却，之后每次翻倍）."""
        exponent = max(0, consecutive_failures - self.threshold)
        # 指数上限防止溢出
        cooldown = self.base_cooldown * (2 ** min(exponent, 16))
        return min(cooldown, self.max_cooldown)

    @classmethod
    def from_settings(cls, settings: Settings) -> "BreakerPolicy":
        return cls(
            threshold=settings.breaker_threshold,
            base_cooldown=timedelta(minutes=settings.breaker_cooldown_minutes),
            max_cooldown=timedelta(minutes=settings.breaker_max_cooldown_minutes),
        )


@dataclass(frozen=True)
class SkippedFeed:
    """被熔断跳过的订阅源."""

    url: str
    reason: str
    disabled_until: datetime | None = None


@dataclass
class HealthStats:
    """健康统计（用于设置页展示）."""

    total_feeds: int = 0
    healthy_feeds: int = 0
    unhealthy_feeds: int = 0
    disabled_feeds: int = 0
    overall_success_rate: float = 100.0


class HealthStore:
    """健康记录持久化（feed_health 表）."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def load_all(self) -> list[FeedHealthRecord]:
        async with self._session_factory() as session:
            result = await session.execute(select(FeedHealth))
            return [self._to_record(row) for row in result.scalars().all()]

    async def save(self, record: FeedHealthRecord) -> None:
        async with self._session_factory() as session:
            row = await session.get(FeedHealth, record.url)
            if row is None:
                row = FeedHealth(url=record.url)
                session.add(row)
            row.consecutive_failures = record.consecutive_failures
            row.success_count = record.success_count
            row.failure_count = record.failure_count
            row.last_success_at = to_db_time(record.last_success_at)
            row.last_failure_at = to_db_time(record.last_failure_at)
            row.disabled_until = to_db_time(record.disabled_until)
            row.last_error = record.last_error
            await session.commit()

    async def delete(self, urls: Sequence[str]) -> None:
        if not urls:
            return
        async with self._session_factory() as session:
            await session.execute(delete(FeedHealth).where(FeedHealth.url.in_(urls)))  # type: ignore[attr-defined]
            await session.commit()

    async def clear(self) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(FeedHealth))
            await session.commit()

    @staticmethod
    def _to_record(row: FeedHealth) -> FeedHealthRecord:
        return FeedHealthRecord(
            url=row.url,
            consecutive_failures=row.consecutive_failures,
            success_count=row.success_count,
            failure_count=row.failure_count,
            last_success_at=from_db_time(row.last_success_at),
            last_failure_at=from_db_time(row.last_failure_at),
            disabled_until=from_db_time(row.disabled_until),
            last_error=row.last_error,
        )


class FeedHealthTracker:
    """订阅源健康追踪器."""

    def __init__(
        self,
        policy: BreakerPolicy | None = None,
        store: HealthStore | None = None,
        clock: Clock = utc_now,
        record_ttl: timedelta = timedelta(days=14),
    ) -> None:
        self.policy = policy or BreakerPolicy()
        self._store = store
        self._clock = clock
        self._record_ttl = record_ttl
        self._records: dict[str, FeedHealthRecord] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def load(self) -> int:
        """从持久化存储加载记录."""
        if self._store is None:
            return 0
        try:
            records = await self._store.load_all()
        except SQLAlchemyError as e:
            logger.warning(f"加载订阅源健康记录失败，使用空状态: {e}")
            return 0

        self._records = {record.url: record for record in records}
        logger.info(f"已加载 {len(records)} 条订阅源健康记录")
        return len(records)

    def _lock_for(self, url: str) -> asyncio.Lock:
        lock = self._locks.get(url)
        if lock is None:
            lock = self._locks[url] = asyncio.Lock()
        return lock

    async def _persist(self, record: FeedHealthRecord) -> None:
        if self._store is None:
            return
        try:
            await self._store.save(record)
        except SQLAlchemyError as e:
            logger.warning(f"保存健康记录失败 ({record.url}): {e}")

    async def record_success(self, url: str) -> FeedHealthRecord:
        """记录一次成功抓取：连续失败清零并解除熔断."""
        async with self._lock_for(url):
            current = self._records.get(url) or FeedHealthRecord(url=url)
            updated = replace(
                current,
                consecutive_failures=0,
                success_count=current.success_count + 1,
                last_success_at=self._clock(),
                disabled_until=None,
            )
            self._records[url] = updated
            await self._persist(updated)
            return updated

    async def record_failure(self, url: str, error: str | None = None) -> FeedHealthRecord:
        """记录一次失败抓取，连续失败达到阈值时熔断."""
        async with self._lock_for(url):
            now = self._clock()
            current = self._records.get(url) or FeedHealthRecord(url=url)
            failures = current.consecutive_failures + 1

            disabled_until = current.disabled_until
            if failures >= self.policy.threshold:
                disabled_until = now + self.policy.cooldown_for(failures)

            updated = replace(
                current,
                consecutive_failures=failures,
                failure_count=current.failure_count + 1,
                last_failure_at=now,
                last_error=error,
                disabled_until=disabled_until,
            )
            self._records[url] = updated

            if failures >= self.policy.threshold:
                logger.warning(
                    f"订阅源连续失败 {failures} 次，暂停至 "
                    f"{disabled_until.isoformat() if disabled_until else '-'}: {url} ({error})"
                )

            await self._persist(updated)
            return updated

    def is_available(self, url: str) -> bool:
        """无记录或熔断已过期即可抓取."""
        record = self._records.get(url)
        return record is None or not record.is_disabled(self._clock())

    def filter_available(
        self, feeds: Iterable[FeedDescriptor]
    ) -> tuple[list[FeedDescriptor], list[SkippedFeed]]:
        """按熔断状态拆分订阅源列表."""
        now = self._clock()
        available: list[FeedDescriptor] = []
        skipped: list[SkippedFeed] = []

        for feed in feeds:
            record = self._records.get(feed.url)
            if record is not None and record.is_disabled(now):
                skipped.append(
                    SkippedFeed(
                        url=feed.url,
                        reason="Temporarily disabled due to repeated failures",
                        disabled_until=record.disabled_until,
                    )
                )
            else:
                available.append(feed)

        return available, skipped

    def get(self, url: str) -> FeedHealthRecord | None:
        return self._records.get(url)

    def records(self) -> list[FeedHealthRecord]:
        return list(self._records.values())

    def disabled_urls(self) -> list[str]:
        now = self._clock()
        return [url for url, record in self._records.items() if record.is_disabled(now)]

    async def re_enable(self, url: str) -> bool:
        """手动解除熔断."""
        async with self._lock_for(url):
            current = self._records.get(url)
            if current is None:
                return False
            updated = replace(current, consecutive_failures=0, disabled_until=None)
            self._records[url] = updated
            await self._persist(updated)
            logger.info(f"手动恢复订阅源: {url}")
            return True

    def stats(self) -> HealthStats:
        """汇总健康统计."""
        stats = HealthStats(total_feeds=len(self._records))
        now = self._clock()
        successes = 0
        attempts = 0

        for record in self._records.values():
            total = record.success_count + record.failure_count
            if total == 0:
                continue
            successes += record.success_count
            attempts += total

            if record.is_disabled(now):
                stats.disabled_feeds += 1
            elif record.failure_rate >= UNHEALTHY_FAILURE_RATE:
                stats.unhealthy_feeds += 1
            else:
                stats.healthy_feeds += 1

        if attempts:
            stats.overall_success_rate = successes / attempts * 100
        return stats

    async def prune(self) -> int:
        """清理长期无活动且未熔断的记录."""
        now = self._clock()
        cutoff = now - self._record_ttl
        stale = [
            url
            for url, record in self._records.items()
            if not record.is_disabled(now)
            and (record.last_activity is None or record.last_activity < cutoff)
        ]
        for url in stale:
            self._records.pop(url, None)
            self._locks.pop(url, None)

        if stale and self._store is not None:
            try:
                await self._store.delete(stale)
            except SQLAlchemyError as e:
                logger.warning(f"清理健康记录失败: {e}")

        if stale:
            logger.info(f"清理了 {len(stale)} 条过期健康记录")
        return len(stale)

    async def clear(self) -> None:
        """清空全部健康记录."""
        self._records.clear()
        self._locks.clear()
        if self._store is not None:
            try:
                await self._store.clear()
            except SQLAlchemyError as e:
                logger.warning(f"清空健康记录失败: {e}")
