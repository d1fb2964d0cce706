"""新闻聚合流水线：目录 → 语言 → 偏好 → 隐藏分类 → 熔断过滤 → 批量聚合."""

import logging
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass

from retrui.core.aggregator import AggregationSnapshot, BatchAggregator, RunCoordinator
from retrui.core.catalog import RSS_FEEDS, unique_by_url
from retrui.core.health import FeedHealthTracker, SkippedFeed
from retrui.core.preferences import (
    FeedPreferences,
    PreferenceService,
    filter_enabled,
    filter_visible,
)
from retrui.models.feed import FeedDescriptor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeedSelection:
    """本次聚合实际使用的订阅源."""

    feeds: list[FeedDescriptor]
    skipped: list[SkippedFeed]
    cache_key: str


def news_cache_key(language: str | None, prefs: FeedPreferences) -> str:
    return f"news:{language or 'all'}:{prefs.fingerprint()}"


def select_feeds(
    catalog: Sequence[FeedDescriptor],
    prefs: FeedPreferences,
    health: FeedHealthTracker,
    language: str | None = None,
) -> FeedSelection:
    """按语言、偏好和熔断状态筛选订阅源."""
    feeds = unique_by_url(list(catalog))
    if language:
        feeds = [feed for feed in feeds if feed.language == language]
    feeds = filter_visible(filter_enabled(feeds, prefs), prefs)
    available, skipped = health.filter_available(feeds)

    if skipped:
        logger.info(f"跳过 {len(skipped)} 个熔断中的订阅源")

    return FeedSelection(
        feeds=available,
        skipped=skipped,
        cache_key=news_cache_key(language, prefs),
    )


class NewsPipeline:
    """组合偏好、熔断和聚合器，并保证同一缓存键只有一个运行."""

    def __init__(
        self,
        aggregator: BatchAggregator,
        preferences: PreferenceService,
        health: FeedHealthTracker,
        catalog: Sequence[FeedDescriptor] = RSS_FEEDS,
    ) -> None:
        self.aggregator = aggregator
        self.preferences = preferences
        self.health = health
        self.catalog = list(catalog)
        self.coordinator = RunCoordinator()

    async def select(self, language: str | None = None) -> FeedSelection:
        prefs = await self.preferences.get()
        custom = await self.preferences.custom_feeds()
        return select_feeds([*self.catalog, *custom], prefs, self.health, language)

    async def stream(self, language: str | None = None) -> AsyncIterator[AggregationSnapshot]:
        """聚合并逐批输出快照；同一键上新的运行会取消旧运行."""
        selection = await self.select(language)
        token = self.coordinator.start(selection.cache_key)
        try:
            async for snapshot in self.aggregator.stream(
                selection.feeds, selection.cache_key, token
            ):
                yield snapshot
        finally:
            self.coordinator.finish(selection.cache_key, token)

    async def collect(self, language: str | None = None) -> AggregationSnapshot | None:
        """运行到结束，返回最后一个快照（被取消时返回已有的最后快照）."""
        last: AggregationSnapshot | None = None
        async for snapshot in self.stream(language):
            last = snapshot
        return last
