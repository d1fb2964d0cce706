"""订阅偏好：启用 / 禁用 / 屏蔽 / 收藏 / 隐藏分类.

所有集合都以 Feed URL 为键。过滤函数是纯函数，修改函数返回新的
FeedPreferences 值；持久化由 PreferenceService 负责。
"""

import asyncio
import hashlib
import json
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from retrui.models.feed import FeedDescriptor
from retrui.models.settings import SettingItem
from retrui.utils.clock import db_now
from retrui.utils.security import validate_url

logger = logging.getLogger(__name__)

PREFERENCES_KEY = "feed_preferences"
CUSTOM_FEEDS_KEY = "custom_feeds"


class FeedPreferences(BaseModel):
    """用户订阅偏好（不可变值）."""

    model_config = ConfigDict(frozen=True)

    enabled_feeds: frozenset[str] = Field(default_factory=frozenset)
    blocked_feeds: frozenset[str] = Field(default_factory=frozenset)
    favorite_feeds: frozenset[str] = Field(default_factory=frozenset)
    hidden_categories: frozenset[str] = Field(default_factory=frozenset)

    def fingerprint(self) -> str:
        """偏好集合的稳定哈希，用于缓存键."""
        payload = json.dumps(
            {
                "enabled": sorted(self.enabled_feeds),
                "blocked": sorted(self.blocked_feeds),
                "favorites": sorted(self.favorite_feeds),
                "hidden": sorted(self.hidden_categories),
            },
            separators=(",", ":"),
        )
        return hashlib.sha1(payload.encode()).hexdigest()[:12]

    def to_json(self) -> str:
        return json.dumps(
            {
                "enabled_feeds": sorted(self.enabled_feeds),
                "blocked_feeds": sorted(self.blocked_feeds),
                "favorite_feeds": sorted(self.favorite_feeds),
                "hidden_categories": sorted(self.hidden_categories),
            }
        )


DEFAULT_PREFERENCES = FeedPreferences()


# ---------------------------------------------------------------------------
# 查询
# ---------------------------------------------------------------------------


def is_blocked(feed: FeedDescriptor, prefs: FeedPreferences) -> bool:
    return feed.url in prefs.blocked_feeds


def is_favorite(feed: FeedDescriptor, prefs: FeedPreferences) -> bool:
    return feed.url in prefs.favorite_feeds


def is_enabled(feed: FeedDescriptor, prefs: FeedPreferences) -> bool:
    """
    判断订阅源是否启用.

    屏蔽优先；启用集合为空时默认全部启用。
    """
    if is_blocked(feed, prefs):
        return False
    if not prefs.enabled_feeds:
        return True
    return feed.url in prefs.enabled_feeds


def filter_enabled(
    feeds: Iterable[FeedDescriptor], prefs: FeedPreferences
) -> list[FeedDescriptor]:
    return [feed for feed in feeds if is_enabled(feed, prefs)]


def filter_visible(
    feeds: Iterable[FeedDescriptor], prefs: FeedPreferences
) -> list[FeedDescriptor]:
    """去掉隐藏分类下的订阅源."""
    return [feed for feed in feeds if feed.category not in prefs.hidden_categories]


def favorite_feeds(
    feeds: Iterable[FeedDescriptor], prefs: FeedPreferences
) -> list[FeedDescriptor]:
    return [feed for feed in feeds if is_favorite(feed, prefs)]


def blocked_feeds(
    feeds: Iterable[FeedDescriptor], prefs: FeedPreferences
) -> list[FeedDescriptor]:
    return [feed for feed in feeds if is_blocked(feed, prefs)]


@dataclass
class CategoryStats:
    total: int = 0
    enabled: int = 0


@dataclass
class PreferenceStats:
    """订阅偏好统计."""

    total: int = 0
    enabled: int = 0
    blocked: int = 0
    favorites: int = 0
    by_category: dict[str, CategoryStats] = field(default_factory=dict)


def preference_stats(
    feeds: Iterable[FeedDescriptor], prefs: FeedPreferences
) -> PreferenceStats:
    stats = PreferenceStats(
        blocked=len(prefs.blocked_feeds),
        favorites=len(prefs.favorite_feeds),
    )
    for feed in feeds:
        stats.total += 1
        category = stats.by_category.setdefault(feed.category, CategoryStats())
        category.total += 1
        if is_enabled(feed, prefs):
            stats.enabled += 1
            category.enabled += 1
    return stats


# ---------------------------------------------------------------------------
# 修改（返回新值）
# ---------------------------------------------------------------------------


def enable_feed(prefs: FeedPreferences, url: str) -> FeedPreferences:
    """启用订阅源（同时解除屏蔽）."""
    return prefs.model_copy(
        update={
            "enabled_feeds": prefs.enabled_feeds | {url},
            "blocked_feeds": prefs.blocked_feeds - {url},
        }
    )


def disable_feed(prefs: FeedPreferences, url: str) -> FeedPreferences:
    """从启用集合中移除."""
    return prefs.model_copy(update={"enabled_feeds": prefs.enabled_feeds - {url}})


def block_feed(prefs: FeedPreferences, url: str) -> FeedPreferences:
    """屏蔽订阅源，同时移出启用集合和收藏."""
    return prefs.model_copy(
        update={
            "blocked_feeds": prefs.blocked_feeds | {url},
            "enabled_feeds": prefs.enabled_feeds - {url},
            "favorite_feeds": prefs.favorite_feeds - {url},
        }
    )


def unblock_feed(prefs: FeedPreferences, url: str) -> FeedPreferences:
    return prefs.model_copy(update={"blocked_feeds": prefs.blocked_feeds - {url}})


def toggle_favorite(prefs: FeedPreferences, url: str) -> FeedPreferences:
    if url in prefs.favorite_feeds:
        favorites = prefs.favorite_feeds - {url}
    else:
        favorites = prefs.favorite_feeds | {url}
    return prefs.model_copy(update={"favorite_feeds": favorites})


def enable_category(
    prefs: FeedPreferences, category: str, feeds: Iterable[FeedDescriptor]
) -> FeedPreferences:
    """启用分类下全部订阅源并解除屏蔽."""
    urls = {feed.url for feed in feeds if feed.category == category}
    return prefs.model_copy(
        update={
            "enabled_feeds": prefs.enabled_feeds | urls,
            "blocked_feeds": prefs.blocked_feeds - urls,
        }
    )


def disable_category(
    prefs: FeedPreferences, category: str, feeds: Iterable[FeedDescriptor]
) -> FeedPreferences:
    urls = {feed.url for feed in feeds if feed.category == category}
    return prefs.model_copy(update={"enabled_feeds": prefs.enabled_feeds - urls})


def hide_category(prefs: FeedPreferences, category: str) -> FeedPreferences:
    return prefs.model_copy(
        update={"hidden_categories": prefs.hidden_categories | {category}}
    )


def show_category(prefs: FeedPreferences, category: str) -> FeedPreferences:
    return prefs.model_copy(
        update={"hidden_categories": prefs.hidden_categories - {category}}
    )


# ---------------------------------------------------------------------------
# 持久化
# ---------------------------------------------------------------------------


class PreferenceService:
    """订阅偏好与自定义订阅源的读写（settings 表中的 JSON 值）."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._lock = asyncio.Lock()
        self._preferences: FeedPreferences | None = None
        self._custom_feeds: list[FeedDescriptor] | None = None

    async def _read(self, key: str) -> str | None:
        async with self._session_factory() as session:
            item = await session.get(SettingItem, key)
            return item.value if item else None

    async def _write(self, key: str, value: str) -> None:
        async with self._session_factory() as session:
            item = await session.get(SettingItem, key)
            if item is None:
                session.add(SettingItem(key=key, value=value))
            else:
                item.value = value
                item.updated_at = db_now()
            await session.commit()

    async def get(self) -> FeedPreferences:
        """读取偏好，读取失败时使用默认值."""
        if self._preferences is not None:
            return self._preferences

        try:
            raw = await self._read(PREFERENCES_KEY)
            prefs = FeedPreferences.model_validate_json(raw) if raw else DEFAULT_PREFERENCES
        except (SQLAlchemyError, ValidationError) as e:
            logger.warning(f"加载订阅偏好失败，使用默认值: {e}")
            prefs = DEFAULT_PREFERENCES

        self._preferences = prefs
        return prefs

    async def save(self, prefs: FeedPreferences) -> FeedPreferences:
        self._preferences = prefs
        try:
            await self._write(PREFERENCES_KEY, prefs.to_json())
        except SQLAlchemyError as e:
            logger.warning(f"保存订阅偏好失败: {e}")
        return prefs

    async def update(
        self, mutate: Callable[[FeedPreferences], FeedPreferences]
    ) -> FeedPreferences:
        """对当前偏好应用修改函数并保存."""
        async with self._lock:
            current = await self.get()
            return await self.save(mutate(current))

    async def reset(self) -> FeedPreferences:
        async with self._lock:
            return await self.save(DEFAULT_PREFERENCES)

    async def custom_feeds(self) -> list[FeedDescriptor]:
        """用户添加的自定义订阅源."""
        if self._custom_feeds is not None:
            return list(self._custom_feeds)

        feeds: list[FeedDescriptor] = []
        try:
            raw = await self._read(CUSTOM_FEEDS_KEY)
            if raw:
                feeds = [FeedDescriptor.model_validate(item) for item in json.loads(raw)]
        except (SQLAlchemyError, ValidationError, ValueError) as e:
            logger.warning(f"加载自定义订阅源失败: {e}")

        self._custom_feeds = feeds
        return list(feeds)

    async def _save_custom_feeds(self, feeds: list[FeedDescriptor]) -> None:
        self._custom_feeds = feeds
        try:
            await self._write(
                CUSTOM_FEEDS_KEY,
                json.dumps([feed.model_dump() for feed in feeds]),
            )
        except SQLAlchemyError as e:
            logger.warning(f"保存自定义订阅源失败: {e}")

    async def add_custom_feed(
        self, feed: FeedDescriptor, existing: Iterable[FeedDescriptor] = ()
    ) -> FeedDescriptor:
        """
        添加自定义订阅源.

        Raises:
            UrlRejectedError: URL 未通过安全校验
            ValueError: URL 已存在
        """
        validate_url(feed.url)
        async with self._lock:
            feeds = await self.custom_feeds()
            known = {item.url for item in existing} | {item.url for item in feeds}
            if feed.url in known:
                msg = f"订阅源已存在: {feed.url}"
                raise ValueError(msg)
            feeds.append(feed)
            await self._save_custom_feeds(feeds)
            logger.info(f"添加自定义订阅源: {feed.name} ({feed.url})")
            return feed

    async def remove_custom_feed(self, url: str) -> bool:
        async with self._lock:
            feeds = await self.custom_feeds()
            remaining = [feed for feed in feeds if feed.url != url]
            if len(remaining) == len(feeds):
                return False
            await self._save_custom_feeds(remaining)
            logger.info(f"删除自定义订阅源: {url}")
            return True
