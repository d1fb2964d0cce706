"""数据模型."""

from retrui.models.cache import CacheRecord
from retrui.models.feed import FeedDescriptor, FeedEntry, ParsedFeed
from retrui.models.health import FeedHealth
from retrui.models.news import News, NewsItem
from retrui.models.settings import SettingItem

__all__ = [
    "CacheRecord",
    "FeedDescriptor",
    "FeedEntry",
    "FeedHealth",
    "News",
    "NewsItem",
    "ParsedFeed",
    "SettingItem",
]
