"""Feed 与全文抓取模块."""

from retrui.fetcher.extractor import ContentExtractor, ExtractedContent
from retrui.fetcher.rss import RssFetcher, parse_feed

__all__ = [
    "ContentExtractor",
    "ExtractedContent",
    "RssFetcher",
    "parse_feed",
]
