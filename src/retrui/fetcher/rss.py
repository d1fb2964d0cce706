"""RSS / Atom 抓取器（带重试）."""

import asyncio
import logging
import time
from datetime import UTC, datetime
from typing import Any

import feedparser
import httpx

from retrui.core.errors import FetchError, FetchErrorKind
from retrui.core.retry import RetryPolicy, Sleep, with_retry
from retrui.fetcher.http import download
from retrui.models.feed import FeedEntry, ParsedFeed
from retrui.utils.security import ensure_public_url

logger = logging.getLogger(__name__)

FEED_ACCEPT = "application/rss+xml, application/atom+xml, application/xml, text/xml, */*"


def _entry_date(entry: Any) -> str | None:
    """取条目发布时间，转为 RFC 3339 字符串."""
    for attr in ("published_parsed", "updated_parsed"):
        parsed = entry.get(attr)
        if parsed:
            try:
                moment = datetime(*parsed[:6], tzinfo=UTC)
            except (TypeError, ValueError):
                continue
            return moment.isoformat().replace("+00:00", "Z")

    # feedparser 无法解析的日期保留原文，交给下游按“无法解析”处理
    raw = entry.get("published") or entry.get("updated")
    return raw or None


def _entry_content(entry: Any) -> str | None:
    contents = entry.get("content") or []
    for content in contents:
        value = content.get("value")
        if value:
            return value
    return None


def parse_feed(body: bytes) -> ParsedFeed:
    """
    解析 Feed 内容.

    Raises:
        FetchError: 内容为空或没有格式正确的条目列表 (malformed_feed)
    """
    if not body or not body.strip():
        raise FetchError(FetchErrorKind.MALFORMED_FEED, "Empty response from RSS feed")

    parsed = feedparser.parse(body)
    if not parsed.entries and (parsed.bozo or not parsed.version):
        reason = parsed.get("bozo_exception") or "no feed items"
        raise FetchError(
            FetchErrorKind.MALFORMED_FEED,
            f"Invalid RSS feed format: {reason}",
        )

    items: list[FeedEntry] = []
    for entry in parsed.entries:
        summary = entry.get("summary")
        content = _entry_content(entry) or summary
        author = entry.get("author")
        items.append(
            FeedEntry(
                title=entry.get("title"),
                link=entry.get("link"),
                content_snippet=summary,
                content=content,
                creator=author,
                author=author,
                pub_date=_entry_date(entry),
            )
        )

    return ParsedFeed(
        title=parsed.feed.get("title"),
        description=parsed.feed.get("subtitle") or parsed.feed.get("description"),
        items=items,
    )


class RssFetcher:
    """抓取并解析单个 Feed URL（无状态，健康状态由调用方维护）."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        resolve_dns: bool = True,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._client = client
        self._resolve_dns = resolve_dns
        self._sleep = sleep

    async def fetch_feed(self, url: str, policy: RetryPolicy) -> ParsedFeed:
        """
        抓取 Feed，按策略重试.

        Args:
            url: Feed URL
            policy: 重试策略

        Returns:
            ParsedFeed: 解析结果

        Raises:
            UrlRejectedError: URL 未通过安全校验（不重试）
            FetchError: 重试耗尽或遇到永久错误
        """
        await ensure_public_url(url, resolve=self._resolve_dns)

        async def attempt(index: int) -> ParsedFeed:
            return await self._fetch_once(url, index, policy)

        return await with_retry(attempt, policy, sleep=self._sleep)

    async def _fetch_once(self, url: str, attempt: int, policy: RetryPolicy) -> ParsedFeed:
        timeout = policy.timeout_for(attempt)
        started = time.monotonic()
        logger.debug(f"抓取 Feed: {url} (第 {attempt + 1} 次, 超时 {timeout:g}s)")

        response = await download(
            self._client,
            url,
            timeout=timeout,
            headers={"Accept": FEED_ACCEPT},
            resolve_dns=self._resolve_dns,
        )
        feed = parse_feed(response.content)

        if not feed.items:
            logger.warning(f"Feed 没有条目: {url}")

        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.debug(f"Feed 抓取完成: {url} ({len(feed.items)} 条, {elapsed_ms}ms)")
        return feed
