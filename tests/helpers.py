"""测试用的假时钟、假等待和假 Feed 服务器."""

from collections import Counter
from datetime import UTC, datetime, timedelta
from email.utils import format_datetime
from xml.sax.saxutils import escape

import httpx

from retrui.models.feed import FeedDescriptor

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)


class FakeClock:
    """可手动推进的时钟."""

    def __init__(self, start: datetime = NOW) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeSleep:
    """记录等待时长，不真正等待."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FeedServer:
    """按 URL 返回预设响应的假服务器，未登记的 URL 返回 404."""

    def __init__(self) -> None:
        self.routes: dict[str, object] = {}
        self.calls: Counter[str] = Counter()
        self.requests: list[httpx.Request] = []

    def add(self, url: str, response: object) -> None:
        """response 可以是 httpx.Response、异常实例或（异步）处理函数."""
        self.routes[url] = response

    async def handle(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.calls[url] += 1
        self.requests.append(request)

        route = self.routes.get(url)
        if route is None:
            return httpx.Response(404, text="Not Found")
        if isinstance(route, Exception):
            raise route
        if isinstance(route, httpx.Response):
            # 每次请求返回新的 Response，同一路由可以被多次抓取
            return httpx.Response(
                route.status_code, headers=route.headers, content=route.content
            )
        result = route(request)  # type: ignore[operator]
        if hasattr(result, "__await__"):
            result = await result
        return result

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)


Item = tuple[str | None, str | None, datetime | str | None]


def rss_feed(items: list[Item]) -> bytes:
    """生成 RSS 2.0 文档，items 为 (标题, 链接, 发布时间)."""
    parts = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        '<rss version="2.0"><channel>',
        "<title>Test Feed</title>",
        "<link>https://feeds.example.com/</link>",
        "<description>Test feed</description>",
    ]
    for title, link, published in items:
        parts.append("<item>")
        if title is not None:
            parts.append(f"<title>{escape(title)}</title>")
        if link is not None:
            parts.append(f"<link>{escape(link)}</link>")
        parts.append(f"<description>{escape('<p>About ' + (title or '') + '</p>')}</description>")
        if isinstance(published, datetime):
            parts.append(f"<pubDate>{format_datetime(published)}</pubDate>")
        elif isinstance(published, str):
            parts.append(f"<pubDate>{escape(published)}</pubDate>")
        parts.append("</item>")
    parts.append("</channel></rss>")
    return "".join(parts).encode()


def rss_response(items: list[Item]) -> httpx.Response:
    return httpx.Response(
        200,
        content=rss_feed(items),
        headers={"Content-Type": "application/rss+xml"},
    )


def make_feed(
    name: str, url: str, category: str = "Technology", language: str = "en"
) -> FeedDescriptor:
    return FeedDescriptor(name=name, url=url, category=category, language=language)
