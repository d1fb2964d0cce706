"""Feed 抓取器测试."""

from datetime import timedelta

import httpx
import pytest

from retrui.core.errors import FetchError, FetchErrorKind, UrlRejectedError
from retrui.core.retry import RetryPolicy
from retrui.fetcher.rss import RssFetcher, parse_feed
from tests.helpers import NOW, FakeSleep, FeedServer, rss_feed, rss_response

FEED_URL = "https://feeds.example.com/rss.xml"

POLICY = RetryPolicy(
    name="test",
    max_retries=3,
    timeouts=(15, 30, 45, 60),
    base_delays_ms=(1000, 2000, 4000),
)


@pytest.fixture
async def fetcher(server: FeedServer, fake_sleep: FakeSleep):
    async with httpx.AsyncClient(transport=server.transport()) as client:
        yield RssFetcher(client, resolve_dns=False, sleep=fake_sleep)


def test_parse_feed_fields():
    body = rss_feed(
        [
            ("First", "https://example.com/1", NOW - timedelta(hours=1)),
            ("Second", "https://example.com/2", None),
        ]
    )

    feed = parse_feed(body)

    assert feed.title == "Test Feed"
    assert len(feed.items) == 2
    first = feed.items[0]
    assert first.title == "First"
    assert first.link == "https://example.com/1"
    assert first.pub_date == "2026-01-15T11:00:00Z"
    assert "About First" in (first.content_snippet or "")
    assert feed.items[1].pub_date is None


def test_parse_feed_serializes_with_client_field_names():
    feed = parse_feed(rss_feed([("First", "https://example.com/1", NOW)]))
    data = feed.model_dump(by_alias=True)
    assert "contentSnippet" in data["items"][0]
    assert "pubDate" in data["items"][0]


def test_parse_feed_keeps_unparseable_date_text():
    feed = parse_feed(rss_feed([("Odd", "https://example.com/odd", "not a date")]))
    assert feed.items[0].pub_date == "not a date"


@pytest.mark.parametrize("body", [b"", b"   ", b"this is not a feed at all"])
def test_parse_feed_rejects_malformed(body):
    with pytest.raises(FetchError) as exc_info:
        parse_feed(body)
    assert exc_info.value.kind == FetchErrorKind.MALFORMED_FEED


async def test_fetch_success(fetcher: RssFetcher, server: FeedServer):
    server.add(FEED_URL, rss_response([("Hello", "https://example.com/a", NOW)]))

    feed = await fetcher.fetch_feed(FEED_URL, POLICY)

    assert [item.title for item in feed.items] == ["Hello"]
    assert server.calls[FEED_URL] == 1


async def test_timeout_retries_with_growing_timeouts(
    fetcher: RssFetcher, server: FeedServer, fake_sleep: FakeSleep
):
    """每次超时都重试，且超时时间逐次增长."""
    server.add(FEED_URL, httpx.ReadTimeout("timed out"))

    with pytest.raises(FetchError) as exc_info:
        await fetcher.fetch_feed(FEED_URL, POLICY)

    assert exc_info.value.kind == FetchErrorKind.TIMEOUT
    assert exc_info.value.status_code == 504
    assert server.calls[FEED_URL] == 4
    assert len(fake_sleep.calls) == 3
    timeouts = [request.extensions["timeout"]["read"] for request in server.requests]
    assert timeouts == [15, 30, 45, 60]


async def test_not_found_is_not_retried(
    fetcher: RssFetcher, server: FeedServer, fake_sleep: FakeSleep
):
    with pytest.raises(FetchError) as exc_info:
        await fetcher.fetch_feed(FEED_URL, POLICY)

    assert exc_info.value.kind == FetchErrorKind.NOT_FOUND
    assert exc_info.value.status_code == 404
    assert server.calls[FEED_URL] == 1
    assert fake_sleep.calls == []


async def test_server_error_then_success(fetcher: RssFetcher, server: FeedServer):
    responses = [
        httpx.Response(503),
        httpx.Response(502),
        rss_response([("Recovered", "https://example.com/r", NOW)]),
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        return responses.pop(0)

    server.add(FEED_URL, handler)

    feed = await fetcher.fetch_feed(FEED_URL, POLICY)

    assert feed.items[0].title == "Recovered"
    assert server.calls[FEED_URL] == 3


async def test_malformed_feed_is_retried_then_reported(fetcher: RssFetcher, server: FeedServer):
    server.add(FEED_URL, httpx.Response(200, text="this is not a feed at all"))

    with pytest.raises(FetchError) as exc_info:
        await fetcher.fetch_feed(FEED_URL, POLICY)

    assert exc_info.value.kind == FetchErrorKind.MALFORMED_FEED
    assert exc_info.value.status_code == 422
    assert server.calls[FEED_URL] == 4


async def test_dns_failure_is_permanent(fetcher: RssFetcher, server: FeedServer):
    server.add(FEED_URL, httpx.ConnectError("[Errno -2] Name or service not known"))

    with pytest.raises(FetchError) as exc_info:
        await fetcher.fetch_feed(FEED_URL, POLICY)

    assert exc_info.value.kind == FetchErrorKind.NETWORK
    assert server.calls[FEED_URL] == 1


@pytest.mark.parametrize(
    ("url", "kind"),
    [
        ("http://127.0.0.1/feed.xml", FetchErrorKind.BLOCKED),
        ("http://localhost:8080/feed.xml", FetchErrorKind.BLOCKED),
        ("http://192.168.1.10/feed.xml", FetchErrorKind.BLOCKED),
        ("https://feeds.example.com:6379/feed.xml", FetchErrorKind.BLOCKED),
        ("ftp://feeds.example.com/feed.xml", FetchErrorKind.INVALID_URL),
        ("not a url", FetchErrorKind.INVALID_URL),
    ],
)
async def test_rejected_urls_never_reach_network(
    fetcher: RssFetcher, server: FeedServer, url: str, kind: FetchErrorKind
):
    with pytest.raises(UrlRejectedError) as exc_info:
        await fetcher.fetch_feed(url, POLICY)

    assert exc_info.value.kind == kind
    assert server.requests == []


async def test_redirect_to_public_url_is_followed(fetcher: RssFetcher, server: FeedServer):
    moved = "https://cdn.example.com/rss.xml"
    server.add(FEED_URL, httpx.Response(301, headers={"Location": moved}))
    server.add(moved, rss_response([("Moved", "https://example.com/m", NOW)]))

    feed = await fetcher.fetch_feed(FEED_URL, POLICY)

    assert feed.items[0].title == "Moved"
    assert server.calls[FEED_URL] == 1
    assert server.calls[moved] == 1


async def test_relative_redirect_is_resolved(fetcher: RssFetcher, server: FeedServer):
    server.add(FEED_URL, httpx.Response(302, headers={"Location": "/v2/rss.xml"}))
    server.add(
        "https://feeds.example.com/v2/rss.xml",
        rss_response([("Relative", "https://example.com/r", NOW)]),
    )

    feed = await fetcher.fetch_feed(FEED_URL, POLICY)

    assert feed.items[0].title == "Relative"


@pytest.mark.parametrize(
    "location",
    [
        "http://169.254.169.254/latest/meta-data",
        "http://127.0.0.1:8080/admin",
        "http://localhost/feed.xml",
        "file:///etc/passwd",
    ],
)
async def test_redirect_to_internal_target_is_blocked(
    fetcher: RssFetcher, server: FeedServer, fake_sleep: FakeSleep, location: str
):
    server.add(FEED_URL, httpx.Response(302, headers={"Location": location}))
    server.add(location, rss_response([("Secret", "https://example.com/s", NOW)]))

    with pytest.raises(UrlRejectedError) as exc_info:
        await fetcher.fetch_feed(FEED_URL, POLICY)

    assert exc_info.value.kind == FetchErrorKind.BLOCKED
    assert exc_info.value.status_code == 403
    assert server.calls[location] == 0
    # 被拦截的重定向不重试
    assert server.calls[FEED_URL] == 1
    assert fake_sleep.calls == []


async def test_redirect_loop_is_capped(fetcher: RssFetcher, server: FeedServer):
    loop_url = "https://feeds.example.com/loop.xml"
    server.add(loop_url, httpx.Response(302, headers={"Location": loop_url}))

    with pytest.raises(FetchError) as exc_info:
        await fetcher.fetch_feed(loop_url, POLICY)

    assert exc_info.value.kind == FetchErrorKind.NETWORK
    assert "Too many redirects" in exc_info.value.message
    # 4 次尝试，每次最多 6 个请求
    assert server.calls[loop_url] == 4 * 6
