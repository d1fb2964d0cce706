"""API 接口测试."""

from datetime import timedelta

import httpx
import pytest
from httpx import AsyncClient

from retrui.core.catalog import RSS_FEEDS
from retrui.core.context import AppContext
from tests.helpers import NOW, FeedServer, make_feed, rss_response

FEED_URL = "https://feeds.example.com/rss.xml"
ARTICLE_URL = "https://news.example.com/article"

ARTICLE_HTML = """<!DOCTYPE html>
<html><head><title>Test Article</title></head>
<body>
<nav>Home | World | Tech</nav>
<article>
<h1>Test Article</h1>
<p>The first paragraph of the article explains what happened in considerable detail,
so that the extractor has enough text to work with when it looks for the main content.</p>
<p>The second paragraph adds background and context, quoting several people who were
involved and describing how events unfolded over the course of the week.</p>
<p>The third paragraph closes the story with a summary of what comes next.</p>
</article>
<footer>Copyright</footer>
</body></html>"""


async def test_root_and_health(client: AsyncClient):
    root = await client.get("/")
    health = await client.get("/health")

    assert root.status_code == 200
    assert root.json()["name"] == "Retrui"
    assert health.json() == {"status": "ok"}


# ---------------------------------------------------------------------------
# /api/fetch-rss
# ---------------------------------------------------------------------------


async def test_fetch_rss_success(client: AsyncClient, server: FeedServer):
    server.add(FEED_URL, rss_response([("Hello", "https://news.example.com/1", NOW)]))

    response = await client.post("/api/fetch-rss", json={"url": FEED_URL})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["title"] == "Test Feed"
    item = body["data"]["items"][0]
    assert item["title"] == "Hello"
    assert item["pubDate"] == "2026-01-15T12:00:00Z"
    assert "contentSnippet" in item


@pytest.mark.parametrize(
    ("payload", "status", "message"),
    [
        ({}, 400, "RSS feed URL is required"),
        ({"url": "  "}, 400, "RSS feed URL is required"),
        ({"url": "ftp://feeds.example.com/rss"}, 400, "Only HTTP and HTTPS URLs are allowed"),
        ({"url": "http://127.0.0.1/rss"}, 403, "Access to internal resources is not allowed"),
        ({"url": "http://example.com:3306/rss"}, 403, "Access to this port is not allowed"),
        ({"url": "http://a..example.com/feed.xml"}, 400, "Invalid URL format"),
    ],
)
async def test_fetch_rss_rejects_bad_urls(
    client: AsyncClient, server: FeedServer, payload: dict, status: int, message: str
):
    response = await client.post("/api/fetch-rss", json=payload)

    assert response.status_code == status
    assert response.json() == {"success": False, "error": message, "statusCode": status}
    assert server.requests == []


async def test_fetch_rss_not_found(client: AsyncClient, server: FeedServer):
    response = await client.post("/api/fetch-rss", json={"url": FEED_URL})

    assert response.status_code == 404
    assert response.json()["statusCode"] == 404
    assert server.calls[FEED_URL] == 1


async def test_fetch_rss_malformed(client: AsyncClient, server: FeedServer):
    server.add(FEED_URL, httpx.Response(200, text="definitely not xml"))

    response = await client.post("/api/fetch-rss", json={"url": FEED_URL})

    assert response.status_code == 422
    assert response.json()["error"].startswith("Invalid RSS feed format")


async def test_fetch_rss_timeout(client: AsyncClient, server: FeedServer):
    server.add(FEED_URL, httpx.ReadTimeout("timed out"))

    response = await client.post("/api/fetch-rss", json={"url": FEED_URL})

    assert response.status_code == 504
    assert response.json()["error"] == "Request timeout after 60s"
    assert server.calls[FEED_URL] == 4


async def test_invalid_body_is_400(client: AsyncClient):
    response = await client.post("/api/fetch-rss", json={"url": 123})

    assert response.status_code == 400
    assert response.json()["success"] is False


# ---------------------------------------------------------------------------
# /api/fetch-content
# ---------------------------------------------------------------------------


async def test_fetch_content_extracts_and_caches(client: AsyncClient, server: FeedServer):
    server.add(
        ARTICLE_URL,
        httpx.Response(200, text=ARTICLE_HTML, headers={"Content-Type": "text/html"}),
    )

    first = await client.post("/api/fetch-content", json={"url": ARTICLE_URL})
    second = await client.post("/api/fetch-content", json={"url": ARTICLE_URL})

    assert first.status_code == 200
    data = first.json()["data"]
    assert "first paragraph" in data["text"]
    assert data["url"] == ARTICLE_URL
    assert data["tokensUsed"] > 0
    assert "cached" not in first.json()

    assert second.json()["cached"] is True
    assert second.json()["data"] == data
    assert server.calls[ARTICLE_URL] == 1


async def test_fetch_content_requires_url(client: AsyncClient):
    response = await client.post("/api/fetch-content", json={})

    assert response.status_code == 400
    assert response.json()["error"] == "URL is required"


async def test_fetch_content_blocks_internal(client: AsyncClient):
    response = await client.post("/api/fetch-content", json={"url": "http://192.168.1.1/"})
    assert response.status_code == 403


async def test_fetch_content_rejects_bad_hostname(client: AsyncClient, server: FeedServer):
    response = await client.post(
        "/api/fetch-content", json={"url": "http://a..example.com/article"}
    )

    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "error": "Invalid URL format",
        "statusCode": 400,
    }
    assert server.requests == []


async def test_fetch_content_blocks_redirect_to_internal(client: AsyncClient, server: FeedServer):
    internal = "http://169.254.169.254/latest/meta-data"
    server.add(ARTICLE_URL, httpx.Response(302, headers={"Location": internal}))
    server.add(internal, httpx.Response(200, text=ARTICLE_HTML))

    response = await client.post("/api/fetch-content", json={"url": ARTICLE_URL})

    assert response.status_code == 403
    assert response.json()["error"] == "Redirect to internal resources is not allowed"
    assert server.calls[internal] == 0


# ---------------------------------------------------------------------------
# /api/news
# ---------------------------------------------------------------------------


async def test_aggregate_news(client: AsyncClient, context: AppContext, server: FeedServer):
    feed_a = make_feed("Feed A", "https://feeds.example.com/a.xml")
    feed_b = make_feed("Feed B", "https://feeds.example.com/b.xml")
    context.pipeline.catalog = [feed_a, feed_b]
    server.add(feed_a.url, rss_response([("A", "https://n.example.com/a", NOW - timedelta(hours=1))]))
    server.add(feed_b.url, httpx.Response(500))

    response = await client.get("/api/news")

    body = response.json()
    assert response.status_code == 200
    assert [item["title"] for item in body["items"]] == ["A"]
    assert body["total_feeds"] == 2
    assert body["failed_feeds"] == [feed_b.url]
    assert body["from_cache"] is False

    cached = (await client.get("/api/news")).json()
    assert cached["from_cache"] is True


async def test_stream_news(client: AsyncClient, context: AppContext, server: FeedServer):
    feed = make_feed("Feed A", "https://feeds.example.com/a.xml")
    context.pipeline.catalog = [feed]
    server.add(feed.url, rss_response([("A", "https://n.example.com/a", NOW)]))

    response = await client.get("/api/news/stream")

    assert response.headers["content-type"].startswith("text/event-stream")
    events = [line for line in response.text.splitlines() if line.startswith("event:")]
    assert events == ["event: start", "event: snapshot", "event: done"]


async def test_recent_and_slug_lookup(client: AsyncClient, context: AppContext):
    await context.store.upsert(
        "https://n.example.com/story",
        {
            "title": "Stored Story",
            "slug": "stored-story-abc12",
            "source": "Feed A",
            "category": "Technology",
            "published_at": NOW,
        },
    )

    recent = await client.get("/api/news/recent")
    found = await client.get("/api/news/stored-story-abc12")
    legacy = await client.get("/api/news/stored-story-zzzzz")
    missing = await client.get("/api/news/unknown-slug-12345")

    assert [item["title"] for item in recent.json()["items"]] == ["Stored Story"]
    assert found.json()["url"] == "https://n.example.com/story"
    assert found.json()["published_at"] == "2026-01-15T12:00:00+00:00"
    assert legacy.status_code == 200
    assert missing.status_code == 404
    assert missing.json()["detail"] == "新闻不存在"


# ---------------------------------------------------------------------------
# /api/feeds
# ---------------------------------------------------------------------------


async def test_list_feeds_with_filters(client: AsyncClient):
    response = await client.get("/api/feeds", params={"language": "tr"})

    body = response.json()
    assert body["total"] > 0
    assert all(item["language"] == "tr" for item in body["items"])
    # 目录中重复的 URL 只出现一次
    urls = [item["url"] for item in body["items"]]
    assert len(urls) == len(set(urls))


async def test_feeds_meta(client: AsyncClient):
    body = (await client.get("/api/feeds/meta")).json()
    assert "Technology" in body["categories"]
    assert "en" in body["languages"]


async def test_block_and_reset_preferences(client: AsyncClient):
    target = RSS_FEEDS[0]

    blocked = await client.post("/api/feeds/preferences/block", json={"url": target.url})
    assert target.url in blocked.json()["blocked_feeds"]

    listing = (await client.get("/api/feeds", params={"category": target.category})).json()
    item = next(item for item in listing["items"] if item["url"] == target.url)
    assert item["blocked"] is True
    assert item["enabled"] is False

    prefs = (await client.get("/api/feeds/preferences")).json()
    assert prefs["stats"]["blocked"] == 1

    reset = await client.post("/api/feeds/preferences/reset")
    assert reset.json()["blocked_feeds"] == []


async def test_unknown_feed_preference_is_404(client: AsyncClient):
    response = await client.post(
        "/api/feeds/preferences/favorite", json={"url": "https://unknown.example.com/rss"}
    )
    assert response.status_code == 404


async def test_category_preferences(client: AsyncClient):
    hidden = await client.post("/api/feeds/preferences/category/hide", json={"category": "Sports"})
    assert hidden.json()["hidden_categories"] == ["Sports"]

    shown = await client.post("/api/feeds/preferences/category/show", json={"category": "Sports"})
    assert shown.json()["hidden_categories"] == []


async def test_custom_feeds_api(client: AsyncClient):
    payload = {"name": "My Blog", "url": "https://blog.example.org/feed.xml"}

    created = await client.post("/api/feeds/custom", json=payload)
    duplicate = await client.post("/api/feeds/custom", json=payload)
    builtin = await client.post(
        "/api/feeds/custom", json={"name": "Dup", "url": RSS_FEEDS[0].url}
    )
    internal = await client.post(
        "/api/feeds/custom", json={"name": "Internal", "url": "http://10.0.0.1/feed"}
    )

    assert created.status_code == 200
    assert duplicate.status_code == 409
    assert builtin.status_code == 409
    assert internal.status_code == 403

    listing = (await client.get("/api/feeds/custom")).json()
    assert [item["url"] for item in listing["items"]] == [payload["url"]]

    removed = await client.delete("/api/feeds/custom", params={"url": payload["url"]})
    missing = await client.delete("/api/feeds/custom", params={"url": payload["url"]})
    assert removed.status_code == 200
    assert missing.status_code == 404


async def test_feed_health_and_re_enable(client: AsyncClient, context: AppContext):
    url = "https://feeds.example.com/broken.xml"
    for _ in range(3):
        await context.health.record_failure(url, "HTTP 500")

    health = (await client.get("/api/feeds/health")).json()
    assert health["stats"]["disabled_feeds"] == 1
    assert [record["url"] for record in health["disabled"]] == [url]

    enabled = await client.post("/api/feeds/health/re-enable", json={"url": url})
    unknown = await client.post(
        "/api/feeds/health/re-enable", json={"url": "https://feeds.example.com/none.xml"}
    )

    assert enabled.json() == {"url": url, "available": True}
    assert unknown.status_code == 404
    assert context.health.is_available(url)


# ---------------------------------------------------------------------------
# /api/cron/sync-news
# ---------------------------------------------------------------------------


async def test_cron_requires_secret(client: AsyncClient, context: AppContext):
    context.sync.catalog = []

    missing = await client.get("/api/cron/sync-news")
    wrong = await client.get("/api/cron/sync-news", params={"token": "nope"})
    by_query = await client.get("/api/cron/sync-news", params={"token": "s3cret"})
    by_header = await client.get(
        "/api/cron/sync-news", headers={"Authorization": "Bearer s3cret"}
    )

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert by_query.status_code == 200
    assert by_header.status_code == 200


async def test_cron_runs_sync(client: AsyncClient, context: AppContext, server: FeedServer):
    feed = make_feed("Feed A", "https://feeds.example.com/a.xml")
    context.sync.catalog = [feed]
    server.add(feed.url, rss_response([("Story", "https://n.example.com/s", NOW)]))

    response = await client.get(
        "/api/cron/sync-news", params={"batch": 3, "token": "s3cret"}
    )

    body = response.json()
    assert body["success"] is True
    assert body["batch_index"] == 3
    assert body["synced_count"] == 1
    assert body["error_count"] == 0
    assert body["message"] == "Synchronization completed successfully"


# ---------------------------------------------------------------------------
# 限流
# ---------------------------------------------------------------------------


async def test_api_rate_limit(client: AsyncClient):
    statuses = [(await client.get("/api/feeds/meta")).status_code for _ in range(21)]

    assert statuses[:20] == [200] * 20
    assert statuses[20] == 429

    # 非 /api/ 路径不限流
    assert (await client.get("/health")).status_code == 200
