"""新闻存储测试."""

from datetime import UTC, datetime, timedelta

import pytest

from retrui.core.store import NewsStore
from retrui.models.news import News
from retrui.utils.clock import from_db_time, to_db_time
from tests.helpers import NOW


@pytest.fixture
def store(session_factory) -> NewsStore:
    return NewsStore(session_factory)


def news_fields(title: str, slug: str, published_at: datetime, **extra) -> dict:
    return {
        "title": title,
        "slug": slug,
        "description": f"About {title}",
        "content": f"<p>{title}</p>",
        "source": "Feed A",
        "category": "Technology",
        "language": "en",
        "published_at": published_at,
        **extra,
    }


async def test_upsert_inserts_then_updates_selected_fields(store: NewsStore):
    url = "https://news.example.com/1"
    first = await store.upsert(url, news_fields("First", "first-abc", NOW))

    second = await store.upsert(
        url,
        news_fields(
            "Renamed",
            "renamed-abc",
            NOW + timedelta(hours=1),
            source="Other Feed",
            content="<p>changed</p>",
        ),
    )

    assert second.id == first.id
    assert second.title == "Renamed"
    assert second.slug == "renamed-abc"
    assert from_db_time(second.published_at) == NOW + timedelta(hours=1)
    # 其余字段保持首次写入的值
    assert second.source == "Feed A"
    assert second.content == "<p>First</p>"


async def test_find_recent_orders_and_filters(store: NewsStore):
    await store.upsert("https://n.example.com/old", news_fields("Old", "old-1", NOW - timedelta(hours=3)))
    await store.upsert("https://n.example.com/new", news_fields("New", "new-1", NOW))
    await store.upsert(
        "https://n.example.com/tr",
        news_fields("Haber", "haber-1", NOW - timedelta(hours=1), language="tr"),
    )

    everything = await store.find_recent()
    english = await store.find_recent("en", limit=1)

    assert [row.title for row in everything] == ["New", "Haber", "Old"]
    assert [row.title for row in english] == ["New"]


async def test_delete_older_than_uses_created_at(store: NewsStore, session_factory):
    await store.upsert("https://n.example.com/keep", news_fields("Keep", "keep-1", NOW))
    async with session_factory() as session:
        session.add(
            News(
                url="https://n.example.com/stale",
                slug="stale-1",
                title="Stale",
                source="Feed A",
                category="Technology",
                # 发布时间很新，但入库时间已超过保留期
                published_at=to_db_time(NOW),
                created_at=datetime(2020, 1, 1),
            )
        )
        await session.commit()

    deleted = await store.delete_older_than(datetime(2021, 1, 1, tzinfo=UTC))

    assert deleted == 1
    assert [row.title for row in await store.find_recent()] == ["Keep"]


async def test_resolve_slug_exact_and_prefix(store: NewsStore):
    await store.upsert(
        "https://n.example.com/a", news_fields("Hello World", "hello-world-abcde", NOW)
    )

    exact = await store.resolve_slug("hello-world-abcde")
    legacy = await store.resolve_slug("hello-world-zzzzz")

    assert exact is not None and exact.url == "https://n.example.com/a"
    assert legacy is not None and legacy.url == "https://n.example.com/a"
    assert await store.resolve_slug("hello-there-abcde") is None
    assert await store.resolve_slug("nohyphen") is None


async def test_slug_prefix_is_escaped(store: NewsStore):
    await store.upsert("https://n.example.com/p", news_fields("Percent", "100-off-abcde", NOW))
    assert await store.find_by_slug_prefix("1%-") is None
    assert await store.find_by_slug_prefix("100-") is not None
