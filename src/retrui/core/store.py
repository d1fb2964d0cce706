"""新闻持久化存储（news 表）."""

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import col, delete, select

from retrui.models.news import News
from retrui.utils.clock import db_now, to_db_time

logger = logging.getLogger(__name__)

# 已存在的行只更新这些字段，其余字段保持首次写入的值
UPDATABLE_FIELDS = ("title", "slug", "description", "published_at")

_DATETIME_FIELDS = ("published_at", "created_at", "updated_at")


def _db_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    values = dict(fields)
    for name in _DATETIME_FIELDS:
        if isinstance(values.get(name), datetime):
            values[name] = to_db_time(values[name])
    return values


class NewsStore:
    """以 url 为唯一键的新闻存储."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def upsert(self, url: str, fields: Mapping[str, Any]) -> News:
        """
        按 url 插入或更新.

        Args:
            url: 原文链接（唯一键）
            fields: News 字段；更新时只使用 UPDATABLE_FIELDS

        Returns:
            News: 写入后的行
        """
        values = _db_fields(fields)
        values.pop("url", None)

        async with self._session_factory() as session:
            result = await session.execute(select(News).where(News.url == url))
            row = result.scalar_one_or_none()

            if row is None:
                row = News(url=url, **values)
                session.add(row)
            else:
                for name in UPDATABLE_FIELDS:
                    if name in values:
                        setattr(row, name, values[name])
                row.updated_at = db_now()

            await session.commit()
            await session.refresh(row)
            return row

    async def find_recent(self, language: str | None = None, limit: int = 25) -> list[News]:
        """按发布时间倒序取最近的新闻."""
        stmt = select(News)
        if language:
            stmt = stmt.where(News.language == language)
        stmt = stmt.order_by(col(News.published_at).desc()).limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def delete_older_than(self, moment: datetime) -> int:
        """删除入库时间早于 moment 的新闻，返回删除条数."""
        cutoff = to_db_time(moment)
        async with self._session_factory() as session:
            result = await session.execute(
                delete(News).where(col(News.created_at) < cutoff)
            )
            await session.commit()
            deleted = result.rowcount or 0

        if deleted:
            logger.info(f"清理了 {deleted} 条过期新闻")
        return deleted

    async def find_by_slug(self, slug: str) -> News | None:
        async with self._session_factory() as session:
            result = await session.execute(select(News).where(News.slug == slug).limit(1))
            return result.scalar_one_or_none()

    async def find_by_slug_prefix(self, prefix: str) -> News | None:
        """slug 前缀匹配，取最新的一条."""
        stmt = (
            select(News)
            .where(col(News.slug).startswith(prefix, autoescape=True))
            .order_by(col(News.published_at).desc())
            .limit(1)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def resolve_slug(self, slug: str) -> News | None:
        """
        按 slug 查找新闻.

        精确匹配失败时去掉末尾的哈希段按标题前缀查找，
        用于哈希算法变化后旧链接的恢复。
        """
        row = await self.find_by_slug(slug)
        if row is not None:
            return row

        base, sep, _ = slug.rpartition("-")
        if not sep or not base:
            return None
        return await self.find_by_slug_prefix(f"{base}-")

