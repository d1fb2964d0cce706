"""新鲜度缓存.

写入时记录时间戳，读取时由调用方给定 TTL 判断是否新鲜；条目不会按
TTL 主动淘汰。后端出错时记录日志并按未命中处理，之后退化为内存缓存。
"""

import json
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import delete

from retrui.models.cache import CacheRecord
from retrui.utils.clock import Clock, epoch_ms, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    """缓存条目，data 为 JSON 文本."""

    key: str
    data: str
    timestamp: int

    def value(self) -> Any:
        return json.loads(self.data)

    def is_fresh(self, now_ms: int, ttl: timedelta) -> bool:
        return now_ms - self.timestamp < ttl.total_seconds() * 1000


class CacheBackend(Protocol):
    async def get(self, key: str) -> CacheEntry | None: ...

    async def set(self, entry: CacheEntry) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def clear(self) -> None: ...


class MemoryCacheBackend:
    """进程内缓存."""

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}

    async def get(self, key: str) -> CacheEntry | None:
        return self._entries.get(key)

    async def set(self, entry: CacheEntry) -> None:
        self._entries[entry.key] = entry

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def clear(self) -> None:
        self._entries.clear()


class SqlCacheBackend:
    """cache_entries 表缓存."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, key: str) -> CacheEntry | None:
        async with self._session_factory() as session:
            record = await session.get(CacheRecord, key)
            if record is None:
                return None
            return CacheEntry(key=record.key, data=record.data, timestamp=record.timestamp)

    async def set(self, entry: CacheEntry) -> None:
        async with self._session_factory() as session:
            record = await session.get(CacheRecord, entry.key)
            if record is None:
                session.add(
                    CacheRecord(key=entry.key, data=entry.data, timestamp=entry.timestamp)
                )
            else:
                record.data = entry.data
                record.timestamp = entry.timestamp
            await session.commit()

    async def delete(self, key: str) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(CacheRecord).where(CacheRecord.key == key))  # type: ignore[arg-type]
            await session.commit()

    async def clear(self) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(CacheRecord))
            await session.commit()


class FreshnessCache:
    """按调用方 TTL 判断新鲜度的键值缓存."""

    def __init__(self, backend: CacheBackend | None = None, clock: Clock = utc_now) -> None:
        self._backend: CacheBackend = backend or MemoryCacheBackend()
        self._clock = clock
        self._fell_back = False

    @property
    def degraded(self) -> bool:
        """是否已退化为内存缓存."""
        return self._fell_back

    def _fall_back(self, action: str, error: Exception) -> None:
        logger.warning(f"缓存{action}失败，改用内存缓存: {error}")
        if not isinstance(self._backend, MemoryCacheBackend):
            self._backend = MemoryCacheBackend()
            self._fell_back = True

    async def get(self, key: str) -> CacheEntry | None:
        """读取条目（不判断新鲜度）."""
        try:
            return await self._backend.get(key)
        except SQLAlchemyError as e:
            self._fall_back("读取", e)
            return None

    async def get_fresh(self, key: str, ttl: timedelta) -> CacheEntry | None:
        """读取仍在 TTL 内的条目."""
        entry = await self.get(key)
        if entry is None:
            return None
        if not entry.is_fresh(epoch_ms(self._clock()), ttl):
            return None
        return entry

    async def set(self, key: str, data: Any) -> CacheEntry:
        """写入条目，时间戳为当前时间."""
        entry = CacheEntry(
            key=key,
            data=json.dumps(data, ensure_ascii=False),
            timestamp=epoch_ms(self._clock()),
        )
        try:
            await self._backend.set(entry)
        except SQLAlchemyError as e:
            self._fall_back("写入", e)
            await self._backend.set(entry)
        return entry

    async def delete(self, key: str) -> None:
        try:
            await self._backend.delete(key)
        except SQLAlchemyError as e:
            self._fall_back("删除", e)

    async def clear(self) -> None:
        try:
            await self._backend.clear()
        except SQLAlchemyError as e:
            self._fall_back("清空", e)
