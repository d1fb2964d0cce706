"""CacheEntry 缓存存储模型."""

from sqlmodel import Field, SQLModel


class CacheRecord(SQLModel, table=True):
    """新鲜度缓存条目."""

    __tablename__ = "cache_entries"  # type: ignore[assignment]

    key: str = Field(primary_key=True, description="缓存键")
    data: str = Field(description="JSON 数据")
    timestamp: int = Field(description="写入时间（毫秒时间戳）")
