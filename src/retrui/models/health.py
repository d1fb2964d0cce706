"""FeedHealth 订阅源健康记录模型."""

from datetime import datetime

from sqlmodel import Field, SQLModel


class FeedHealth(SQLModel, table=True):
    """订阅源健康状态（熔断器持久化）."""

    __tablename__ = "feed_health"  # type: ignore[assignment]

    url: str = Field(primary_key=True, description="Feed URL")
    consecutive_failures: int = Field(default=0, description="连续失败次数")
    success_count: int = Field(default=0, description="累计成功次数")
    failure_count: int = Field(default=0, description="累计失败次数")
    last_success_at: datetime | None = Field(default=None)
    last_failure_at: datetime | None = Field(default=None)
    disabled_until: datetime | None = Field(default=None, description="熔断截止时间")
    last_error: str | None = Field(default=None, description="最近一次错误")
