"""Settings 配置存储模型."""

from datetime import datetime

from sqlmodel import Field, SQLModel

from retrui.utils.clock import db_now


class SettingItem(SQLModel, table=True):
    """配置项存储（订阅偏好、自定义订阅源等 JSON 值）."""

    __tablename__ = "settings"  # type: ignore[assignment]

    key: str = Field(primary_key=True, description="配置键")
    value: str = Field(description="配置值 (JSON)")
    updated_at: datetime = Field(default_factory=db_now)
