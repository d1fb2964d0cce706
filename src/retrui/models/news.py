"""News 新闻模型."""

from datetime import datetime

from pydantic import BaseModel
from sqlmodel import Field, SQLModel

from retrui.utils.clock import db_now


class News(SQLModel, table=True):
    """持久化的新闻条目（以 url 为唯一键）."""

    __tablename__ = "news"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    url: str = Field(unique=True, index=True, description="原文链接")
    slug: str = Field(index=True, description="由标题和 URL 生成的稳定 slug")
    title: str = Field(description="标题")
    description: str | None = Field(default=None, description="摘要")
    content: str | None = Field(default=None, description="HTML 内容")
    source: str = Field(description="来源 Feed 名称")
    category: str = Field(description="分类")
    subcategory: str | None = Field(default=None, description="子分类")
    language: str = Field(default="en", index=True, description="语言")
    region: str | None = Field(default=None, description="地区")
    author: str | None = Field(default=None, description="作者")
    published_at: datetime = Field(index=True, description="发布时间 (UTC)")
    created_at: datetime = Field(default_factory=db_now)
    updated_at: datetime = Field(default_factory=db_now)


class NewsItem(BaseModel):
    """聚合流程中的新闻条目（每次抓取重新生成 id）."""

    id: str
    title: str
    description: str
    content: str
    author: str
    published_at: datetime
    source: str
    category: str
    url: str
