"""Feed 订阅源与解析结果模型."""

from pydantic import BaseModel, ConfigDict, Field


class FeedDescriptor(BaseModel):
    """RSS 订阅源描述（静态目录中的不可变条目）."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(description="订阅源名称")
    url: str = Field(description="Feed URL（唯一键）")
    category: str = Field(description="分类")
    subcategory: str | None = Field(default=None, description="子分类")
    region: str | None = Field(default=None, description="地区代码")
    language: str | None = Field(default=None, description="语言代码")


class FeedEntry(BaseModel):
    """解析后的单条 Feed 条目（字段名与 rss-parser 输出一致）."""

    model_config = ConfigDict(populate_by_name=True)

    title: str | None = None
    link: str | None = None
    content_snippet: str | None = Field(default=None, alias="contentSnippet")
    content: str | None = None
    creator: str | None = None
    author: str | None = None
    pub_date: str | None = Field(default=None, alias="pubDate")


class ParsedFeed(BaseModel):
    """解析后的 Feed."""

    title: str | None = None
    description: str | None = None
    items: list[FeedEntry] = Field(default_factory=list)
