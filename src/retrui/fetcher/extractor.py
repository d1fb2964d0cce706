"""全文提取器."""

import asyncio
import re
from concurrent.futures import ThreadPoolExecutor

import httpx
from bs4 import BeautifulSoup
from pydantic import BaseModel, Field
from trafilatura import extract, extract_metadata

from retrui.core.errors import FetchError, FetchErrorKind
from retrui.fetcher.http import download
from retrui.utils.html_parser import html_to_text
from retrui.utils.security import ensure_public_url

PAGE_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"

# bs4 兜底提取时移除的元素
_NOISE_SELECTORS = (
    "script",
    "style",
    "noscript",
    "nav",
    "aside",
    "footer",
    "header",
    "iframe",
    "video",
    "audio",
    ".ad",
    ".ads",
    ".advertisement",
    ".sponsored",
    ".sidebar",
    ".related",
    ".comments",
    ".social",
    ".share",
    ".newsletter",
    ".cookie-banner",
    ".popup",
)

# 正文容器候选，按优先级排列
_MAIN_SELECTORS = ("article", "main", ".content", ".article", '[role="main"]', "body")


class ExtractedContent(BaseModel):
    """提取出的文章内容."""

    title: str
    url: str
    text: str
    html: str
    author: str | None = None
    published_time: str | None = Field(default=None, serialization_alias="publishedTime")


class ContentExtractor:
    """使用 trafilatura 提取网页正文，失败时用 BeautifulSoup 兜底."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        timeout: float = 25,
        resolve_dns: bool = True,
    ) -> None:
        self._client = client
        self._timeout = timeout
        self._resolve_dns = resolve_dns
        self._executor = ThreadPoolExecutor(max_workers=4)

    def close(self) -> None:
        """关闭线程池."""
        self._executor.shutdown(wait=False)

    async def extract(self, url: str) -> ExtractedContent:
        """
        抓取指定 URL 并提取正文.

        trafilatura 是同步库，这里用线程池包装成异步。
        """
        await ensure_public_url(url, resolve=self._resolve_dns)

        response = await download(
            self._client,
            url,
            timeout=self._timeout,
            headers={"Accept": PAGE_ACCEPT, "Accept-Language": "en-US,en;q=0.5"},
            resolve_dns=self._resolve_dns,
        )

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor,
            self._extract_sync,
            response.text,
            str(response.url),
        )

    def _extract_sync(self, page: str, url: str) -> ExtractedContent:
        """同步提取正文."""
        html_content = extract(
            page,
            url=url,
            include_comments=False,
            include_tables=True,
            include_images=True,
            include_links=True,
            output_format="html",
            favor_precision=False,
        )
        text_content = extract(
            page,
            url=url,
            include_comments=False,
            include_tables=True,
            output_format="txt",
            favor_precision=False,
        )

        metadata = extract_metadata(page, default_url=url)
        title = metadata.title if metadata and metadata.title else None
        author = metadata.author if metadata and metadata.author else None
        published = metadata.date if metadata and metadata.date else None

        if not html_content and not text_content:
            return self._fallback(page, url, title, author, published)

        text = self._clean_text(text_content or html_to_text(html_content or ""))
        return ExtractedContent(
            title=title or "Untitled",
            url=url,
            text=text,
            html=self._clean_html(html_content or ""),
            author=author,
            published_time=published,
        )

    def _fallback(
        self,
        page: str,
        url: str,
        title: str | None,
        author: str | None,
        published: str | None,
    ) -> ExtractedContent:
        """BeautifulSoup 兜底提取."""
        soup = BeautifulSoup(page, "lxml")
        for selector in _NOISE_SELECTORS:
            for element in soup.select(selector):
                element.decompose()

        main = None
        for selector in _MAIN_SELECTORS:
            main = soup.select_one(selector)
            if main is not None:
                break

        if main is None:
            raise FetchError(FetchErrorKind.UNKNOWN, "无法从页面内容中提取正文")

        if not title:
            heading = soup.find("h1") or soup.find("title")
            title = heading.get_text(strip=True) if heading else None

        if not author:
            byline = soup.select_one('[rel="author"], .author, .byline')
            author = byline.get_text(strip=True) if byline else None

        if not published:
            time_tag = soup.find("time")
            if time_tag and time_tag.get("datetime"):
                published = str(time_tag["datetime"])

        html = main.decode_contents()
        text = self._clean_text(html_to_text(html))
        if not text:
            raise FetchError(FetchErrorKind.UNKNOWN, "无法从页面内容中提取正文")

        return ExtractedContent(
            title=title or "Untitled",
            url=url,
            text=text,
            html=self._clean_html(html),
            author=author or None,
            published_time=published,
        )

    def _clean_html(self, html: str) -> str:
        """清理 HTML 内容."""
        # 移除多余空白
        html = re.sub(r"\n\s*\n", "\n\n", html)
        # 移除空标签
        html = re.sub(r"<(\w+)>\s*</\1>", "", html)
        return html.strip()

    def _clean_text(self, text: str) -> str:
        """清理纯文本内容."""
        # 移除多余空行
        text = re.sub(r"\n{3,}", "\n\n", text)
        # 移除行首尾空白
        lines = [line.strip() for line in text.split("\n")]
        text = "\n".join(lines)
        # 移除常见的无效字符
        text = re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f]", "", text)
        return text.strip()
