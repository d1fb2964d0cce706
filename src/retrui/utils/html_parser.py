"""HTML 解析工具."""

import re

from bs4 import BeautifulSoup

_TAG_RE = re.compile(r"<[^>]*>")

# 只解码固定的几个实体，与客户端展示保持一致
_ENTITIES = (
    ("&nbsp;", " "),
    ("&amp;", "&"),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
)

DESCRIPTION_MAX_LENGTH = 300


def strip_html(text: str) -> str:
    """去除标签并解码常见实体."""
    if not text:
        return ""

    text = _TAG_RE.sub("", text)
    for entity, char in _ENTITIES:
        text = text.replace(entity, char)
    return text.strip()


def clean_description(text: str, max_length: int = DESCRIPTION_MAX_LENGTH) -> str:
    """
    清理摘要文本.

    Args:
        text: 原始 HTML 摘要
        max_length: 最大长度，默认 300

    Returns:
        去标签、解码实体并截断后的文本
    """
    return strip_html(text)[:max_length]


def html_to_text(html: str) -> str:
    """
    将 HTML 转换为纯文本.

    Args:
        html: HTML 内容

    Returns:
        提取的纯文本内容
    """
    if not html:
        return ""

    # 使用 BeautifulSoup 解析
    soup = BeautifulSoup(html, "lxml")

    # 移除 script 和 style 标签
    for element in soup(["script", "style", "nav", "footer", "header"]):
        element.decompose()

    # 获取文本
    text = soup.get_text(separator="\n")

    # 清理多余空白
    lines = []
    for line in text.split("\n"):
        line = line.strip()
        if line:
            lines.append(line)

    text = "\n".join(lines)

    # 合并连续空行
    text = re.sub(r"\n{3,}", "\n\n", text)

    return text.strip()


def estimate_tokens(text: str) -> int:
    """粗略估算 token 数（约 4 字符 / token）."""
    return -(-len(text) // 4)
