"""
Markdown 输出 (Markdown sink)
基于 markdownify，补充两条微信规则：代码块按 pre/code 重建围栏，音频原样保留。
"""

import asyncio
import logging
import os
import re

from bs4 import BeautifulSoup, Comment, NavigableString
from markdownify import ATX, MarkdownConverter

from wxarchive.assets.asset_cache import CACHE_ATTR
from wxarchive.context import RunContext
from wxarchive.delivery.templates import render_markdown_comments
from wxarchive.errors import SinkError
from wxarchive.models import Article, EventKind

logger = logging.getLogger(__name__)

_RE_LANGUAGE = re.compile(r"language-(\S+)")
_RE_FENCE = re.compile(r"^`{3,}", re.M)


def _code_text(code) -> str:
    parts = []
    for node in code.descendants:
        if isinstance(node, Comment):
            continue
        if isinstance(node, NavigableString):
            parts.append(str(node))
        elif node.name == "br":
            parts.append("\n")
    return "".join(parts)


class WechatMarkdownConverter(MarkdownConverter):
    """
    微信文章专用转换器 (Converter with WeChat code-block and audio rules).
    微信代码块是 <pre data-lang> 下多个 <code>，每行一个，并伴随一个行号列表。
    """

    def convert_pre(self, el, text, parent_tags):
        codes = [child for child in el.children if getattr(child, "name", None) == "code"]
        if not codes:
            return super().convert_pre(el, text, parent_tags)

        language = ""
        for code in codes:
            match = _RE_LANGUAGE.search(" ".join(code.get("class") or []))
            if match:
                language = match.group(1)
                break
        if not language:
            language = el.get("data-lang") or ""

        body = "\n".join(_code_text(code) for code in codes)
        fence_size = 3
        for match in _RE_FENCE.finditer(body):
            fence_size = max(fence_size, len(match.group(0)) + 1)
        fence = "`" * fence_size
        return f"\n\n{fence}{language}\n{body.rstrip(chr(10))}\n{fence}\n\n"

    def convert_audio(self, el, text, parent_tags):
        return str(el)

    def convert_ul(self, el, text, parent_tags):
        if "code-snippet__line-index" in (el.get("class") or []):
            return ""
        return super().convert_ul(el, text, parent_tags)


def html_to_markdown(html: str) -> str:
    return WechatMarkdownConverter(heading_style=ATX, bullets="-").convert(html)


def decache_html(html: str) -> str:
    """用缓存路径替换展示路径 (Point img/source src at their cache files)."""
    soup = BeautifulSoup(html, "html.parser")
    for el in soup.find_all(["img", "source"]):
        cache_src = el.get(CACHE_ATTR)
        if cache_src:
            el["src"] = cache_src
    return str(soup)


def _write_text(path: str, text: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)


async def write_markdown(ctx: RunContext, article: Article, page_html: str, save_dir: str) -> str:
    """写入 {file_name}.md，末尾附评论串。"""
    path = os.path.join(save_dir, f"{article.file_name}.md")
    markdown = html_to_markdown(page_html)
    markdown += render_markdown_comments(article.comments, article.replies_by_comment_id)
    try:
        await asyncio.to_thread(_write_text, path, markdown)
    except OSError as e:
        raise SinkError("markdown", f"写入 Markdown 失败：{e}") from e
    logger.info("[SINK] Markdown saved: %s", path)
    ctx.emit(EventKind.SUCCESS, f"【{article.title}】保存Markdown完成")
    return path
