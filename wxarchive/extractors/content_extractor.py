"""
正文提取分发器 (Content extraction dispatcher)

微信文章有三种互斥的页面形态：
  - 图片分享页 (poster): 正文是描述文字 + 脚本变量里的图片列表
  - 短文本页 (short text): 只有一段文字，标题藏在脚本变量里
  - 普通图文 (normal): 走通用 readability 提取
先按容器 class 识别形态，再交给对应的解析器；结果统一为 ExtractionResult。
"""

import html
import logging
import re

from bs4 import BeautifulSoup

from wxarchive.extractors.readability import PAGE_ID, ReadabilityExtractor
from wxarchive.models import ArticleShape, ExtractionResult

logger = logging.getLogger(__name__)

POSTER_CLASS = "share_content_page"
SHORT_TEXT_CLASS = "text_page_info"

# cdn_url: JsDecode('https://...') 或 cdn_url: 'https://...'
_RE_CDN_URL = re.compile(r"cdn_url:\s*(?:JsDecode\(['\"]([^'\"]+)['\"]\)|['\"]([^'\"]+)['\"])")
# var msg_title = '标题'.html(false); / window.msg_title = "标题"
_RE_MSG_TITLE = re.compile(r"(?:var\s+|window\.)msg_title\s*=\s*(['\"])(.*?)\1")
_RE_STYLE_WIDTH = re.compile(r"width:\s*(\d+)px")


def _decode_js_string(value: str) -> str:
    """Undo the escaping WeChat applies to strings embedded in page scripts."""
    value = value.replace("\\x26", "&").replace("\\x27", "'").replace("\\x22", '"')
    value = value.replace("\\/", "/")
    return html.unescape(value).strip()


def prep_html(raw_html: str) -> BeautifulSoup:
    """
    预处理页面 (Pre-process the raw page).
    1. 懒加载图片: data-src 赋给 src
    2. style 中的像素宽度写成 width 属性
    """
    soup = BeautifulSoup(raw_html, "html.parser")
    for img in soup.find_all("img"):
        data_src = img.get("data-src")
        if data_src:
            img["src"] = data_src
        style = img.get("style")
        if style:
            match = _RE_STYLE_WIDTH.search(style)
            if match:
                img["width"] = match.group(1)
    return soup


def _new_page(soup: BeautifulSoup):
    return soup.new_tag("div", attrs={"id": PAGE_ID, "class": "page"})


def _poster_image_urls(raw_html: str) -> list[str]:
    start = raw_html.find("picture_page_info_list")
    if start < 0:
        return []
    urls: list[str] = []
    for jsdecode_url, direct_url in _RE_CDN_URL.findall(raw_html[start:]):
        url = _decode_js_string(jsdecode_url or direct_url)
        if url and url not in urls:
            urls.append(url)
    return urls


def extract_poster(soup: BeautifulSoup, raw_html: str) -> ExtractionResult | None:
    """
    图片分享页 (Poster/share format).
    标题取第一个 h1，缺失时退回 meta description；没有标题或没有图片时返回 None。
    """
    desc_el = soup.find("meta", attrs={"name": "description"})
    description = (desc_el.get("content") or "").strip() if desc_el else ""
    if not description:
        desc_node = soup.select_one("#js_image_desc")
        description = desc_node.get_text("\n", strip=True) if desc_node else ""

    h1 = soup.find("h1")
    title = h1.get_text(strip=True) if h1 else ""
    title = title or description

    urls = _poster_image_urls(raw_html)
    if not title or not urls:
        logger.debug("[EXTRACT] Poster page without title or images (title=%r, images=%d)", title, len(urls))
        return None

    out = BeautifulSoup("", "html.parser")
    page = _new_page(out)
    if description:
        for line in description.splitlines():
            p = out.new_tag("p")
            p.string = line
            page.append(p)
    for url in urls:
        page.append(out.new_tag("img", attrs={"src": url, "data-src": url}))
    return ExtractionResult(shape=ArticleShape.POSTER, title=title, html=str(page))


def extract_short_text(soup: BeautifulSoup, raw_html: str) -> ExtractionResult | None:
    """短文本页 (Short-text format). 标题来自脚本变量 msg_title，缺失时返回 None。"""
    match = _RE_MSG_TITLE.search(raw_html)
    title = _decode_js_string(match.group(2)) if match else ""
    if not title:
        logger.debug("[EXTRACT] Short-text page without msg_title")
        return None

    container = soup.select_one("#js_text_desc") or soup.find(class_=SHORT_TEXT_CLASS)
    text = container.get_text("\n", strip=True) if container else ""

    out = BeautifulSoup("", "html.parser")
    page = _new_page(out)
    for line in text.splitlines():
        p = out.new_tag("p")
        p.string = line
        page.append(p)
    return ExtractionResult(shape=ArticleShape.SHORT_TEXT, title=title, html=str(page))


def extract_normal(soup: BeautifulSoup) -> ExtractionResult | None:
    parsed = ReadabilityExtractor(soup).parse()
    if parsed is None:
        return None
    title, page_html, byline = parsed
    return ExtractionResult(shape=ArticleShape.NORMAL, title=title, html=page_html, byline=byline)


def detect_shape(soup: BeautifulSoup) -> ArticleShape:
    if soup.find(class_=POSTER_CLASS) is not None:
        return ArticleShape.POSTER
    if soup.find(class_=SHORT_TEXT_CLASS) is not None:
        return ArticleShape.SHORT_TEXT
    return ArticleShape.NORMAL


def extract(raw_html: str) -> ExtractionResult | None:
    """
    提取正文 (Extract readable content from a raw article page).

    Returns:
        ExtractionResult, or None when the detected shape's parser rejects the page.
    """
    soup = prep_html(raw_html)
    shape = detect_shape(soup)
    logger.debug("[EXTRACT] Detected %s page", shape.value)

    if shape == ArticleShape.POSTER:
        return extract_poster(soup, raw_html)
    if shape == ArticleShape.SHORT_TEXT:
        return extract_short_text(soup, raw_html)
    return extract_normal(soup)
