"""
通用正文提取 (Generic readability-style extraction)

精简版 readability：选取正文根节点、清理杂质节点、删除空节点。
微信页面特有两条规则：
  1. 含音频控件的节点即使没有文本也不算"空"节点；
  2. 清理时，父节点仍含音频控件的节点不删除。
"""

import logging
import re

from bs4 import BeautifulSoup, Tag

logger = logging.getLogger(__name__)

# 微信音频控件：QQ 音乐、旧版语音、新版语音，以及已转换的 <audio>
AUDIO_TAGS = ["qqmusic", "mpvoice", "mp-common-mpaudio", "audio"]
# 即使无文本也承载内容的元素
CONTENT_EMBED_TAGS = ["img", "video", "iframe", "svg", "picture", "source", "embed", "object", "hr", "br"]

STRIP_TAGS = ["script", "style", "noscript", "link", "template"]
JUNK_TAGS = ["form", "button", "input", "textarea", "select", "nav", "aside", "footer"]
PRUNABLE_TAGS = ["p", "div", "section", "span", "strong", "em", "b", "i", "u", "font", "blockquote",
                 "h1", "h2", "h3", "h4", "h5", "h6", "li", "ul", "ol", "a", "figure", "table"]

_RE_UNLIKELY = re.compile(
    r"-ad-|banner|breadcrumbs|combx|comment|community|disqus|extra|footer|gdpr|header|legends|"
    r"menu|related|remark|replies|rss|shoutbox|sidebar|skyscraper|social|sponsor|supplemental|"
    r"popup|qr_code|reward|tips_global|share_notice|js_pc_qr",
    re.I,
)
_RE_MAYBE_CANDIDATE = re.compile(r"and|article|body|column|content|main|shadow|rich_media", re.I)
_RE_COMMA = re.compile(r"[,，、]")

PAGE_ID = "readability-page-1"


def contains_audio(node: Tag) -> bool:
    if not isinstance(node, Tag):
        return False
    if node.name in AUDIO_TAGS:
        return True
    return node.find(AUDIO_TAGS) is not None


def is_empty_node(node: Tag) -> bool:
    """
    判断节点是否为空 (Is the node prunable as empty?)
    音频控件节点不计为空。
    """
    if node.get_text(strip=True):
        return False
    if node.name in CONTENT_EMBED_TAGS or node.find(CONTENT_EMBED_TAGS) is not None:
        return False
    if contains_audio(node):
        return False
    return True


def can_remove(node: Tag) -> bool:
    """Siblings of an audio widget survive cleanup."""
    parent = node.parent
    if isinstance(parent, Tag) and parent.find(AUDIO_TAGS, recursive=False) is not None:
        return False
    return True


def _class_and_id(node: Tag) -> str:
    classes = node.get("class") or []
    if isinstance(classes, str):
        classes = [classes]
    return " ".join(classes) + " " + (node.get("id") or "")


class ReadabilityExtractor:
    """Minimal article extractor over a BeautifulSoup tree."""

    def __init__(self, soup: BeautifulSoup, min_text_length: int = 25):
        self.soup = soup
        self.min_text_length = min_text_length

    def get_title(self) -> str:
        for selector in ("#activity-name", "h1.rich_media_title", ".rich_media_title", ".weui-msg__title"):
            el = self.soup.select_one(selector)
            if el and el.get_text(strip=True):
                return el.get_text(strip=True)
        for attrs in ({"property": "og:title"}, {"property": "twitter:title"}, {"name": "twitter:title"}):
            el = self.soup.find("meta", attrs=attrs)
            if el and el.get("content", "").strip():
                return el["content"].strip()
        if self.soup.title and self.soup.title.get_text(strip=True):
            return self.soup.title.get_text(strip=True)
        h1 = self.soup.find("h1")
        return h1.get_text(strip=True) if h1 else ""

    def get_byline(self) -> str | None:
        el = self.soup.find("meta", attrs={"name": "author"})
        if el and el.get("content", "").strip():
            return el["content"].strip()
        for selector in ("#js_author_name", ".rich_media_meta_text", "[rel=author]", ".byline"):
            el = self.soup.select_one(selector)
            if el and el.get_text(strip=True):
                return el.get_text(strip=True)
        return None

    def parse(self) -> tuple[str, str, str | None] | None:
        """Return (title, content_html, byline) or None when no content root is found."""
        title = self.get_title()
        byline = self.get_byline()

        for tag in self.soup.find_all(STRIP_TAGS):
            tag.decompose()

        root = self._grab_root()
        if root is None:
            logger.debug("[EXTRACT] No content root found")
            return None

        self._clean(root)
        if is_empty_node(root):
            return None

        page = self.soup.new_tag("div", attrs={"id": PAGE_ID, "class": "page"})
        root.extract()
        page.append(root)
        return title, str(page), byline

    def _grab_root(self) -> Tag | None:
        root = self.soup.select_one("#js_content") or self.soup.select_one(".rich_media_content")
        if root is not None:
            # 正文默认隐藏，等待脚本显示
            if root.get("style"):
                root["style"] = re.sub(r"visibility:\s*hidden;?", "", root["style"]).strip()
            return root

        scores: dict[int, float] = {}
        nodes: dict[int, Tag] = {}
        for para in self.soup.find_all(["p", "pre", "td", "section"]):
            text = para.get_text(" ", strip=True)
            if len(text) < self.min_text_length:
                continue
            score = 1 + len(_RE_COMMA.findall(text)) + min(len(text) // 100, 3)
            parent = para.parent
            grandparent = parent.parent if isinstance(parent, Tag) else None
            for ancestor, weight in ((parent, 1.0), (grandparent, 0.5)):
                if not isinstance(ancestor, Tag) or ancestor.name in ("html", "[document]"):
                    continue
                bonus = 5 if _RE_MAYBE_CANDIDATE.search(_class_and_id(ancestor)) else 0
                key = id(ancestor)
                nodes[key] = ancestor
                scores[key] = scores.get(key, bonus) + score * weight

        if not scores:
            return self.soup.body
        best = max(scores, key=scores.get)
        return nodes[best]

    def _clean(self, root: Tag) -> None:
        for node in list(root.find_all(JUNK_TAGS)):
            if node.decomposed:
                continue
            if can_remove(node) and not contains_audio(node):
                node.decompose()

        for node in list(root.find_all(True)):
            if node.decomposed or node.name in AUDIO_TAGS:
                continue
            if _RE_UNLIKELY.search(_class_and_id(node)) and not _RE_MAYBE_CANDIDATE.search(_class_and_id(node)):
                if can_remove(node) and not contains_audio(node):
                    node.decompose()

        # 自底向上删除空节点，使父节点在子节点清理后也能被判断
        for node in reversed(list(root.find_all(PRUNABLE_TAGS))):
            if node.decomposed:
                continue
            if is_empty_node(node) and can_remove(node):
                node.decompose()
