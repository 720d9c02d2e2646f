"""
元数据提取 (Metadata extraction)
发布时间、作者、公号名、原创标识、发表地等字段没有结构化接口，只能从页面源码中匹配。
"""

import html
import logging
import re
from datetime import datetime

from bs4 import BeautifulSoup

from wxarchive.models import ArticleMeta

logger = logging.getLogger(__name__)

# var create_time = "1699399873" * 1;
_RE_CREATE_TIME = re.compile(r'var create_time = "(\d+)" \* 1;')
# window.ct = '1695861587',
_RE_POST_CREATE_TIME = re.compile(r"window\.ct\s?=\s?'(\d+)'")
_RE_CT = re.compile(r'var ct\s?=\s?"(\d+)"')

# var comment_id = "2962153470" || "0" * 1;
_RE_COMMENT_ID = re.compile(r'var comment_id = "(.*)" \|\| "(.*)" \* 1;')
# getXmlValue('comment_id.DATA') : '2962153470';
_RE_POST_COMMENT_ID = re.compile(r"getXmlValue\('comment_id\.DATA'\)\s?:\s?'(\d*)';")

_RE_PROVINCE = re.compile(r"provinceName: '([一-龥]*)'")
_RE_COUNTRY = re.compile(r"countryName: '([一-龥]*)'")
_RE_NICKNAME = re.compile(r'var nickname = (?:htmlDecode\()?"([^"]*)"')
_RE_COPYRIGHT = re.compile(r'_?copyright_stat\s?=\s?"(\d+)"')
_RE_AUTHOR_VAR = re.compile(r'var author = "([^"]*)"')

# 原创状态值 (copyright_stat values meaning "original")
ORIGINAL_STATS = {1, 11}


def match_create_time(raw_html: str) -> datetime | None:
    """Publish time from the page's script variables."""
    for pattern in (_RE_CREATE_TIME, _RE_POST_CREATE_TIME, _RE_CT):
        match = pattern.search(raw_html)
        if match and match.group(1):
            return datetime.fromtimestamp(int(match.group(1)))
    return None


def match_comment_id(raw_html: str) -> str:
    """Comment identifier from either embedding form; empty string when absent."""
    match = _RE_COMMENT_ID.search(raw_html)
    if match:
        return match.group(1)
    match = _RE_POST_COMMENT_ID.search(raw_html)
    if match:
        return match.group(1)
    return ""


def match_posted_from(raw_html: str) -> str | None:
    match = _RE_PROVINCE.search(raw_html)
    if match and match.group(1):
        return match.group(1)
    match = _RE_COUNTRY.search(raw_html)
    if match and match.group(1):
        return match.group(1)
    return None


def match_copyright_stat(raw_html: str) -> int | None:
    match = _RE_COPYRIGHT.search(raw_html)
    return int(match.group(1)) if match else None


def _text_of(soup: BeautifulSoup, selector: str) -> str | None:
    el = soup.select_one(selector)
    if el is None:
        return None
    text = el.get_text(strip=True)
    return text or None


def _meta_content(soup: BeautifulSoup, name: str) -> str | None:
    el = soup.find("meta", attrs={"name": name}) or soup.find("meta", attrs={"property": name})
    if el and el.get("content"):
        return el["content"].strip() or None
    return None


def extract_metadata(raw_html: str, copyright_stat: int | None = None) -> ArticleMeta:
    """
    从原始页面提取元数据 (Extract ArticleMeta from the raw page).

    Args:
        raw_html: 未经处理的页面源码
        copyright_stat: 列表接口给出的原创状态（优先于页面内的值）
    """
    soup = BeautifulSoup(raw_html, "html.parser")

    author = _meta_content(soup, "author") or _text_of(soup, "#js_author_name")
    if not author:
        match = _RE_AUTHOR_VAR.search(raw_html)
        author = html.unescape(match.group(1)) if match and match.group(1) else None

    account = _text_of(soup, "#js_name")
    if not account:
        match = _RE_NICKNAME.search(raw_html)
        account = html.unescape(match.group(1)) if match and match.group(1) else None

    stat = copyright_stat if copyright_stat is not None else match_copyright_stat(raw_html)
    copyright_flag = stat in ORIGINAL_STATS or soup.select_one("#copyright_logo") is not None

    created = match_create_time(raw_html)
    meta = ArticleMeta(
        copyright_flag=copyright_flag,
        author=author,
        account_display_name=account,
        published_at_text=created.strftime("%Y-%m-%d %H:%M") if created else None,
        posted_from_text=match_posted_from(raw_html),
    )
    logger.debug("[META] %s", meta)
    return meta
