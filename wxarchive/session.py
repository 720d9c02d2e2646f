"""
会话凭据捕获 (Session credential capture).
从代理截获的 HTTP 交换中提取 biz/key/uin/票据/Cookie/UA；核心不做抓包本身。
"""

import html
import json
import logging
from urllib.parse import parse_qs, urlparse

from wxarchive.models import Session

logger = logging.getLogger(__name__)

# 批量下载：打开任意文章时客户端请求的横幅接口
FEED_EXCHANGE_PREFIX = "https://mp.weixin.qq.com/mp/getbizbanner"
# 选择下载：文章页加载图标时带着文章地址作为 Referer
ARTICLE_EXCHANGE_PREFIX = "https://mp.weixin.qq.com/mp/geticon"

ARTICLE_URL_TEMPLATE = (
    "http://mp.weixin.qq.com/s?__biz={biz}&mid={mid}&idx={idx}&sn={sn}&chksm={chksm}"
    "&scene=27#wechat_redirect"
)


def _query_value(url: str, name: str) -> str | None:
    values = parse_qs(urlparse(url).query, keep_blank_values=True).get(name)
    return values[0] if values else None


def _header(headers: dict, name: str) -> str | None:
    for key, value in (headers or {}).items():
        if key.lower() == name.lower():
            return value
    return None


def classify_exchange(url: str) -> str | None:
    """Return "feed", "article" or None for an intercepted request URL."""
    if url.startswith(FEED_EXCHANGE_PREFIX):
        return "feed"
    if url.startswith(ARTICLE_EXCHANGE_PREFIX):
        return "article"
    return None


def capture_feed_session(url: str, headers: dict) -> Session | None:
    """从横幅接口请求中提取公号会话 (Session for feed-driven batch)."""
    biz = _query_value(url, "__biz")
    key = _query_value(url, "key")
    uin = _query_value(url, "uin")
    if not (biz and key and uin):
        logger.error("[SESSION] Feed exchange is missing biz/key/uin: %s", url)
        return None
    return Session(
        biz=biz,
        key=key,
        uin=uin,
        ticket=_query_value(url, "pass_ticket"),
        host=_header(headers, "Host"),
        cookie=_header(headers, "Cookie"),
        user_agent=_header(headers, "User-Agent"),
    )


def capture_article_session(headers: dict) -> tuple[Session, str] | None:
    """从文章页 Referer 中提取会话与文章地址 (Session + article URL for selection batch)."""
    referer = _header(headers, "Referer")
    if not referer:
        return None
    values = {name: _query_value(referer, name) for name in ("__biz", "key", "uin", "mid", "idx", "sn", "chksm")}
    if not (values["__biz"] and values["mid"] and values["sn"]):
        logger.error("[SESSION] Article exchange referer lacks article identity: %s", referer)
        return None
    session = Session(
        biz=values["__biz"],
        key=values["key"] or "",
        uin=values["uin"] or "",
        cookie=_header(headers, "Cookie"),
        user_agent=_header(headers, "User-Agent"),
    )
    article_url = ARTICLE_URL_TEMPLATE.format(
        biz=values["__biz"],
        mid=values["mid"],
        idx=values["idx"] or "1",
        sn=values["sn"],
        chksm=values["chksm"] or "",
    )
    return session, article_url


def parse_session_data(data: dict) -> tuple[Session | None, str | None]:
    """
    解析会话 JSON (Parse a session description).
    支持直接的凭据对象，或 {url, headers} 形式的截获请求。

    Returns:
        (Session 或 None, 截获文章页时重建的文章地址，否则为 None)
    """
    if "url" in data and "headers" in data:
        url = html.unescape(data["url"])
        if classify_exchange(url) == "article":
            return capture_article_session(data["headers"]) or (None, None)
        return capture_feed_session(url, data["headers"]), None
    return session_from_dict(data), None


def session_from_dict(data: dict) -> Session | None:
    if "url" in data and "headers" in data:
        return parse_session_data(data)[0]
    missing = [name for name in ("biz", "key", "uin") if not data.get(name)]
    if missing:
        logger.error("[SESSION] Session is missing fields: %s", ", ".join(missing))
        return None
    return Session(
        biz=data["biz"],
        key=data["key"],
        uin=data["uin"],
        ticket=data.get("ticket") or data.get("pass_ticket") or data.get("passTicket"),
        host=data.get("host") or data.get("Host"),
        cookie=data.get("cookie") or data.get("Cookie"),
        user_agent=data.get("user_agent") or data.get("userAgent") or data.get("UserAgent"),
    )


def load_session(path: str) -> tuple[Session | None, str | None]:
    with open(path, encoding="utf-8") as f:
        return parse_session_data(json.load(f))
