"""
精选留言抓取 (Comment fetcher)
comment_id 从文章源码中匹配；为空或为 "0" 表示文章没有留言。
"""

import logging

import requests

from config import COMMENT_LIST_URL, COMMENT_REPLY_URL
from wxarchive.context import RunContext
from wxarchive.extractors.metadata import match_comment_id
from wxarchive.http import get_json, session_headers
from wxarchive.models import Article, EventKind

logger = logging.getLogger(__name__)


async def _request(ctx: RunContext, url: str, params: dict, headers: dict, label: str) -> dict | None:
    """Issue one comment API call; failures become warnings, never exceptions."""
    try:
        status, data = await get_json(ctx.http, url, params=params, headers=headers)
    except requests.RequestException as e:
        logger.warning("[COMMENT] %s request failed: %s", label, e)
        ctx.emit(EventKind.FAIL, f"{label}失败：{e}")
        return None
    if status != 200 or data is None:
        logger.warning("[COMMENT] %s failed: HTTP %s", label, status)
        ctx.emit(EventKind.FAIL, f"{label}失败，状态码：{status}")
        return None
    errmsg = (data.get("base_resp") or {}).get("errmsg")
    if errmsg != "ok":
        logger.warning("[COMMENT] %s failed: %s", label, data.get("base_resp"))
        ctx.emit(EventKind.FAIL, f"{label}失败：{errmsg}")
        return None
    return data


async def fetch_comments(ctx: RunContext, article: Article) -> tuple[list[dict] | None, dict[str, list[dict]] | None]:
    """
    获取精选留言及其回复 (Fetch curated comments and, optionally, their reply threads).

    Returns:
        (comments, replies_by_comment_id)；没有留言时为 (None, None)
    """
    session = article.session
    if not article.html or session is None:
        logger.debug("[COMMENT] No page source or session for %s", article.content_url)
        return None, None

    comment_id = match_comment_id(article.html)
    if not comment_id or comment_id == "0":
        logger.info("[COMMENT] 【%s】has no comments", article.title)
        return None, None

    headers = session_headers(session, referer=article.content_url)
    base_params = {"__biz": session.biz, "key": session.key, "uin": session.uin, "comment_id": comment_id}

    data = await _request(ctx, COMMENT_LIST_URL, base_params, headers, f"【{article.title}】获取精选留言")
    if data is None:
        return None, None
    comments = data.get("elected_comment") or []
    logger.debug("[COMMENT] 【%s】%d comments", article.title, len(comments))

    replies: dict[str, list[dict]] = {}
    if ctx.option.replies:
        for comment in comments:
            reply_info = comment.get("reply_new") or {}
            inline = reply_info.get("reply_list") or []
            if (reply_info.get("reply_total_cnt") or 0) <= len(inline):
                continue
            params = dict(base_params)
            params["content_id"] = comment.get("content_id")
            params["max_reply_id"] = reply_info.get("max_reply_id")
            reply_data = await _request(ctx, COMMENT_REPLY_URL, params, headers, "获取留言回复")
            if reply_data is None:
                continue
            replies[str(comment.get("content_id"))] = (reply_data.get("reply_list") or {}).get("reply_list") or []

    return comments, replies
