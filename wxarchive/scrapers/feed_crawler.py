"""
文章列表抓取 (Article feed crawler)
按 offset 翻页读取公众号历史消息，转换为 Article 存根；
待下载队列达到单批上限时先下载再继续翻页，控制内存与并发。
"""

import html
import json
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime

import requests

from config import LIST_URL
from wxarchive.context import RunContext
from wxarchive.errors import FeedError
from wxarchive.http import get, session_headers
from wxarchive.models import Article, EventKind, Session

logger = logging.getLogger(__name__)

Drain = Callable[[list[Article]], Awaitable[None]]

PROFILE_REFERER = (
    "https://mp.weixin.qq.com/mp/profile_ext?action=home&lang=zh_CN"
    "&__biz={biz}&uin={uin}&key={key}&pass_ticket={ticket}"
)

_HINT_SESSION = "会话可能已过期，请重新打开任意一篇该公号文章以重新抓取会话"


def entry_to_stub(info: dict, published: datetime | None, session: Session | None = None) -> Article | None:
    """Convert one feed item into an Article stub; items without a content URL are dropped."""
    content_url = html.unescape(info.get("content_url") or "").strip()
    if not content_url:
        return None
    return Article(
        content_url=content_url,
        title=html.unescape(info.get("title") or "") or None,
        datetime=published,
        digest=info.get("digest") or None,
        cover=html.unescape(info.get("cover") or "") or None,
        author=info.get("author") or None,
        copyright_stat=info.get("copyright_stat"),
        session=session,
    )


def expand_entry(info: dict, published: datetime | None, session: Session | None = None) -> list[Article]:
    """多图文消息拆成多篇文章 (Primary item plus every item of a multi-article post)."""
    stubs = []
    items = [info]
    if info.get("is_multi") == 1:
        items.extend(info.get("multi_app_msg_item_list") or [])
    for item in items:
        stub = entry_to_stub(item, published, session)
        if stub is not None:
            stubs.append(stub)
    return stubs


def parse_envelope(data: dict) -> tuple[list[dict], bool, int | None]:
    """
    解析列表响应 (Parse a feed envelope).

    Returns:
        (entries, can_continue, next_offset)
    """
    if not isinstance(data, dict) or data.get("errmsg") != "ok":
        errmsg = data.get("errmsg") if isinstance(data, dict) else data
        raise FeedError(f"获取文章列表失败，错误信息：{errmsg}", hint=_HINT_SESSION)
    try:
        msg_list = json.loads(data.get("general_msg_list") or "{}")
    except ValueError as e:
        raise FeedError(f"文章列表解析失败：{e}") from e
    entries = msg_list.get("list") or []
    return entries, data.get("can_msg_continue") == 1, data.get("next_offset")


async def _fetch_page(ctx: RunContext, session: Session, offset) -> dict:
    params = {
        "__biz": session.biz,
        "key": session.key,
        "uin": session.uin,
        "pass_ticket": session.ticket or "",
        "offset": offset,
    }
    referer = PROFILE_REFERER.format(biz=session.biz, uin=session.uin, key=session.key, ticket=session.ticket or "")
    try:
        resp = await get(ctx.http, LIST_URL, params=params, headers=session_headers(session, referer))
    except requests.RequestException as e:
        raise FeedError(f"获取文章列表失败：{e}", hint="请检查网络连接后重试") from e
    if resp.status_code != 200:
        raise FeedError(f"获取文章列表失败，状态码：{resp.status_code}", hint=_HINT_SESSION)
    try:
        return resp.json()
    except ValueError as e:
        raise FeedError(f"文章列表不是有效的 JSON：{e}", hint=_HINT_SESSION) from e


async def crawl(
    ctx: RunContext,
    session: Session,
    date_range: tuple[datetime, datetime],
    drain: Drain,
) -> int:
    """
    翻页抓取文章列表 (Paginate the feed and hand stubs to `drain`).

    列表按时间倒序返回：遇到早于开始时间的条目立即停止，不再请求下一页；
    晚于结束时间的条目跳过但继续翻页。

    Args:
        date_range: (start, end)
        drain: 下载一批存根的协程，队列达到 batch_limit 时调用

    Returns:
        进入下载队列的文章数量

    Raises:
        FeedError: 非 200 响应或 errmsg 不是 ok
    """
    start, end = date_range
    limit = max(ctx.option.batch_limit, 1)
    pending: list[Article] = []
    count = 0
    offset = 0
    page = 0

    while not ctx.aborted:
        data = await _fetch_page(ctx, session, offset)
        entries, can_continue, next_offset = parse_envelope(data)
        page += 1

        reached_start = False
        for entry in entries:
            info = entry.get("app_msg_ext_info")
            if not info:
                continue
            ts = (entry.get("comm_msg_info") or {}).get("datetime")
            published = datetime.fromtimestamp(ts) if ts else None
            if published is not None and published < start:
                reached_start = True
                break
            if published is not None and published > end:
                continue
            stubs = expand_entry(info, published, session)
            pending.extend(stubs)
            count += len(stubs)

        logger.info("[FEED] Page %d: %d entries, %d articles queued so far", page, len(entries), count)
        ctx.emit(EventKind.SUCCESS, f"正在获取文章列表，目前数量：{count}")

        while len(pending) >= limit and not ctx.aborted:
            batch, pending = pending[:limit], pending[limit:]
            await drain(batch)

        if reached_start:
            logger.info("[FEED] Reached articles older than %s, stopping", start)
            break
        if not can_continue or next_offset is None:
            break
        offset = next_offset

    if pending and not ctx.aborted:
        await drain(pending)
    return count
