"""HTML 输出 (HTML sink): stylesheet, content and an interactive comment section."""

import asyncio
import logging
import os

from wxarchive.context import RunContext
from wxarchive.delivery.templates import render_document
from wxarchive.errors import SinkError
from wxarchive.models import Article, EventKind

logger = logging.getLogger(__name__)


def _write_text(path: str, text: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)


async def write_html(ctx: RunContext, article: Article, page_html: str, save_dir: str) -> str:
    """写入 {file_name}.html；评论默认只展示内嵌回复，完整回复在弹窗中查看。"""
    path = os.path.join(save_dir, f"{article.file_name}.html")
    document = render_document(article.title or "", page_html, article.comments, article.replies_by_comment_id)
    try:
        await asyncio.to_thread(_write_text, path, document)
    except OSError as e:
        raise SinkError("html", f"写入 HTML 失败：{e}") from e
    logger.info("[SINK] HTML saved: %s", path)
    ctx.emit(EventKind.SUCCESS, f"【{article.title}】保存HTML完成")
    return path
