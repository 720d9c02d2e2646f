"""
PDF 源文件输出 (PDF-source sink)
写出 pdf.html 后向外部渲染方发送 PDF_REQUEST，等待对应 id 的 PDF_DONE 回执才算完成。
"""

import asyncio
import logging
import os

from wxarchive.context import PdfBridge, RunContext
from wxarchive.delivery.templates import render_document
from wxarchive.errors import SinkError
from wxarchive.models import Article, EventKind, PdfInfo

logger = logging.getLogger(__name__)

PDF_SOURCE_NAME = "pdf.html"


def _write_text(path: str, text: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)


async def write_pdf_source(ctx: RunContext, article: Article, page_html: str, save_dir: str) -> str:
    """
    写入 pdf.html 并等待外部渲染回执 (Write the PDF source and await the render ack).

    Raises:
        SinkError: 写文件失败，或在 pdf_timeout 内没有收到回执
    """
    path = os.path.join(save_dir, PDF_SOURCE_NAME)
    document = render_document(
        article.title or "", page_html, article.comments, article.replies_by_comment_id, show_all=True
    )
    try:
        await asyncio.to_thread(_write_text, path, document)
    except OSError as e:
        raise SinkError("pdf", f"写入 pdf.html 失败：{e}") from e
    ctx.emit(EventKind.SUCCESS, f"【{article.title}】保存pdf的html文件完成")

    info = PdfInfo(id=PdfBridge.new_id(), title=article.title or "", save_path=save_dir, file_name=article.file_name)
    # 先登记再发请求，同步回执的渲染方也能命中
    future = ctx.pdf_bridge.register(info)
    ctx.emit(EventKind.PDF_REQUEST, "保存pdf", info)
    try:
        await asyncio.wait_for(future, timeout=ctx.pdf_timeout)
    except asyncio.TimeoutError as e:
        ctx.pdf_bridge.discard(info.id)
        raise SinkError("pdf", f"等待 PDF 渲染超时（{ctx.pdf_timeout:.0f} 秒）") from e
    logger.info("[SINK] PDF rendered for %s (id=%s)", article.title, info.id)
    return path
