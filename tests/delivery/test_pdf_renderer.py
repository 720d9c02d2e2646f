import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from wxarchive.delivery.pdf_renderer import PlaywrightPdfRenderer
from wxarchive.models import PdfInfo


def _renderer_with_page():
    page = MagicMock()
    page.goto = AsyncMock()
    page.pdf = AsyncMock()
    page.close = AsyncMock()
    browser = MagicMock()
    browser.new_page = AsyncMock(return_value=page)
    renderer = PlaywrightPdfRenderer()
    renderer._browser = browser
    return renderer, page


def test_render_prints_source_page_to_named_pdf(tmp_path):
    renderer, page = _renderer_with_page()
    info = PdfInfo(id="abc", title="测试文章", save_path=str(tmp_path), file_name="t")

    target = asyncio.run(renderer.render(info))

    assert target == tmp_path / "t.pdf"
    assert page.goto.await_args.args[0].endswith("/pdf.html")
    page.pdf.assert_awaited_once_with(path=str(tmp_path / "t.pdf"), format="A4", print_background=True)
    page.close.assert_awaited_once()


def test_render_closes_page_when_printing_fails(tmp_path):
    renderer, page = _renderer_with_page()
    page.pdf.side_effect = RuntimeError("crashed")

    with pytest.raises(RuntimeError):
        asyncio.run(renderer.render(PdfInfo(id="x", title="标题", save_path=str(tmp_path))))

    page.close.assert_awaited_once()
