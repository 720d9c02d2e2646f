"""
PDF 渲染 (Headless-browser PDF rendering for the CLI shell)
核心只写出 pdf.html 并发出请求；这里用 Playwright 的 Chromium 打印成 PDF。
"""

import asyncio
import logging
from pathlib import Path

from wxarchive.models import PdfInfo
from wxarchive.paths import sanitize_dir_name
from wxarchive.delivery.pdf_sink import PDF_SOURCE_NAME

logger = logging.getLogger(__name__)


class PlaywrightPdfRenderer:
    """Lazily launches one Chromium instance and prints pages with bounded parallelism."""

    def __init__(self, max_pages: int = 2, timeout_ms: int = 60000):
        self.timeout_ms = timeout_ms
        self._semaphore = asyncio.Semaphore(max_pages)
        self._start_lock = asyncio.Lock()
        self._playwright = None
        self._browser = None

    async def _ensure_browser(self):
        async with self._start_lock:
            if self._browser is None:
                from playwright.async_api import async_playwright

                self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(headless=True)
                logger.info("[PDF] Chromium launched")
        return self._browser

    async def render(self, info: PdfInfo) -> Path:
        """把 {save_path}/pdf.html 打印为 {file_name}.pdf"""
        source = Path(info.save_path) / PDF_SOURCE_NAME
        target = Path(info.save_path) / f"{info.file_name or sanitize_dir_name(info.title)}.pdf"
        browser = await self._ensure_browser()
        async with self._semaphore:
            page = await browser.new_page()
            try:
                await page.goto(source.resolve().as_uri(), wait_until="networkidle", timeout=self.timeout_ms)
                await page.pdf(path=str(target), format="A4", print_background=True)
            finally:
                await page.close()
        logger.info("[PDF] Rendered %s", target)
        return target

    async def close(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
