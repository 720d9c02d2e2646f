"""
单篇文章下载 (Article downloader)

抓取 -> 提取正文 -> 验证页重试 -> 元数据 -> 过滤 -> 留言 -> 建目录
-> 资源本地化 -> 注入标题/原文链接/元数据 -> 并发写出各格式。
"""

import asyncio
import logging
import os

import requests
from bs4 import BeautifulSoup

from config import CHALLENGE_MARKER
from wxarchive.assets.asset_cache import materialize
from wxarchive.context import RunContext
from wxarchive.delivery.db_sink import save_article
from wxarchive.delivery.html_sink import write_html
from wxarchive.delivery.markdown_sink import write_markdown
from wxarchive.delivery.pdf_sink import write_pdf_source
from wxarchive.delivery.templates import META_BANNER_TEMPLATE, SOURCE_LINK_TEMPLATE, TITLE_TEMPLATE
from wxarchive.errors import AntiBotAbort, ExtractionError
from wxarchive.extractors.content_extractor import extract
from wxarchive.extractors.metadata import extract_metadata, match_create_time
from wxarchive.extractors.readability import PAGE_ID
from wxarchive.filters.rule_filter import is_filtered
from wxarchive.http import get, session_headers
from wxarchive.models import Article, DownloadOutcome, DownloadResult, EventKind, ExtractionResult
from wxarchive.paths import article_cache_dir, article_save_dir, sanitize_dir_name
from wxarchive.scrapers.comment_fetcher import fetch_comments

logger = logging.getLogger(__name__)

_HINT_ANTI_BOT = "请增大下载间隔 (--delay) 或缩小下载范围后再试"


def _fragment(markup: str):
    return BeautifulSoup(markup, "html.parser").find(True)


def _extract_or_raise(article: Article, raw_html: str) -> ExtractionResult:
    result = extract(raw_html)
    if result is None:
        raise ExtractionError(f"【{article.title or article.content_url}】提取正文失败")
    return result


class ArticleDownloader:
    """Downloads one article at a time against a shared RunContext."""

    def __init__(self, ctx: RunContext):
        self.ctx = ctx

    def _account_name(self, article: Article) -> str | None:
        name = article.meta.account_display_name if article.meta else None
        biz = article.session.biz if article.session else None
        if name and biz:
            self.ctx.account_names[biz] = name
        if not name and biz:
            name = self.ctx.account_names.get(biz)
        return name

    def _exists(self, article: Article) -> bool:
        save_dir = article_save_dir(self.ctx.option, article, self._account_name(article))
        return os.path.isdir(save_dir)

    async def _fetch_html(self, article: Article) -> str | None:
        ctx = self.ctx
        session = article.session
        params = {"key": session.key, "uin": session.uin} if session is not None else None
        try:
            resp = await get(ctx.http, article.content_url, params=params, headers=session_headers(session))
        except requests.RequestException as e:
            logger.warning("[ARTICLE] Fetch failed %s: %s", article.content_url, e)
            ctx.emit(EventKind.FAIL, f"【{article.title or article.content_url}】下载失败：{e}")
            return None
        if resp.status_code != 200:
            logger.warning("[ARTICLE] Fetch failed %s: HTTP %s", article.content_url, resp.status_code)
            ctx.emit(EventKind.FAIL, f"【{article.title or article.content_url}】下载失败，状态码：{resp.status_code}")
            return None
        return resp.text

    async def _fetch_and_extract(self, article: Article) -> ExtractionResult | None:
        """
        抓取并提取，验证页按固定冷却时间重试 (Fetch + extract with anti-bot retry).

        同一 URL 的失败次数记在 ctx.failure_counts；超过上限抛 AntiBotAbort，
        即总请求次数为 max_retries + 1。

        Raises:
            AntiBotAbort: 验证页次数超过上限
            ExtractionError: 三种页面结构都无法解析
        """
        ctx = self.ctx
        url = article.content_url
        while True:
            await ctx.throttle()
            raw_html = await self._fetch_html(article)
            if raw_html is None:
                return None

            result = _extract_or_raise(article, raw_html)
            if result.title.strip() != CHALLENGE_MARKER:
                article.html = raw_html
                return result

            count = ctx.failure_counts.get(url, 0) + 1
            ctx.failure_counts[url] = count
            if count > ctx.max_retries:
                raise AntiBotAbort(f"【{article.title or url}】连续 {count} 次触发微信验证，终止下载", hint=_HINT_ANTI_BOT)
            logger.warning("[ARTICLE] Challenge page for %s, retry %d/%d in %.0fs", url, count, ctx.max_retries, ctx.cooldown)
            ctx.emit(EventKind.FAIL, f"触发微信验证，{ctx.cooldown:.0f} 秒后第 {count} 次重试：{article.title or url}")
            await ctx.sleep(ctx.cooldown)

    def _decorate(self, soup: BeautifulSoup, article: Article) -> None:
        """正文顶部依次放入：标题、原文链接、元数据横幅"""
        option = self.ctx.option
        page = soup.find(id=PAGE_ID) or soup
        if option.save_meta and article.meta is not None:
            page.insert(0, _fragment(META_BANNER_TEMPLATE.render(meta=article.meta)))
        if option.source_link:
            page.insert(0, _fragment(SOURCE_LINK_TEMPLATE.render(url=article.content_url, title=article.title)))
        page.insert(0, _fragment(TITLE_TEMPLATE.render(title=article.title)))

    async def _run_sinks(self, article: Article, page_html: str, save_dir: str, save_to_db: bool) -> tuple[int, list[str]]:
        """Run every enabled sink concurrently; one failing sink never stops the others."""
        ctx = self.ctx
        option = ctx.option
        sinks = []
        if option.markdown:
            sinks.append(("markdown", write_markdown(ctx, article, page_html, save_dir)))
        if option.html:
            sinks.append(("html", write_html(ctx, article, page_html, save_dir)))
        if option.pdf:
            sinks.append(("pdf", write_pdf_source(ctx, article, page_html, save_dir)))
        if option.db and save_to_db and ctx.store is not None:
            sinks.append(("db", save_article(ctx, article, page_html)))

        results = await asyncio.gather(*(job for _, job in sinks), return_exceptions=True)
        errors = []
        for (name, _), result in zip(sinks, results):
            if isinstance(result, Exception):
                logger.error("[SINK] %s failed for %s: %s", name, article.title, result)
                ctx.emit(EventKind.FAIL, f"【{article.title}】{name} 输出失败：{result}")
                errors.append(f"{name}: {result}")
        return len(sinks), errors

    async def download(self, article: Article, save_to_db: bool = True) -> DownloadResult:
        """
        下载单篇文章 (Download one article through the full pipeline).

        Args:
            article: 列表存根，或带 html 的数据库文章（不再联网抓取）
            save_to_db: 数据库来源的批量下载不回写数据库

        Returns:
            DownloadResult

        Raises:
            AntiBotAbort: 验证页重试超过上限，整个批次需要终止
        """
        ctx = self.ctx
        option = ctx.option
        url = article.content_url

        if ctx.aborted:
            logger.info("[ARTICLE] Run aborted, not starting %s", url)
            return DownloadResult(DownloadOutcome.SKIPPED)

        if article.title and option.skip_existing and self._exists(article):
            ctx.emit(EventKind.SUCCESS, f"【{sanitize_dir_name(article.title)}】已存在，跳过此文章")
            return DownloadResult(DownloadOutcome.SKIPPED)

        try:
            if article.html:
                result = _extract_or_raise(article, article.html)
            else:
                result = await self._fetch_and_extract(article)
        except ExtractionError as e:
            logger.warning("[ARTICLE] Extraction failed: %s", url)
            ctx.emit(EventKind.FAIL, e.message)
            return DownloadResult(DownloadOutcome.FAILED, errors=["extraction failed"])
        if result is None:
            return DownloadResult(DownloadOutcome.FAILED, errors=["fetch failed"])

        if not article.title:
            article.title = result.title
        if not article.author:
            article.author = result.byline
        if not article.datetime:
            article.datetime = match_create_time(article.html)
        article.file_name = article.file_name or sanitize_dir_name(article.title)

        article.meta = extract_metadata(article.html, article.copyright_stat)
        account_name = self._account_name(article)

        reason = is_filtered(ctx.filter_rule, article)
        if reason:
            ctx.emit(EventKind.SUCCESS, f"【{article.title}】{reason}，已过滤")
            return DownloadResult(DownloadOutcome.FILTERED)

        save_dir = article_save_dir(option, article, account_name)
        if option.skip_existing and os.path.isdir(save_dir):
            ctx.emit(EventKind.SUCCESS, f"【{article.file_name}】已存在，跳过此文章")
            return DownloadResult(DownloadOutcome.SKIPPED, save_dir=save_dir)

        if option.comments and article.comments is None:
            article.comments, article.replies_by_comment_id = await fetch_comments(ctx, article)

        cache_dir = article_cache_dir(option, article)
        os.makedirs(save_dir, exist_ok=True)
        os.makedirs(cache_dir, exist_ok=True)

        soup = BeautifulSoup(result.html, "html.parser")
        img_count = await materialize(ctx, soup, save_dir, cache_dir)
        self._decorate(soup, article)

        sink_count, errors = await self._run_sinks(article, str(soup), save_dir, save_to_db)
        outcome = DownloadOutcome.FAILED if sink_count and len(errors) == sink_count else DownloadOutcome.COMPLETED

        logger.info("[ARTICLE] Done %s (%d images, %d sink errors)", article.title, img_count, len(errors))
        ctx.emit(
            EventKind.SUCCESS,
            f"【{article.title}】下载完成，共{img_count}张图，url：{url}",
            {"img_count": img_count, "url": url, "save_dir": save_dir},
        )
        return DownloadResult(outcome, img_count=img_count, save_dir=save_dir, errors=errors)
