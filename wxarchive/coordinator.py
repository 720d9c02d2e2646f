"""
批量下载调度 (Batch coordinator)

四种运行模式：单篇、公号列表批量、数据库批量、选中文章批量。
持有 RunContext，负责并发节奏、数据库连接的开关、致命错误收尾与状态事件。
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError

from config import DownloadOption, resolve_date_range
from wxarchive.context import EventHandler, RunContext
from wxarchive.delivery.db_sink import ArticleStore, row_to_article
from wxarchive.downloader import ArticleDownloader
from wxarchive.errors import AntiBotAbort, ArchiveError, DatabaseError, FeedError
from wxarchive.filters.rule_filter import parse_filter_rule
from wxarchive.http import build_http_session
from wxarchive.models import Article, DownloadOutcome, EventKind, Session
from wxarchive.scrapers.feed_crawler import crawl

logger = logging.getLogger(__name__)

# 致命错误的补救建议 (Remediation hints per fatal category)
REMEDIATION_HINTS = {
    "ANTI_BOT": ["增大下载间隔 (--delay)", "缩小下载范围 (--scope / --start-date)", "降低单批数量或改用单线程模式"],
    "FEED": ["重新打开该公号任意文章以刷新会话", "检查网络连接"],
    "DB": ["检查数据库地址、端口、用户名和密码", "确认数据库已启动且可从本机访问"],
}


@dataclass
class ArticleFailure:
    """单篇失败记录 (Per-article failure record)."""
    url: str
    title: str
    error_type: str     # e.g. "ANTI_BOT", "EXTRACT", "SINK", "RUNTIME"
    message: str


@dataclass
class RunResult:
    """
    运行结果 (Run result)
    用于统计与生成运行摘要。
    """
    mode: str
    success: bool = False
    exit_reason: str = ""
    duration_seconds: float = 0.0
    total: int = 0          # 进入下载的文章数
    completed: int = 0
    skipped: int = 0
    filtered: int = 0
    failed: int = 0
    img_count: int = 0
    hints: list[str] = field(default_factory=list)
    failures: list[ArticleFailure] = field(default_factory=list)


class BatchCoordinator:
    """
    运行调度器 (Top-level run state machine).

    single 模式逐篇顺序下载；multi 模式每次并发 batch_limit 篇，整批完成后再放入下一批。
    """

    def __init__(
        self,
        option: DownloadOption,
        http=None,
        on_event: EventHandler | None = None,
        store_factory: Callable[[DownloadOption], ArticleStore] | None = None,
        sleep: Callable[[float], Awaitable] | None = None,
        **ctx_overrides,
    ):
        self.option = option
        self.ctx = RunContext(
            option=option,
            http=http if http is not None else build_http_session(),
            on_event=on_event,
            filter_rule=parse_filter_rule(option.filter_rule),
            sleep=sleep or asyncio.sleep,
            **ctx_overrides,
        )
        self.downloader = ArticleDownloader(self.ctx)
        self._store_factory = store_factory or ArticleStore.from_option

    def complete_pdf(self, pdf_id: str) -> bool:
        """外部渲染完成回执 (Shell acknowledgment for a PDF_REQUEST). Thread-safe."""
        done = self.ctx.pdf_bridge.complete(pdf_id)
        if done:
            logger.debug("[RUN] %s %s", EventKind.PDF_DONE.value, pdf_id)
        return done

    # --- resources ---

    async def _open_store(self, required: bool) -> None:
        """
        连接数据库 (Open the run's shared database handle).
        数据库来源时连接失败是致命错误；仅作为输出时降级为警告并关闭数据库输出。
        """
        if not (required or self.option.requires_db):
            return
        store = None
        try:
            store = self._store_factory(self.option)
            await asyncio.to_thread(store.connect)
        except (DatabaseError, SQLAlchemyError, ImportError) as e:
            if store is not None:
                store.close()
            error = e if isinstance(e, DatabaseError) else DatabaseError(f"数据库初始化失败：{e}")
            if required:
                raise error
            logger.warning("[DB] %s; database sink disabled for this run", error.message)
            self.ctx.emit(EventKind.FAIL, f"{error.message}，本次不保存到数据库")
            return
        self.ctx.store = store
        self.ctx.emit(EventKind.SUCCESS, "数据库连接成功")

    async def _close_store(self) -> None:
        if self.ctx.store is not None:
            await asyncio.to_thread(self.ctx.store.close)
            self.ctx.store = None

    # --- per-article ---

    async def _download_one(self, article: Article, result: RunResult, save_to_db: bool = True) -> None:
        result.total += 1
        title = article.title or ""
        try:
            outcome = await self.downloader.download(article, save_to_db=save_to_db)
        except AntiBotAbort as e:
            if self.ctx.fatal is None:
                self.ctx.fatal = e
            result.failed += 1
            result.failures.append(ArticleFailure(article.content_url, title, e.category, e.message))
            return
        except Exception as e:
            logger.exception("[RUN] Unexpected error for %s", article.content_url)
            self.ctx.emit(EventKind.FAIL, f"【{title or article.content_url}】下载异常：{e}")
            result.failed += 1
            result.failures.append(ArticleFailure(article.content_url, title, "RUNTIME", str(e)))
            return

        result.img_count += outcome.img_count
        if outcome.outcome == DownloadOutcome.COMPLETED:
            result.completed += 1
        elif outcome.outcome == DownloadOutcome.SKIPPED:
            result.skipped += 1
        elif outcome.outcome == DownloadOutcome.FILTERED:
            result.filtered += 1
        else:
            result.failed += 1
        if outcome.errors:
            error_type = "EXTRACT" if outcome.save_dir is None else "SINK"
            result.failures.append(
                ArticleFailure(article.content_url, article.title or title, error_type, "; ".join(outcome.errors))
            )

    async def _run_batch(self, articles: list[Article], result: RunResult, save_to_db: bool = True) -> None:
        """下载一批文章；出现致命错误后不再放入新文章，已开始的任务正常结束。"""
        if self.option.thread_mode == "single":
            for article in articles:
                if self.ctx.aborted:
                    break
                await self._download_one(article, result, save_to_db)
            return

        limit = max(self.option.batch_limit, 1)
        for i in range(0, len(articles), limit):
            if self.ctx.aborted:
                break
            chunk = articles[i:i + limit]
            await asyncio.gather(*(self._download_one(a, result, save_to_db) for a in chunk))

    # --- terminal reporting ---

    def _finish(self, result: RunResult, started: float, done_kind: EventKind) -> RunResult:
        result.duration_seconds = round(time.perf_counter() - started, 2)
        fatal = self.ctx.fatal
        if fatal is not None:
            result.success = False
            result.exit_reason = f"{fatal.category}: {fatal.message}"
            result.hints = ([fatal.hint] if fatal.hint else []) + REMEDIATION_HINTS.get(fatal.category, [])
            logger.error("[RUN] Aborted: %s", result.exit_reason, extra={"stage": result.mode})
            self.ctx.emit(EventKind.FAIL, f"{fatal.message}。建议：{'；'.join(result.hints)}", {"hints": result.hints})
        else:
            result.success = True
            result.exit_reason = "completed"

        if done_kind == EventKind.BATCH_DONE:
            message = f"批量下载完成，共{result.total}篇文章，耗时{result.duration_seconds:.2f}秒"
        else:
            message = f"下载完成，耗时{result.duration_seconds:.2f}秒"
        logger.info(
            "[RUN] %s | total=%d completed=%d skipped=%d filtered=%d failed=%d images=%d",
            result.mode, result.total, result.completed, result.skipped, result.filtered, result.failed,
            result.img_count,
            extra={"stage": result.mode},
        )
        self.ctx.emit(done_kind, message, result)
        self.ctx.emit(EventKind.CLOSE)
        return result

    def _record_fatal(self, error: ArchiveError) -> None:
        if self.ctx.fatal is None:
            self.ctx.fatal = error

    # --- run modes ---

    async def one(self, url: str, session: Session | None = None) -> RunResult:
        """下载单篇文章 (Single-URL mode)."""
        result = RunResult(mode="one")
        started = time.perf_counter()
        self.ctx.emit(EventKind.START, url)
        try:
            await self._open_store(required=False)
            await self._download_one(Article(content_url=url, session=session), result)
        finally:
            await self._close_store()
        return self._finish(result, started, EventKind.ARTICLE_DONE)

    async def batch_from_feed(self, session: Session) -> RunResult:
        """按公号文章列表批量下载 (Feed-driven batch)."""
        result = RunResult(mode="feed")
        started = time.perf_counter()
        self.ctx.emit(EventKind.START, session.biz)
        date_range = resolve_date_range(self.option)
        logger.info("[RUN] Feed batch %s .. %s", *date_range)

        async def drain(stubs: list[Article]) -> None:
            await self._run_batch(stubs, result)

        try:
            await self._open_store(required=False)
            await crawl(self.ctx, session, date_range, drain)
        except FeedError as e:
            logger.error("[FEED] %s", e.message)
            self._record_fatal(e)
        finally:
            await self._close_store()
        return self._finish(result, started, EventKind.BATCH_DONE)

    async def batch_from_database(self) -> RunResult:
        """从数据库中已保存的文章重新生成输出，不联网、不回写 (Database-driven batch)."""
        result = RunResult(mode="db")
        started = time.perf_counter()
        self.ctx.emit(EventKind.START, "db")
        start, end = resolve_date_range(self.option)
        try:
            await self._open_store(required=True)
            rows = await asyncio.to_thread(self.ctx.store.select_range, start, end)
            logger.info("[DB] %d rows between %s and %s", len(rows), start, end)
            articles = [row_to_article(row, self.option) for row in rows]
            await self._run_batch(articles, result, save_to_db=False)
        except DatabaseError as e:
            logger.error("[DB] %s", e.message)
            self._record_fatal(e)
        finally:
            await self._close_store()
        return self._finish(result, started, EventKind.BATCH_DONE)

    async def batch_from_selection(self, urls: list[str], session: Session | None = None) -> RunResult:
        """下载预先选中的文章 (Pre-selected URL batch)."""
        result = RunResult(mode="select")
        started = time.perf_counter()
        self.ctx.emit(EventKind.START, f"{len(urls)} urls")
        articles = [Article(content_url=url, session=session) for url in dict.fromkeys(urls)]
        try:
            await self._open_store(required=False)
            await self._run_batch(articles, result)
        finally:
            await self._close_store()
        return self._finish(result, started, EventKind.BATCH_DONE)
