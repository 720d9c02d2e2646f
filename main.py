#!/usr/bin/env python3
"""命令行入口: 抓取 -> 提取 -> 本地化 -> 输出 (Crawl -> Extract -> Localize -> Write)."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
import time
import traceback
from dataclasses import asdict
from datetime import date

from config import load_download_option, validate_config
from wxarchive.coordinator import ArticleFailure, BatchCoordinator, RunResult
from wxarchive.models import EventKind, PdfInfo, StatusEvent
from wxarchive.session import load_session

logger = logging.getLogger(__name__)

FORMATS = ("html", "markdown", "pdf", "db")


class JsonFormatter(logging.Formatter):
    """
    简单的 JSON 日志格式化器 (Simple JSON Log Formatter)
    用于生成机器可读的运行日志。
    """

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if hasattr(record, "event"):
            payload["event"] = getattr(record, "event")
        if hasattr(record, "stage"):
            payload["stage"] = getattr(record, "stage")
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(log_format: str) -> None:
    """配置日志系统 (Configure Logging)"""
    handler = logging.StreamHandler()
    if log_format == "json":
        handler.setFormatter(JsonFormatter(datefmt="%Y-%m-%dT%H:%M:%S"))
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s [%(levelname)s] %(message)s",
                datefmt="%H:%M:%S",
            )
        )
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.INFO)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """解析命令行参数 (Parse Command Line Arguments)"""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", help="JSON 配置文件，支持桌面版的 camelCase 字段 (Download option file)")
    common.add_argument("--save-path", help="文章保存目录 (default: WXA_SAVE_PATH or output)")
    common.add_argument("--thread-mode", choices=["single", "multi"], help="single: 逐篇顺序下载; multi: 分批并发")
    common.add_argument("--delay", type=float, help="每次请求文章前的间隔秒数")
    common.add_argument("--batch-limit", type=int, help="单批并发数量 (Default: 10)")
    common.add_argument(
        "--format",
        action="append",
        choices=FORMATS,
        help="输出格式，可重复指定；未指定时使用配置文件 (html, markdown, pdf, db)",
    )
    common.add_argument(
        "--scope",
        choices=["one", "seven", "month", "diy", "today", "7d", "30d", "custom"],
        help="下载范围: 当天 / 7 天 / 30 天 / 自定义",
    )
    common.add_argument("--start-date", help="自定义范围开始日期 YYYY-MM-DD")
    common.add_argument("--end-date", help="自定义范围结束日期 YYYY-MM-DD")
    common.add_argument("--comments", action="store_true", default=None, help="下载精选留言")
    common.add_argument("--replies", action="store_true", default=None, help="下载留言的全部回复")
    common.add_argument("--output-dir", default="output", help="运行摘要输出目录 (default: output)")
    common.add_argument(
        "--pdf-renderer",
        choices=["playwright", "none"],
        default="playwright",
        help="PDF 渲染方式：playwright 无头浏览器，或 none 只保留 pdf.html",
    )
    common.add_argument(
        "--strict",
        action="store_true",
        help="严格模式：任何文章失败都返回非零退出码 (Fail run on any article error)",
    )
    common.add_argument("--log-format", choices=["text", "json"], default="text", help="日志格式 (text|json)")

    parser = argparse.ArgumentParser(description="WeChat official account article archiver")
    sub = parser.add_subparsers(dest="command", required=True)

    one = sub.add_parser("one", parents=[common], help="下载单篇文章")
    one.add_argument("url")
    one.add_argument("--session", help="会话 JSON（下载留言时需要）")

    feed = sub.add_parser("feed", parents=[common], help="按公号文章列表批量下载")
    feed.add_argument("--session", required=True, help="会话 JSON：凭据对象或截获的 {url, headers}")

    sub.add_parser("db", parents=[common], help="从数据库重新生成文章")

    select = sub.add_parser("select", parents=[common], help="批量下载指定的文章")
    select.add_argument("urls", nargs="*")
    select.add_argument("--session", help="会话 JSON，应用到每一篇文章；截获的文章页请求会追加其文章地址")

    return parser.parse_args(argv)


def option_overrides(args: argparse.Namespace) -> dict:
    """命令行参数 -> DownloadOption 字段 (CLI flags that override the option file)."""
    overrides = {
        "save_path": args.save_path,
        "thread_mode": args.thread_mode,
        "delay": args.delay,
        "batch_limit": args.batch_limit,
        "date_scope": args.scope,
        "start_date": args.start_date,
        "end_date": args.end_date,
        "comments": args.comments,
        "replies": args.replies,
    }
    if args.replies:
        overrides["comments"] = True
    if (args.start_date or args.end_date) and not args.scope:
        overrides["date_scope"] = "diy"
    if args.format:
        for name in FORMATS:
            overrides[name] = name in args.format
    if args.command == "db":
        overrides["source"] = "db"
    return overrides


class ShellEvents:
    """
    外部壳 (The CLI side of the status protocol).
    把状态事件写成日志；收到 PDF_REQUEST 时渲染并回传 PDF_DONE。
    """

    def __init__(self, renderer=None):
        self.renderer = renderer
        self.coordinator: BatchCoordinator | None = None
        self._tasks: set[asyncio.Task] = set()

    def __call__(self, event: StatusEvent) -> None:
        if event.kind == EventKind.PDF_REQUEST:
            task = asyncio.get_running_loop().create_task(self._render(event.payload))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        elif event.kind == EventKind.FAIL:
            logger.warning("[STATUS] %s", event.message, extra={"event": event.kind.value})
        elif event.kind in (EventKind.START, EventKind.CLOSE):
            logger.debug("[STATUS] %s %s", event.kind.value, event.message)
        else:
            logger.info("[STATUS] %s", event.message, extra={"event": event.kind.value})

    async def _render(self, info: PdfInfo) -> None:
        if self.renderer is not None:
            try:
                await self.renderer.render(info)
            except Exception as e:
                logger.error("[PDF] Render failed for %s: %s", info.title, e)
        if self.coordinator is not None:
            self.coordinator.complete_pdf(info.id)


async def run_archive(args: argparse.Namespace, option, session) -> RunResult:
    """按子命令运行一次下载 (Run one archive job for the selected subcommand)."""
    renderer = None
    if option.pdf and args.pdf_renderer == "playwright":
        from wxarchive.delivery.pdf_renderer import PlaywrightPdfRenderer

        renderer = PlaywrightPdfRenderer()

    shell = ShellEvents(renderer)
    coordinator = BatchCoordinator(option, on_event=shell)
    shell.coordinator = coordinator
    try:
        if args.command == "one":
            return await coordinator.one(args.url, session)
        if args.command == "feed":
            return await coordinator.batch_from_feed(session)
        if args.command == "db":
            return await coordinator.batch_from_database()
        return await coordinator.batch_from_selection(args.urls, session)
    finally:
        if renderer is not None:
            await renderer.close()


def _write_json(path: str, data: dict) -> None:
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(data, handle, ensure_ascii=False, indent=2)


def _emit_summary(result: RunResult, output_dir: str, strict: bool) -> None:
    """输出运行摘要 (Emit Run Summary)"""
    os.makedirs(output_dir, exist_ok=True)
    today = date.today().strftime("%Y-%m-%d")
    run_id = f"{today}-{int(time.time())}"
    summary_path = os.path.join(output_dir, f"run-summary-{today}.json")
    _write_json(summary_path, {"run_id": run_id, "date": today, "strict": strict, **asdict(result)})
    logger.info("[SUMMARY] Wrote run summary: %s", summary_path)

    if not result.success or result.failures:
        error_path = os.path.join(output_dir, f"error-{today}.json")
        _write_json(
            error_path,
            {
                "run_id": run_id,
                "date": today,
                "exit_reason": result.exit_reason,
                "hints": result.hints,
                "failures": [asdict(item) for item in result.failures],
            },
        )
        logger.info("[SUMMARY] Wrote error report: %s", error_path)


def main(argv: list[str] | None = None) -> int:
    """程序入口点：解析参数，运行下载，处理异常。"""
    args = parse_args(argv)
    configure_logging(args.log_format)

    try:
        option = load_download_option(args.config, **option_overrides(args))
    except (OSError, ValueError) as exc:
        logger.error("Invalid configuration: %s", exc)
        return 1

    ok, errors = validate_config(option, mode=args.command)
    if not ok:
        for error in errors:
            logger.error("[CONFIG] %s", error)
        return 1

    session = None
    captured_url = None
    session_path = getattr(args, "session", None)
    if session_path:
        try:
            session, captured_url = load_session(session_path)
        except (OSError, ValueError) as exc:
            logger.error("Cannot read session file %s: %s", session_path, exc)
            return 1
        if session is None:
            logger.error("Session file %s does not contain usable credentials", session_path)
            return 1

    if args.command == "select":
        if captured_url and captured_url not in args.urls:
            args.urls.append(captured_url)
        if not args.urls:
            logger.error("[CONFIG] select needs at least one URL or a captured article session")
            return 1

    try:
        result = asyncio.run(run_archive(args, option, session))
    except Exception as exc:
        logger.critical("Run failed unexpectedly: %s", exc)
        traceback.print_exc()
        crash = RunResult(mode=args.command, success=False, exit_reason="unhandled exception")
        crash.failures.append(ArticleFailure(url="", title="", error_type="RUNTIME", message=str(exc)))
        _emit_summary(crash, args.output_dir, args.strict)
        return 1

    _emit_summary(result, args.output_dir, args.strict)
    if result.success and not (args.strict and (result.failed or result.failures)):
        logger.info(
            "Run complete | mode=%s total=%s completed=%s skipped=%s filtered=%s failed=%s duration=%.2fs",
            result.mode,
            result.total,
            result.completed,
            result.skipped,
            result.filtered,
            result.failed,
            result.duration_seconds,
        )
        return 0

    logger.error(
        "Run ended with issues | reason=%s strict=%s failures=%s",
        result.exit_reason,
        args.strict,
        len(result.failures),
    )
    return 1


if __name__ == "__main__":
    sys.exit(main())
