from __future__ import annotations

import asyncio
import json
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

import main
from wxarchive.coordinator import ArticleFailure, RunResult
from wxarchive.models import EventKind, PdfInfo, StatusEvent


def test_parse_args_subcommands():
    args = main.parse_args(["one", "https://mp.weixin.qq.com/s/abc", "--format", "markdown", "--format", "pdf"])
    assert args.command == "one"
    assert args.url == "https://mp.weixin.qq.com/s/abc"
    assert args.format == ["markdown", "pdf"]

    args = main.parse_args(["select", "u1", "u2", "--thread-mode", "single"])
    assert args.urls == ["u1", "u2"]
    assert args.thread_mode == "single"

    with pytest.raises(SystemExit):
        main.parse_args(["feed"])


def test_option_overrides_from_flags():
    args = main.parse_args(
        ["feed", "--session", "s.json", "--format", "html", "--replies", "--start-date", "2024-01-01", "--delay", "2"]
    )
    overrides = main.option_overrides(args)

    assert overrides["html"] is True
    assert overrides["markdown"] is False
    assert overrides["pdf"] is False
    assert overrides["db"] is False
    assert overrides["comments"] is True
    assert overrides["replies"] is True
    assert overrides["date_scope"] == "diy"
    assert overrides["delay"] == 2.0


def test_option_overrides_leave_config_alone_without_flags():
    overrides = main.option_overrides(main.parse_args(["db"]))
    assert overrides["source"] == "db"
    assert "html" not in overrides
    assert overrides["comments"] is None


def test_main_rejects_invalid_configuration(tmp_path):
    code = main.main(["one", "https://mp.weixin.qq.com/s/abc", "--batch-limit", "0", "--output-dir", str(tmp_path)])
    assert code == 1
    assert not list(tmp_path.iterdir())


def test_main_writes_run_summary(monkeypatch, tmp_path):
    async def fake_run_archive(args, option, session):
        assert option.save_path == str(tmp_path / "articles")
        return RunResult(mode="one", success=True, exit_reason="completed", total=1, completed=1)

    monkeypatch.setattr(main, "run_archive", fake_run_archive)

    code = main.main(
        [
            "one",
            "https://mp.weixin.qq.com/s/abc",
            "--save-path",
            str(tmp_path / "articles"),
            "--output-dir",
            str(tmp_path),
        ]
    )

    assert code == 0
    [summary] = list(tmp_path.glob("run-summary-*.json"))
    data = json.loads(summary.read_text(encoding="utf-8"))
    assert data["mode"] == "one"
    assert data["completed"] == 1
    assert not list(tmp_path.glob("error-*.json"))


def test_strict_mode_fails_on_article_errors(monkeypatch, tmp_path):
    async def fake_run_archive(args, option, session):
        result = RunResult(mode="select", success=True, exit_reason="completed", total=2, completed=1, failed=1)
        result.failures.append(ArticleFailure("u2", "t", "EXTRACT", "extraction failed"))
        return result

    monkeypatch.setattr(main, "run_archive", fake_run_archive)
    argv = ["select", "u1", "u2", "--output-dir", str(tmp_path)]

    assert main.main(argv) == 0
    assert main.main(argv + ["--strict"]) == 1
    [error_report] = list(tmp_path.glob("error-*.json"))
    assert json.loads(error_report.read_text(encoding="utf-8"))["failures"][0]["url"] == "u2"


def test_feed_requires_a_usable_session_file(tmp_path):
    session_file = tmp_path / "session.json"
    session_file.write_text(json.dumps({"biz": "MzA"}), encoding="utf-8")

    assert main.main(["feed", "--session", str(session_file), "--output-dir", str(tmp_path / "out")]) == 1


def test_shell_renders_pdf_and_acknowledges():
    renderer = MagicMock()
    renderer.render = AsyncMock()
    shell = main.ShellEvents(renderer)
    shell.coordinator = MagicMock()
    info = PdfInfo(id="abc", title="t", save_path="/tmp/x", file_name="t")

    async def scenario():
        shell(StatusEvent(EventKind.PDF_REQUEST, "保存pdf", info))
        await asyncio.gather(*shell._tasks)

    asyncio.run(scenario())

    renderer.render.assert_awaited_once_with(info)
    shell.coordinator.complete_pdf.assert_called_once_with("abc")


def test_shell_acknowledges_even_when_rendering_fails():
    renderer = MagicMock()
    renderer.render = AsyncMock(side_effect=RuntimeError("chromium missing"))
    shell = main.ShellEvents(renderer)
    shell.coordinator = MagicMock()

    async def scenario():
        shell(StatusEvent(EventKind.PDF_REQUEST, "保存pdf", PdfInfo(id="x1", title="t", save_path="/tmp")))
        await asyncio.gather(*shell._tasks)

    asyncio.run(scenario())
    shell.coordinator.complete_pdf.assert_called_once_with("x1")


def test_json_formatter_carries_event_and_stage():
    record = logging.makeLogRecord(
        {"name": "wxarchive.coordinator", "levelname": "INFO", "msg": "[RUN] %s", "args": ("feed",), "stage": "feed"}
    )
    payload = json.loads(main.JsonFormatter().format(record))

    assert payload["message"] == "[RUN] feed"
    assert payload["stage"] == "feed"
    assert "event" not in payload


def test_select_uses_url_from_captured_article_session(monkeypatch, tmp_path):
    referer = "https://mp.weixin.qq.com/s?__biz=MzA&mid=2650&idx=1&sn=abc&chksm=ff01&key=k&uin=u"
    session_file = tmp_path / "session.json"
    session_file.write_text(
        json.dumps({"url": "https://mp.weixin.qq.com/mp/geticon?x=1", "headers": {"Referer": referer}}),
        encoding="utf-8",
    )
    seen = {}

    async def fake_run_archive(args, option, session):
        seen["urls"] = list(args.urls)
        seen["session"] = session
        return RunResult(mode="select", success=True, exit_reason="completed", total=1, completed=1)

    monkeypatch.setattr(main, "run_archive", fake_run_archive)

    code = main.main(["select", "--session", str(session_file), "--output-dir", str(tmp_path / "out")])

    assert code == 0
    [url] = seen["urls"]
    assert "__biz=MzA&mid=2650&idx=1&sn=abc" in url
    assert seen["session"].key == "k"


def test_select_without_urls_or_capture_is_rejected(tmp_path):
    assert main.main(["select", "--output-dir", str(tmp_path)]) == 1
