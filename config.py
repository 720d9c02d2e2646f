"""Central configuration for the WeChat article archiver."""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, fields
from datetime import datetime, timedelta

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


# --- Paths ---
SAVE_PATH = os.getenv("WXA_SAVE_PATH", "output")
TMP_PATH = os.getenv("WXA_TMP_PATH", os.path.join(tempfile.gettempdir(), "wxarchive-cache"))

# --- Database Config ---
DB_URL = os.getenv("WXA_DB_URL", "")
DB_HOST = os.getenv("WXA_DB_HOST", "")

_db_port = os.getenv("WXA_DB_PORT")
DB_PORT = int(_db_port) if _db_port else 3306

DB_USER = os.getenv("WXA_DB_USER", "")
DB_PASSWORD = os.getenv("WXA_DB_PASSWORD", "")
DB_NAME = os.getenv("WXA_DB_NAME", "wechat")
DB_TABLE = os.getenv("WXA_DB_TABLE", "wechat_article")

# --- Anti-bot Config ---
# 验证页标题 (Title served instead of content when upstream wants a captcha)
CHALLENGE_MARKER = "环境异常"

_max_retries = os.getenv("WXA_ANTI_BOT_MAX_RETRIES")
ANTI_BOT_MAX_RETRIES = int(_max_retries) if _max_retries else 3

_cooldown = os.getenv("WXA_ANTI_BOT_COOLDOWN_SECONDS")
ANTI_BOT_COOLDOWN_SECONDS = float(_cooldown) if _cooldown else 30.0

_pdf_timeout = os.getenv("WXA_PDF_TIMEOUT_SECONDS")
PDF_TIMEOUT_SECONDS = float(_pdf_timeout) if _pdf_timeout else 600.0

HTTP_TIMEOUT_SECONDS = 15

# --- Upstream Endpoints ---
LIST_URL = "https://mp.weixin.qq.com/mp/profile_ext?action=getmsg&f=json&count=10&is_ok=1"
COMMENT_LIST_URL = "https://mp.weixin.qq.com/mp/appmsg_comment?action=getcomment&offset=0&limit=100&f=json"
COMMENT_REPLY_URL = (
    "https://mp.weixin.qq.com/mp/appmsg_comment"
    "?action=getcommentreply&offset=0&limit=100&is_first=1&f=json"
)
SONG_INFO_URL = "https://mp.weixin.qq.com/mp/qqmusic?action=get_song_info"
VOICE_URL = "https://res.wx.qq.com/voice/getvoice"

DATE_SCOPES = ("one", "seven", "month", "diy")
THREAD_MODES = ("single", "multi")
SOURCES = ("web", "db")


# camelCase keys written by the desktop settings store -> dataclass fields
_LEGACY_KEYS = {
    "dlSource": "source",
    "threadType": "thread_mode",
    "dlInterval": "delay",
    "batchLimit": "batch_limit",
    "dlHtml": "html",
    "dlMarkdown": "markdown",
    "dlPdf": "pdf",
    "dlMysql": "db",
    "dlAudio": "audio",
    "dlImg": "img",
    "skinExist": "skip_existing",
    "saveMeta": "save_meta",
    "classifyDir": "classify_dir",
    "sourceUrl": "source_link",
    "dlComment": "comments",
    "dlCommentReply": "replies",
    "dlScpoe": "date_scope",
    "startDate": "start_date",
    "endDate": "end_date",
    "savePath": "save_path",
    "tmpPath": "tmp_path",
    "mysqlHost": "db_host",
    "mysqlPort": "db_port",
    "mysqlUser": "db_user",
    "mysqlPassword": "db_password",
    "cleanMarkdown": "clean_markdown",
    "filterRule": "filter_rule",
}

# Aliases accepted for the date scope (today/7-day/30-day/custom)
_SCOPE_ALIASES = {
    "today": "one",
    "7d": "seven",
    "7-day": "seven",
    "30d": "month",
    "30-day": "month",
    "custom": "diy",
}


@dataclass(frozen=True)
class DownloadOption:
    """
    单次运行的下载配置快照 (Run-wide download configuration snapshot).
    运行期间不可变；所有字段都有默认值。
    """
    source: str = "web"              # "web" | "db"
    thread_mode: str = "multi"       # "single" | "multi"
    delay: float = 0.0               # 每次请求文章前的间隔（秒）
    batch_limit: int = 10            # 单批并发数量
    html: bool = True
    markdown: bool = True
    pdf: bool = False
    db: bool = False
    audio: bool = True
    img: bool = True
    skip_existing: bool = True
    save_meta: bool = True
    classify_dir: bool = False       # 按公号名归类
    source_link: bool = True         # 添加原文链接
    comments: bool = False
    replies: bool = False
    date_scope: str = "seven"        # "one" | "seven" | "month" | "diy"
    start_date: str = ""
    end_date: str = ""
    save_path: str = SAVE_PATH
    tmp_path: str = TMP_PATH
    db_url: str = DB_URL
    db_host: str = DB_HOST
    db_port: int = DB_PORT
    db_user: str = DB_USER
    db_password: str = DB_PASSWORD
    db_name: str = DB_NAME
    db_table: str = DB_TABLE
    clean_markdown: bool = False
    filter_rule: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "DownloadOption":
        """Build an option from snake_case or legacy camelCase keys."""
        known = {f.name: f for f in fields(cls)}
        values: dict = {}
        for raw_key, value in (data or {}).items():
            key = _LEGACY_KEYS.get(raw_key, raw_key)
            if key not in known:
                logger.debug("[CONFIG] Ignoring unknown option '%s'", raw_key)
                continue
            if value is None:
                continue
            values[key] = _coerce(known[key].type, value)
        if "date_scope" in values:
            values["date_scope"] = _SCOPE_ALIASES.get(values["date_scope"], values["date_scope"])
        return cls(**values)

    @property
    def requires_db(self) -> bool:
        return self.source == "db" or self.db


def _coerce(type_name, value):
    type_name = type_name if isinstance(type_name, str) else getattr(type_name, "__name__", "")
    if type_name == "bool":
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    if type_name == "int":
        return int(value)
    if type_name == "float":
        return float(value)
    return str(value)


def load_download_option(path: str | None = None, **overrides) -> DownloadOption:
    """
    加载下载配置 (Load download options).
    顺序: 环境变量默认值 -> JSON 配置文件 -> 调用方覆盖 (e.g. CLI flags).
    """
    data: dict = {}
    if path:
        with open(path, encoding="utf-8") as f:
            data.update(json.load(f))
    data.update({k: v for k, v in overrides.items() if v is not None})
    return DownloadOption.from_dict(data)


def resolve_date_range(option: DownloadOption, now: datetime | None = None) -> tuple[datetime, datetime]:
    """
    根据下载范围计算开始/结束时间 (Resolve the date window of a run).
    结束时间总是结束日的 23:59:59。
    """
    now = now or datetime.now()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    end = now.replace(hour=23, minute=59, second=59, microsecond=0)
    start = datetime.fromtimestamp(0)

    scope = option.date_scope
    if scope == "one":
        start = midnight
    elif scope == "seven":
        start = midnight - timedelta(days=7)
    elif scope == "month":
        start = midnight - timedelta(days=30)
    elif scope == "diy":
        if option.start_date:
            start = datetime.strptime(option.start_date[:10], "%Y-%m-%d")
        if option.end_date:
            end = datetime.strptime(option.end_date[:10], "%Y-%m-%d").replace(
                hour=23, minute=59, second=59
            )
    return start, end


def validate_config(option: DownloadOption, mode: str = "one") -> tuple[bool, list[str]]:
    """校验运行配置 (Validate a run configuration). Returns (ok, errors)."""
    from wxarchive.filters.rule_filter import parse_filter_rule
    from wxarchive.errors import FilterRuleError

    errors: list[str] = []
    if not option.save_path:
        errors.append("save_path is empty")
    if option.batch_limit < 1:
        errors.append("batch_limit must be >= 1")
    if option.delay < 0:
        errors.append("delay must be >= 0")
    if option.thread_mode not in THREAD_MODES:
        errors.append(f"thread_mode must be one of {THREAD_MODES}")
    if option.date_scope not in DATE_SCOPES:
        errors.append(f"date_scope must be one of {DATE_SCOPES}")
    try:
        parse_filter_rule(option.filter_rule)
    except FilterRuleError as e:
        errors.append(e.message)

    needs_db = mode == "db" or option.requires_db
    if needs_db and not option.db_url and not (option.db_host and option.db_user):
        errors.append("database parameters missing (set WXA_DB_URL or host/user)")

    if option.date_scope == "diy":
        try:
            start, end = resolve_date_range(option)
            if start > end:
                errors.append("start_date is after end_date")
        except ValueError as e:
            errors.append(f"invalid custom date: {e}")

    return not errors, errors
