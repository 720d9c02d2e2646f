"""Data models shared across the archive pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


@dataclass(frozen=True)
class Session:
    """
    公号会话凭据 (Account-scoped credentials).
    由代理抓包得到，创建后不可变，每个上游请求都需要。
    """
    biz: str
    key: str
    uin: str
    ticket: str | None = None
    host: str | None = None
    cookie: str | None = None
    user_agent: str | None = None


@dataclass
class ArticleMeta:
    """文章元数据 (Metadata scraped out of the raw page)."""
    copyright_flag: bool = False
    author: str | None = None
    account_display_name: str | None = None
    published_at_text: str | None = None
    posted_from_text: str | None = None


@dataclass
class Article:
    """
    公号文章 (Article).
    列表抓取时只有标题/链接/时间（stub），下载流程中逐步补全。
    """
    content_url: str
    title: str | None = None
    datetime: datetime | None = None
    digest: str | None = None
    file_name: str | None = None
    html: str | None = None
    cover: str | None = None
    author: str | None = None
    copyright_stat: int | None = None
    meta: ArticleMeta | None = None
    comments: list[dict] | None = None
    replies_by_comment_id: dict[str, list[dict]] | None = None
    session: Session | None = None


@dataclass
class FilterRule:
    """标题/作者 包含与排除规则 (Include/exclude rules)."""
    title_include: list[str] = field(default_factory=list)
    title_exclude: list[str] = field(default_factory=list)
    author_include: list[str] = field(default_factory=list)
    author_exclude: list[str] = field(default_factory=list)


class ArticleShape(str, Enum):
    NORMAL = "normal"
    POSTER = "poster"
    SHORT_TEXT = "short_text"


@dataclass
class ExtractionResult:
    """正文提取结果 (Unified extraction result, tagged by article shape)."""
    shape: ArticleShape
    title: str
    html: str
    byline: str | None = None


class EventKind(str, Enum):
    START = "START"
    SUCCESS = "SUCCESS"
    FAIL = "FAIL"
    ARTICLE_DONE = "ARTICLE_DONE"
    BATCH_DONE = "BATCH_DONE"
    PDF_REQUEST = "PDF_REQUEST"
    PDF_DONE = "PDF_DONE"
    CLOSE = "CLOSE"


@dataclass
class StatusEvent:
    kind: EventKind
    message: str = ""
    payload: object = None


@dataclass
class PdfInfo:
    """PDF 渲染请求 (Render request handed to the shell)."""
    id: str
    title: str
    save_path: str
    file_name: str | None = None


class DownloadOutcome(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FILTERED = "filtered"
    FAILED = "failed"


@dataclass
class DownloadResult:
    """单篇下载结果 (Result of one article download)."""
    outcome: DownloadOutcome
    img_count: int = 0
    save_dir: str | None = None
    errors: list[str] = field(default_factory=list)
