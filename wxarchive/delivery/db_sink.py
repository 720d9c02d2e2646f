"""
数据库输出 (Database sink)
SQLAlchemy Core 单表存储，content_url 唯一，按方言做 upsert。
整个运行共用一个 ArticleStore；阻塞调用放到线程中执行。
"""

import asyncio
import json
import logging
import threading
from datetime import datetime

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    select,
    text,
)
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError

from config import DownloadOption
from wxarchive.context import RunContext
from wxarchive.delivery.markdown_sink import decache_html, html_to_markdown
from wxarchive.errors import DatabaseError, SinkError
from wxarchive.models import Article, EventKind

logger = logging.getLogger(__name__)

_LONG_TEXT = Text().with_variant(mysql.LONGTEXT(), "mysql")

_HINT_DB = "请检查数据库地址、端口、用户名和密码 (WXA_DB_*)"


def build_table(name: str, metadata: MetaData) -> Table:
    return Table(
        name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("title", String(512)),
        Column("content", _LONG_TEXT),
        Column("author", String(255)),
        # utf8mb4 下唯一索引最长 768 字符
        Column("content_url", String(768), nullable=False, unique=True),
        Column("create_time", DateTime, index=True),
        Column("copyright_stat", Integer),
        Column("comm", _LONG_TEXT),
        Column("comm_reply", _LONG_TEXT),
        Column("digest", Text),
        Column("cover", String(1024)),
        Column("js_name", String(255)),
        Column("md_content", _LONG_TEXT),
    )


def database_url(option: DownloadOption) -> str | URL:
    if option.db_url:
        return option.db_url
    return URL.create(
        "mysql+pymysql",
        username=option.db_user,
        password=option.db_password or None,
        host=option.db_host,
        port=option.db_port,
        database=option.db_name,
        query={"charset": "utf8mb4"},
    )


class ArticleStore:
    """
    文章表访问对象 (Article table gateway).
    一个运行一个实例；内部锁串行化写入，数据库自身的 upsert 语义之外不做事务隔离。
    """

    def __init__(self, url: str | URL, table_name: str = "wechat_article"):
        self.engine = create_engine(url, pool_pre_ping=True)
        self.metadata = MetaData()
        self.table = build_table(table_name, self.metadata)
        self._lock = threading.Lock()

    @classmethod
    def from_option(cls, option: DownloadOption) -> "ArticleStore":
        return cls(database_url(option), option.db_table)

    def connect(self) -> None:
        """检查连接并建表 (Verify connectivity and create the table if needed)."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            self.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise DatabaseError(f"数据库连接失败：{e}", hint=_HINT_DB) from e
        logger.info("[DB] Connected to %s", self.engine.url.render_as_string(hide_password=True))

    def _insert(self, row: dict):
        update_cols = [k for k in row if k != "content_url"]
        dialect = self.engine.dialect.name
        if dialect == "mysql":
            stmt = mysql.insert(self.table).values(**row)
            return stmt.on_duplicate_key_update({k: stmt.inserted[k] for k in update_cols})
        if dialect in ("sqlite", "postgresql"):
            module = sqlite if dialect == "sqlite" else postgresql
            stmt = module.insert(self.table).values(**row)
            return stmt.on_conflict_do_update(
                index_elements=["content_url"],
                set_={k: stmt.excluded[k] for k in update_cols},
            )
        return None

    def upsert(self, row: dict) -> None:
        """按 content_url 插入或更新一行 (Insert or update the row keyed by content_url)."""
        with self._lock, self.engine.begin() as conn:
            stmt = self._insert(row)
            if stmt is not None:
                conn.execute(stmt)
                return
            existing = conn.execute(
                select(self.table.c.id).where(self.table.c.content_url == row["content_url"])
            ).first()
            if existing is None:
                conn.execute(self.table.insert().values(**row))
            else:
                conn.execute(
                    self.table.update().where(self.table.c.content_url == row["content_url"]).values(**row)
                )

    def select_range(self, start: datetime, end: datetime) -> list[dict]:
        """create_time 在 [start, end] 内的文章，按时间倒序。"""
        stmt = (
            select(self.table)
            .where(self.table.c.create_time >= start, self.table.c.create_time <= end)
            .order_by(self.table.c.create_time.desc())
        )
        try:
            with self._lock, self.engine.connect() as conn:
                return [dict(row._mapping) for row in conn.execute(stmt)]
        except SQLAlchemyError as e:
            raise DatabaseError(f"获取数据库数据失败：{e}", hint=_HINT_DB) from e

    def close(self) -> None:
        self.engine.dispose()


def article_to_row(article: Article, md_content: str | None = None) -> dict:
    """Article -> 表行；评论以 JSON 文本存储。"""
    meta = article.meta
    return {
        "title": article.title,
        "content": article.html,
        "author": article.author or (meta.author if meta else None),
        "content_url": article.content_url,
        "create_time": article.datetime,
        "copyright_stat": article.copyright_stat,
        "comm": json.dumps(article.comments, ensure_ascii=False) if article.comments is not None else None,
        "comm_reply": (
            json.dumps(article.replies_by_comment_id, ensure_ascii=False)
            if article.replies_by_comment_id is not None
            else None
        ),
        "digest": article.digest,
        "cover": article.cover,
        "js_name": meta.account_display_name if meta else None,
        "md_content": md_content,
    }


def _load_json(value):
    if not value:
        return None
    try:
        return json.loads(value)
    except ValueError:
        logger.warning("[DB] Ignoring malformed comment JSON")
        return None


def row_to_article(row: dict, option: DownloadOption) -> Article:
    """表行 -> Article；html 取 content，评论按开关从 JSON 还原。"""
    return Article(
        content_url=row["content_url"],
        title=row.get("title"),
        datetime=row.get("create_time"),
        digest=row.get("digest"),
        html=row.get("content"),
        cover=row.get("cover"),
        author=row.get("author"),
        copyright_stat=row.get("copyright_stat"),
        comments=_load_json(row.get("comm")) if option.comments else None,
        replies_by_comment_id=_load_json(row.get("comm_reply")) if option.replies else None,
    )


async def save_article(ctx: RunContext, article: Article, page_html: str) -> None:
    """
    写入数据库 (Upsert the article row).
    clean_markdown 开启时额外保存一份图片指向缓存文件的 Markdown。
    """
    if ctx.store is None:
        raise SinkError("db", "数据库未连接")
    md_content = html_to_markdown(decache_html(page_html)) if ctx.option.clean_markdown else None
    row = article_to_row(article, md_content)
    try:
        await asyncio.to_thread(ctx.store.upsert, row)
    except SQLAlchemyError as e:
        raise SinkError("db", f"数据库写入失败：{e}") from e
    logger.info("[DB] Upserted %s", article.content_url)
    ctx.emit(EventKind.SUCCESS, f"【{article.title}】保存数据库完成")
