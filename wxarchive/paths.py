"""Save-directory naming and on-disk layout."""

import hashlib
import os
import re

from config import DownloadOption
from wxarchive.models import Article

MAX_NAME_LENGTH = 250

# 路径非法字符、点号与空白 (path-hostile characters, dots, whitespace, control chars)
_RE_DIR_HOSTILE = re.compile(r'[\\/:*?"<>|.\s\x00-\x1f]')


def sanitize_dir_name(title: str | None, max_len: int = MAX_NAME_LENGTH) -> str:
    """将标题转换为合法的目录/文件名 (Make a title safe as a directory name)."""
    name = _RE_DIR_HOSTILE.sub("", title or "")
    name = name[:max_len]
    return name or "untitled"


def url_hash(url: str) -> str:
    return hashlib.md5(url.encode("utf-8")).hexdigest()


def article_save_dir(option: DownloadOption, article: Article, account_name: str | None = None) -> str:
    """
    文章保存目录 (Per-article save directory):
    {savePath}/[{accountName}/]{yyyy-MM-dd-}{sanitizedTitle}
    """
    parts = [option.save_path]
    if option.classify_dir and account_name:
        parts.append(sanitize_dir_name(account_name))
    date_prefix = article.datetime.strftime("%Y-%m-%d") + "-" if article.datetime else ""
    parts.append(date_prefix + sanitize_dir_name(article.title))
    return os.path.join(*parts)


def article_cache_dir(option: DownloadOption, article: Article) -> str:
    """Hash-named temp cache directory for one article."""
    return os.path.join(option.tmp_path, url_hash(article.content_url))
