import os
from datetime import datetime

from wxarchive.models import Article
from wxarchive.paths import MAX_NAME_LENGTH, article_cache_dir, article_save_dir, sanitize_dir_name, url_hash

HOSTILE = '\\/:*?"<>|'


def test_sanitize_strips_path_hostile_characters():
    name = sanitize_dir_name('a\\b/c:d*e?f"g<h>i|j')
    assert name == "abcdefghij"


def test_sanitize_truncates_to_limit():
    assert len(sanitize_dir_name("长" * 400)) == MAX_NAME_LENGTH == 250


def test_sanitize_falls_back_for_empty_titles():
    assert sanitize_dir_name(None) == "untitled"
    assert sanitize_dir_name('??? "" ...') == "untitled"


def test_sanitized_name_survives_filesystem_round_trip(tmp_path):
    name = sanitize_dir_name('weekly: 2024/05 "best" <vol 1> | done?' * 5)
    (tmp_path / name).mkdir()

    [read_back] = os.listdir(tmp_path)
    assert read_back == name
    assert len(read_back) <= 250
    assert not any(ch in read_back for ch in HOSTILE)


def test_article_save_dir_layout(make_option):
    article = Article(content_url="https://mp.weixin.qq.com/s/x", title="Hello World.", datetime=datetime(2024, 5, 1, 8))

    flat = make_option()
    assert article_save_dir(flat, article, "测试公号") == os.path.join(flat.save_path, "2024-05-01-HelloWorld")

    grouped = make_option(classify_dir=True)
    assert article_save_dir(grouped, article, "测试公号") == os.path.join(
        grouped.save_path, "测试公号", "2024-05-01-HelloWorld"
    )


def test_article_save_dir_without_date(make_option):
    option = make_option()
    article = Article(content_url="u", title="随笔")
    assert article_save_dir(option, article) == os.path.join(option.save_path, "随笔")


def test_cache_dir_is_named_by_url_hash(make_option):
    option = make_option()
    article = Article(content_url="https://mp.weixin.qq.com/s/x")
    assert article_cache_dir(option, article) == os.path.join(option.tmp_path, url_hash(article.content_url))
    assert len(url_hash(article.content_url)) == 32
