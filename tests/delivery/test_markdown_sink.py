import asyncio

import pytest

from wxarchive.delivery.markdown_sink import decache_html, html_to_markdown, write_markdown
from wxarchive.errors import SinkError
from wxarchive.models import Article, EventKind

CODE_BLOCK = (
    '<section class="code-snippet__fix code-snippet__js">'
    '<ul class="code-snippet__line-index code-snippet__js"><li></li><li></li></ul>'
    '<pre class="code-snippet__js" data-lang="python">'
    '<code><span class="code-snippet__keyword">def</span> f():</code>'
    "<code>    return 1</code>"
    "</pre></section>"
)


def test_code_block_becomes_fenced_with_language():
    md = html_to_markdown(CODE_BLOCK)
    assert "```python\ndef f():\n    return 1\n```" in md
    assert "code-snippet" not in md


def test_code_class_language_wins_over_data_lang():
    md = html_to_markdown('<pre data-lang="text"><code class="language-go">fmt.Println(1)</code></pre>')
    assert "```go\nfmt.Println(1)\n```" in md


def test_fence_grows_when_code_contains_backticks():
    md = html_to_markdown("<pre><code>```<br>x</code></pre>")
    assert "````\n```\nx\n````" in md


def test_headings_and_audio():
    md = html_to_markdown(
        '<h1>标题</h1><audio controls="controls"><source src="song/0.mp3"></audio><ul><li>一</li></ul>'
    )
    assert "# 标题" in md
    assert "<audio" in md
    assert '<source src="song/0.mp3"' in md
    assert "- 一" in md


def test_decache_html_points_at_cache_files():
    html = decache_html('<img src="img/0.png" data-cache-src="/tmp/cache/abc.png"><img src="img/1.png">')
    assert 'src="/tmp/cache/abc.png"' in html
    assert 'src="img/1.png"' in html


def test_write_markdown_appends_comment_thread(tmp_path, make_ctx):
    events = []
    article = Article(
        content_url="https://mp.weixin.qq.com/s/abc",
        title="测试文章",
        file_name="测试文章",
        comments=[
            {
                "content_id": 101,
                "nick_name": "小明",
                "content": "写得好",
                "ip_wording": {"province_name": "广东"},
                "reply_new": {"reply_list": [{"nick_name": "inline", "content": "x"}]},
            }
        ],
        replies_by_comment_id={
            "101": [{"nick_name": "作者本人", "content": "谢谢", "is_from": 2, "to_nick_name": "小明"}]
        },
    )

    path = asyncio.run(write_markdown(make_ctx(events=events), article, "<p>正文</p>", str(tmp_path)))

    text = (tmp_path / "测试文章.md").read_text(encoding="utf-8")
    assert path.endswith("测试文章.md")
    assert text.index("正文") < text.index("精选留言")
    assert "精选留言" in text
    assert "- **小明**（来自广东）" in text
    assert "**作者本人(作者)**" in text
    assert "回复 小明 ：谢谢" in text
    assert "inline" not in text
    assert events[-1].kind == EventKind.SUCCESS


def test_write_markdown_failure_raises_sink_error(tmp_path, make_ctx):
    article = Article(content_url="u", title="t", file_name="t")
    with pytest.raises(SinkError) as excinfo:
        asyncio.run(write_markdown(make_ctx(), article, "<p>x</p>", str(tmp_path / "missing")))
    assert excinfo.value.sink == "markdown"
