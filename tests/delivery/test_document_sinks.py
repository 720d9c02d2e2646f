import asyncio
import unittest

import pytest
from bs4 import BeautifulSoup

from wxarchive.delivery.html_sink import write_html
from wxarchive.delivery.pdf_sink import PDF_SOURCE_NAME, write_pdf_source
from wxarchive.delivery.templates import META_BANNER_TEMPLATE, place_name, render_document
from wxarchive.errors import SinkError
from wxarchive.models import Article, ArticleMeta, EventKind, PdfInfo

COMMENTS = [
    {
        "content_id": 101,
        "nick_name": "小明",
        "content": "写得好",
        "logo_url": "https://wx.qlogo.cn/a.png",
        "reply_new": {"reply_total_cnt": 2, "reply_list": []},
    }
]


def _article(**kwargs):
    values = dict(content_url="https://mp.weixin.qq.com/s/abc", title="测试文章", file_name="测试文章")
    values.update(kwargs)
    return Article(**values)


class TestTemplates(unittest.TestCase):

    def test_document_without_comments_has_no_script(self):
        """The footer container is always present; the script only when comments exist."""
        doc = render_document("标题", "<p>正文</p>", None, None)
        soup = BeautifulSoup(doc, "html.parser")
        self.assertEqual(soup.title.get_text(), "标题")
        self.assertIsNotNone(soup.find(class_="foot"))
        self.assertIsNotNone(soup.find(class_="dialog"))
        self.assertNotIn("electedComments", doc)
        self.assertIn("<p>正文</p>", doc)

    def test_document_embeds_comment_data(self):
        doc = render_document("标题", "<p>正文</p>", COMMENTS, {"101": [{"nick_name": "作者"}]})
        self.assertIn("electedComments", doc)
        self.assertIn("\\u5c0f\\u660e", doc)
        self.assertIn("const replies = inline;", doc)

    def test_show_all_renders_full_replies(self):
        doc = render_document("标题", "", COMMENTS, {}, show_all=True)
        self.assertIn("replyDetails[contentId] || inline", doc)

    def test_meta_banner(self):
        meta = ArticleMeta(copyright_flag=True, author="张三", account_display_name="公号", posted_from_text="广东")
        banner = META_BANNER_TEMPLATE.render(meta=meta)
        self.assertIn("原创", banner)
        self.assertIn("作者:张三", banner)
        self.assertIn("发表于广东", banner)
        self.assertNotIn("发布时间", banner)

    def test_place_name(self):
        self.assertEqual(place_name({"ip_wording": {"country_name": "日本"}}), "日本")
        self.assertEqual(place_name({}), "")


def test_write_html(tmp_path, make_ctx):
    events = []
    path = asyncio.run(
        write_html(make_ctx(events=events), _article(comments=COMMENTS), "<p>正文</p>", str(tmp_path))
    )
    doc = (tmp_path / "测试文章.html").read_text(encoding="utf-8")
    assert path.endswith("测试文章.html")
    assert "electedComments" in doc
    assert events[-1].message == "【测试文章】保存HTML完成"


def test_pdf_source_waits_for_shell_acknowledgment(tmp_path, make_ctx):
    requests_seen = []
    ctx = make_ctx()

    def shell(event):
        if event.kind == EventKind.PDF_REQUEST:
            requests_seen.append(event.payload)
            ctx.pdf_bridge.complete(event.payload.id)

    ctx.on_event = shell

    asyncio.run(write_pdf_source(ctx, _article(), "<p>正文</p>", str(tmp_path)))

    assert (tmp_path / PDF_SOURCE_NAME).exists()
    [info] = requests_seen
    assert isinstance(info, PdfInfo)
    assert info.save_path == str(tmp_path)
    assert info.file_name == "测试文章"
    assert ctx.pdf_bridge.pending_ids == []


def test_pdf_source_times_out_without_acknowledgment(tmp_path, make_ctx):
    ctx = make_ctx(pdf_timeout=0.05)

    with pytest.raises(SinkError) as excinfo:
        asyncio.run(write_pdf_source(ctx, _article(), "<p>正文</p>", str(tmp_path)))

    assert excinfo.value.sink == "pdf"
    assert ctx.pdf_bridge.pending_ids == []
    assert (tmp_path / PDF_SOURCE_NAME).exists()
