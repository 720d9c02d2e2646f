from bs4 import BeautifulSoup

from wxarchive.extractors.content_extractor import detect_shape, extract, prep_html
from wxarchive.extractors.readability import PAGE_ID
from wxarchive.models import ArticleShape


def _page(result):
    return BeautifulSoup(result.html, "html.parser").find(id=PAGE_ID)


def test_poster_without_h1_uses_meta_description(poster_page):
    result = extract(poster_page)

    assert result.shape == ArticleShape.POSTER
    assert result.title == "周末去爬山"
    images = [img["src"] for img in _page(result).find_all("img")]
    assert images == [
        "https://mmbiz.qpic.cn/poster/1/640?wx_fmt=jpeg&from=appmsg",
        "https://mmbiz.qpic.cn/poster/2/640?wx_fmt=png",
    ]
    assert _page(result).find("p").get_text() == "周末去爬山"


def test_poster_without_images_is_rejected(poster_page):
    start = poster_page.index("window.picture_page_info_list")
    end = poster_page.index("];", start) + 2
    assert extract(poster_page[:start] + poster_page[end:]) is None


def test_poster_prefers_first_h1(poster_page):
    page = poster_page.replace('<div id="js_image_desc">', '<h1>爬山日记</h1><div id="js_image_desc">')
    assert extract(page).title == "爬山日记"


def test_short_text_title_comes_from_msg_title(short_text_page):
    result = extract(short_text_page)

    assert result.shape == ArticleShape.SHORT_TEXT
    assert result.title == "一句话的力量"
    paragraphs = [p.get_text() for p in _page(result).find_all("p")]
    assert paragraphs == ["今天只说一句话。", "第二行。"]


def test_short_text_without_msg_title_is_rejected(short_text_page):
    page = short_text_page.replace("var msg_title = '一句话的力量'.html(false);", "")
    assert extract(page) is None


def test_short_text_decodes_escaped_title(short_text_page):
    page = short_text_page.replace("'一句话的力量'", "'A \\x26 B'")
    assert extract(page).title == "A & B"


def test_challenge_page_title(challenge_page):
    result = extract(challenge_page)
    assert result.shape == ArticleShape.NORMAL
    assert result.title == "环境异常"


def test_normal_article_keeps_body_and_byline(article_page):
    result = extract(article_page(title="测试文章"))
    assert result.shape == ArticleShape.NORMAL
    assert result.title == "测试文章"
    assert result.byline == "张三"

    content = _page(result).find(id="js_content")
    assert content is not None
    assert "visibility" not in content.get("style", "")
    assert "正文内容" in content.get_text()


def test_audio_bearing_empty_nodes_survive(article_page):
    """Empty sections are pruned unless they hold, or sit next to, an audio embed."""
    body = (
        '<section><mpvoice name="录音" voice_encode_fileid="MzA_1"></mpvoice><span></span></section>'
        "<p>正文内容足够长，足够长，足够长，用来保证提取结果不为空。</p>"
        "<section><span></span></section>"
        '<section><qqmusic mid="001" music_name="晴天"></qqmusic></section>'
    )
    content = _page(extract(article_page(body=body))).find(id="js_content")

    sections = content.find_all("section")
    assert len(sections) == 2
    assert content.find("mpvoice") is not None
    assert content.find("qqmusic") is not None
    # sibling of the voice widget is kept as-is
    assert sections[0].find("span") is not None


def test_detect_shape_by_container_class():
    assert detect_shape(BeautifulSoup('<div class="share_content_page"></div>', "html.parser")) == ArticleShape.POSTER
    assert detect_shape(BeautifulSoup('<div class="text_page_info"></div>', "html.parser")) == ArticleShape.SHORT_TEXT
    assert detect_shape(BeautifulSoup("<div id='js_content'></div>", "html.parser")) == ArticleShape.NORMAL


def test_prep_html_fixes_lazy_images_and_widths():
    soup = prep_html(
        '<img data-src="https://mmbiz.qpic.cn/a/640?wx_fmt=png" src="data:image/gif;base64,x" '
        'style="width: 320px; height: auto;">'
    )
    img = soup.find("img")
    assert img["src"] == "https://mmbiz.qpic.cn/a/640?wx_fmt=png"
    assert img["width"] == "320"


def test_empty_nodes_away_from_audio_are_pruned(article_page):
    body = (
        '<section><mpvoice name="录音" voice_encode_fileid="MzA_1"></mpvoice></section>'
        "<p>正文内容足够长，足够长，足够长，用来保证提取结果不为空。</p>"
        "<div><section><span></span></section></div>"
    )
    content = _page(extract(article_page(body=body))).find(id="js_content")

    assert content.find("div") is None
    assert len(content.find_all("section")) == 1
    assert content.find("mpvoice") is not None
