import json
import threading
from datetime import datetime

import pytest

from config import DownloadOption
from wxarchive.context import RunContext


class FakeResponse:
    def __init__(self, status_code=200, text="", json_data=None, content=None):
        self.status_code = status_code
        self._json = json_data
        self.text = text if text or json_data is None else json.dumps(json_data, ensure_ascii=False)
        self.content = content if content is not None else self.text.encode("utf-8")

    def json(self):
        if self._json is None:
            raise ValueError("response is not JSON")
        return self._json


class FakeHttp:
    """
    Stands in for requests.Session: routes GET by URL prefix and records every call.
    A route is a FakeResponse, a list of them (served in order, last one repeats),
    or a callable (url, params) -> FakeResponse.
    """

    def __init__(self):
        self.routes = {}
        self.calls = []
        self._lock = threading.Lock()

    def add(self, prefix, handler):
        self.routes[prefix] = list(handler) if isinstance(handler, list) else handler
        return self

    def get(self, url, params=None, headers=None, timeout=None, **kwargs):
        with self._lock:
            self.calls.append({"url": url, "params": dict(params or {}), "headers": dict(headers or {})})
            matches = [p for p in self.routes if url == p or url.startswith(p)]
            if not matches:
                return FakeResponse(404)
            handler = self.routes[max(matches, key=len)]
            if isinstance(handler, list):
                return handler.pop(0) if len(handler) > 1 else handler[0]
        if callable(handler):
            return handler(url, params or {})
        return handler

    def count(self, prefix):
        return sum(1 for call in self.calls if call["url"].startswith(prefix))


class FakeSleep:
    """Records requested delays without waiting."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture
def fake_http():
    return FakeHttp()


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def make_response():
    return FakeResponse


@pytest.fixture
def make_option(tmp_path):
    def _make(**overrides):
        values = dict(
            save_path=str(tmp_path / "out"),
            tmp_path=str(tmp_path / "cache"),
            html=False,
            markdown=True,
            pdf=False,
            db=False,
            skip_existing=True,
            delay=0.0,
        )
        values.update(overrides)
        return DownloadOption(**values)

    return _make


@pytest.fixture
def make_ctx(fake_http, fake_sleep, make_option):
    def _make(option=None, events=None, **kwargs):
        on_event = events.append if events is not None else None
        return RunContext(
            option=option or make_option(),
            http=fake_http,
            on_event=on_event,
            sleep=fake_sleep,
            **kwargs,
        )

    return _make


def build_article_page(
    title="测试文章",
    body="<p>这是一段足够长的正文内容，用来确认正文提取可以正常工作，并且保留段落结构。</p>",
    create_time=None,
    comment_id="0",
    author="张三",
    account="测试公号",
):
    ts = int((create_time or datetime(2024, 5, 1, 8, 30)).timestamp())
    return f"""<!DOCTYPE html>
<html><head>
<meta name="author" content="{author}">
<title>{title}</title>
</head><body>
<div id="js_article" class="rich_media">
  <h1 class="rich_media_title" id="activity-name">{title}</h1>
  <div class="rich_media_meta_list"><a id="js_name">{account}</a></div>
  <div class="rich_media_content" id="js_content" style="visibility: hidden;">{body}</div>
</div>
<script>
var create_time = "{ts}" * 1;
var comment_id = "{comment_id}" || "0" * 1;
var copyright_stat = "1";
provinceName: '广东',
</script>
</body></html>"""


POSTER_PAGE = """<!DOCTYPE html>
<html><head>
<meta name="description" content="周末去爬山">
</head><body>
<div class="share_content_page">
  <div id="js_image_desc">周末去爬山</div>
</div>
<script>
window.picture_page_info_list = [
  { width: '1080', height: '1440', cdn_url: JsDecode('https://mmbiz.qpic.cn/poster/1/640?wx_fmt=jpeg\\x26from=appmsg'), },
  { width: '1080', height: '1440', cdn_url: 'https://mmbiz.qpic.cn/poster/2/640?wx_fmt=png', },
];
var create_time = "1714523400" * 1;
</script>
</body></html>"""


SHORT_TEXT_PAGE = """<!DOCTYPE html>
<html><head><title></title></head><body>
<div class="text_page_info">
  <p id="js_text_desc">今天只说一句话。<br>第二行。</p>
</div>
<script>
var msg_title = '一句话的力量'.html(false);
var create_time = "1714523400" * 1;
</script>
</body></html>"""


CHALLENGE_PAGE = """<!DOCTYPE html>
<html><head><title>微信公众平台</title></head><body>
<div class="weui-msg">
  <h2 class="weui-msg__title">环境异常</h2>
  <p class="weui-msg__desc">当前环境异常，完成验证后即可继续访问。</p>
  <a class="weui-btn weui-btn_primary" href="#">去验证</a>
</div>
</body></html>"""


@pytest.fixture
def article_page():
    return build_article_page


@pytest.fixture
def poster_page():
    return POSTER_PAGE


@pytest.fixture
def short_text_page():
    return SHORT_TEXT_PAGE


@pytest.fixture
def challenge_page():
    return CHALLENGE_PAGE
