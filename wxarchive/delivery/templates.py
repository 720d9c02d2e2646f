"""
输出模板 (Output markup shared by the sinks)
样式表、评论脚本、元数据横幅、音频播放器与 Markdown 评论串。
"""

from jinja2 import Template

ARTICLE_CSS = """
<style type="text/css">
.page { max-width: 677px; margin-left: auto; margin-right: auto; }
h1, h2 { text-align: center; }
.page img { max-width: 100%; margin: 0 auto; display: block; }
.code-snippet__fix {
  font-size: 14px; margin: 10px 0; color: #333; position: relative;
  background-color: rgba(0,0,0,.03); border: 1px solid #f0f0f0; border-radius: 2px;
  display: flex; line-height: 26px;
}
.code-snippet__fix .code-snippet__line-index {
  counter-reset: line; flex-shrink: 0; height: 100%; padding: 1em; list-style-type: none;
}
.code-snippet__fix .code-snippet__line-index li { list-style-type: none; text-align: right; }
.code-snippet__fix .code-snippet__line-index li:before {
  min-width: 1.5em; text-align: right; left: -2.5em; counter-increment: line;
  content: counter(line); display: inline; color: rgba(0,0,0,.15);
}
.code-snippet__fix pre { overflow-x: auto; padding: 1em 1em 1em 0; white-space: normal; flex: 1; }
.code-snippet__fix code {
  text-align: left; font-size: 14px; white-space: pre; display: flex; position: relative;
  font-family: Consolas, Liberation Mono, Menlo, Courier, monospace;
}
.music-div audio { min-width: 300px; width: 100%; height: 30px; }
.music-div {
  display: flex; background-color: #f1f3f4; align-items: center;
  padding: 8px 8px 8px 20px; margin: 10px 0;
}
.audio-dev { flex: 1; }
.music_card_title { font-size: 17px; font-weight: 700; }
.music_card_desc { color: rgba(0,0,0,.5); font-weight: 400; font-size: 12px; padding-top: 8px; }
.foot { background-color: #ededed; padding: 8px; display: none; }
.comment { max-width: 677px; margin-left: auto; margin-right: auto; }
.comment .desc { margin-bottom: 10px; }
.comment-item { display: flex; margin-bottom: 20px; }
.comment-item img { width: 30px; margin-right: 8px; }
.comment-item .nick-name { color: #695e5ee3; margin-right: 8px; font-size: 14px; }
.comment-item .native-place { color: #9e9e9ed1; font-size: 14px; }
.comment-item .content { padding-top: 5px; white-space: pre-line; }
.comment-item .more-reply { margin-top: 10px; color: #9e9e9ed1; cursor: pointer; }
.comment-item .reply { display: flex; margin-top: 10px; }
.comment-item .reply img { width: 20px; margin-right: 8px; }
.dialog {
  display: none; position: fixed; top: 0; left: 0; width: 100%; height: 100%;
  overflow: hidden; background-color: rgba(0, 0, 0, 0.4);
}
.dialog .dcontent {
  width: 600px; height: 90%; margin: 2% auto auto auto; background-color: #fefefe;
  border-radius: 5px; position: relative; overflow: hidden; padding-top: 35px;
}
.dialog .aclose {
  text-align: left; line-height: 25px; padding: 5px 10px 0 10px;
  position: absolute; left: 0; right: 0; top: 0; background-color: #ffffff;
}
.dialog .aclose span { font-size: 14px; color: #9e9e9ed1; }
.dialog .close { color: #898686; float: right; font-size: 30px; text-decoration: none; }
.dialog .contain { height: 100%; overflow: auto; display: flex; flex-flow: column; }
.dialog .d-top { padding: 0 20px; }
.dialog .all-deply { background-color: #f7f7f7; padding: 10px 20px 0 20px; height: 100%; }
.dialog .all-deply .a-desc { color: #898686; margin-bottom: 10px; }
.reply-nick { color: #898686; margin: 0 3px; }
.meta-div { margin-bottom: 10px; color: #898686; }
.meta-div span { margin-right: 10px; }
.meta-div .copyright-span { background-color: #0000000d; font-size: 14px; padding: 2px; }
</style>
"""

# 评论区容器与"全部回复"弹窗
COMMENT_FOOTER = (
    '<div class="foot"></div>'
    '<div class="dialog"><div class="dcontent">'
    '<div class="aclose"><span>留言</span><a class="close" href="javascript:closeDialog();">&times;</a></div>'
    '<div class="contain"><div class="d-top"></div><div class="all-deply"></div></div>'
    "</div></div>"
)

# show_all: PDF 无法交互，直接把完整回复渲染进页面
COMMENT_SCRIPT_TEMPLATE = Template(
    """
<script type="text/javascript">
  const electedComments = {{ comments|tojson }};
  const replyDetails = {{ replies|tojson }};

  function placeName(item) {
    const ip = item['ip_wording'];
    if (!ip) return '';
    return ip['province_name'] || ip['country_name'] || '';
  }

  function replyNick(item) {
    return item['nick_name'] + (item['is_from'] == 2 ? '(作者)' : '');
  }

  function itemHtml(logo, nick, place, content, extra) {
    return `<div class="comment-item"><div><img src="${logo}"></div><div class="right-div">`
      + `<span class="nick-name">${nick}</span>`
      + `<span class="native-place">${place ? '来自' + place : ''}</span>`
      + `<div class="content">${content}</div>${extra || ''}</div></div>`;
  }

  function replyHtml(reply) {
    const to = reply['to_nick_name'] ? `回复<span class="reply-nick">${reply['to_nick_name']}</span>：` : '';
    return `<div class="reply"><div><img src="${reply['logo_url']}"></div><div class="right-div">`
      + `<span class="nick-name">${replyNick(reply)}</span>`
      + `<span class="native-place">${placeName(reply) ? '来自' + placeName(reply) : ''}</span>`
      + `<div class="content">${to + reply['content']}</div></div></div>`;
  }

  window.onload = function () {
    let inner = '<div class="comment"><div class="desc">精选留言</div>';
    for (const comment of electedComments) {
      const contentId = comment['content_id'];
      const inline = (comment['reply_new'] || {})['reply_list'] || [];
      {% if show_all %}
      const replies = replyDetails[contentId] || inline;
      {% else %}
      const replies = inline;
      {% endif %}
      const total = (comment['reply_new'] || {})['reply_total_cnt'] || 0;
      let extra = '';
      if (total > replies.length) {
        extra += `<div class="more-reply" onclick="showDetail('${contentId}')">${total}条回复&gt;</div>`;
      }
      for (const reply of replies) {
        extra += replyHtml(reply);
      }
      inner += itemHtml(comment['logo_url'], comment['nick_name'], placeName(comment), comment['content'], extra);
    }
    inner += '</div>';
    const foot = document.querySelector('.foot');
    foot.innerHTML = inner;
    foot.style.display = 'block';
  };

  function showDetail(contentId) {
    const comment = electedComments.find((c) => String(c['content_id']) == String(contentId));
    if (!comment) return;
    document.querySelector('.dialog .d-top').innerHTML =
      itemHtml(comment['logo_url'], comment['nick_name'], placeName(comment), comment['content']);
    const replies = replyDetails[contentId] || (comment['reply_new'] || {})['reply_list'] || [];
    let html = '<div class="a-desc">全部回复</div>';
    for (const reply of replies) {
      const to = reply['to_nick_name'] ? `回复<span class="reply-nick">${reply['to_nick_name']}</span>：` : '';
      html += itemHtml(reply['logo_url'], replyNick(reply), placeName(reply), to + reply['content']);
    }
    document.querySelector('.dialog .all-deply').innerHTML = html;
    document.querySelector('.dialog').style.display = 'block';
  }

  function closeDialog() {
    document.querySelector('.dialog').style.display = 'none';
  }
</script>
"""
)

META_BANNER_TEMPLATE = Template(
    """<div class="meta-div">"""
    """<span class="copyright-span">{{ '原创' if meta.copyright_flag else '非原创' }} </span>"""
    """{% if meta.author %}<span>作者:{{ meta.author|e }} </span>{% endif %}"""
    """{% if meta.account_display_name %}<span>公号:{{ meta.account_display_name|e }} </span>{% endif %}"""
    """{% if meta.published_at_text %}<span>发布时间:{{ meta.published_at_text|e }} </span>{% endif %}"""
    """{% if meta.posted_from_text %}<span>发表于{{ meta.posted_from_text|e }} </span>{% endif %}"""
    """</div>"""
)

TITLE_TEMPLATE = Template("<h1>{{ title|e }}</h1>")

SOURCE_LINK_TEMPLATE = Template(
    """<div>原文地址：<a href="{{ url|e }}" target="_blank">{{ title|e }}</a></div>"""
)

MUSIC_DIV_TEMPLATE = Template(
    """<div class="music-div">
  <div>
    <div class="music_card_title">{{ name|e }}</div>
    {% if singer %}<div class="music_card_desc">{{ singer|e }}</div>{% endif %}
  </div>
  <div class="audio-dev">
    <audio controls="controls" loop="loop">
      {% if src %}<source src="{{ src|e }}" type="audio/mpeg"{% if cache_src %} data-cache-src="{{ cache_src|e }}"{% endif %}></source>{% endif %}
    </audio>
  </div>
</div>"""
)


def place_name(item: dict) -> str:
    """评论的发表地 (Province, falling back to country)."""
    ip = item.get("ip_wording") or {}
    return ip.get("province_name") or ip.get("country_name") or ""


def render_markdown_comments(comments: list[dict] | None, replies_by_comment_id: dict | None) -> str:
    """
    Markdown 格式的精选留言 (Comment thread appended to the Markdown file).
    有完整回复时优先使用，否则使用评论内嵌的回复。
    """
    if not comments:
        return ""
    lines = ["\n\n---\n\n精选留言\n"]
    for comment in comments:
        place = place_name(comment)
        place = f"（来自{place}）" if place else ""
        content = (comment.get("content") or "").replace("\n", "\n  ")
        lines.append(f"\n- **{comment.get('nick_name', '')}**{place}\n  {content}\n")

        replies = (replies_by_comment_id or {}).get(str(comment.get("content_id")))
        if not replies:
            replies = (comment.get("reply_new") or {}).get("reply_list") or []
        for reply in replies:
            nick = reply.get("nick_name", "")
            if reply.get("is_from") == 2:
                nick += "(作者)"
            reply_place = place_name(reply)
            reply_place = f"（来自{reply_place}）" if reply_place else ""
            to_nick = reply.get("to_nick_name")
            prefix = f"回复 {to_nick} ：" if to_nick else ""
            reply_content = (reply.get("content") or "").replace("\n", "\n    ")
            lines.append(f"\n  - **{nick}**{reply_place}\n    {prefix}{reply_content}\n")
    return "".join(lines)


DOCUMENT_TEMPLATE = Template(
    """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>{{ title|e }}</title>
{{ css }}
</head>
{% if comments %}{{ comment_script }}{% endif %}
<body>
{{ body }}
{{ footer }}
</body>
</html>
"""
)


def render_document(title: str, page_html: str, comments: list[dict] | None, replies: dict | None, show_all: bool = False) -> str:
    """
    完整 HTML 文档 (Standalone page: stylesheet, content, comment footer).
    有留言时在 head 之后插入评论脚本；show_all 时直接展示全部回复（PDF 用）。
    """
    script = ""
    if comments:
        script = COMMENT_SCRIPT_TEMPLATE.render(comments=comments, replies=replies or {}, show_all=show_all)
    return DOCUMENT_TEMPLATE.render(
        title=title,
        css=ARTICLE_CSS,
        comments=comments,
        comment_script=script,
        body=page_html,
        footer=COMMENT_FOOTER,
    )
