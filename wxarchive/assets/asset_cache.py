"""
资源缓存 (Asset cache)

图片和音频先按 md5(url).ext 下载到缓存目录，再复制到文章目录下的 img/ song/，
文件名按出现顺序编号 ({index}.{ext})。同一运行内同一个缓存键最多联网下载一次。
"""

import asyncio
import json
import logging
import os
import shutil
from pathlib import Path
from urllib.parse import parse_qs, urlparse

import requests
from bs4 import BeautifulSoup, Tag

from config import SONG_INFO_URL, VOICE_URL
from wxarchive.context import RunContext
from wxarchive.delivery.templates import MUSIC_DIV_TEMPLATE
from wxarchive.http import get, get_json
from wxarchive.models import EventKind
from wxarchive.paths import url_hash

logger = logging.getLogger(__name__)

IMG_DIR = "img"
SONG_DIR = "song"
# 指向缓存文件的属性，供清洗版 Markdown 等二次输出复用
CACHE_ATTR = "data-cache-src"

IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp", "bmp", "svg"}
AUDIO_EXTENSIONS = {"m4a", "mp3", "aac", "wav", "ogg"}

# 图片下载需要带公众号域名的 Referer，否则会返回防盗链占位图
IMG_HEADERS = {"Referer": "https://mp.weixin.qq.com/"}


def cache_key(url: str, ext: str) -> str:
    return f"{url_hash(url)}.{ext}"


def _url_suffix(url: str, allowed: set[str]) -> str | None:
    parsed = urlparse(url)
    fmt = parse_qs(parsed.query).get("wx_fmt")
    if fmt and fmt[0].lower() in allowed:
        return fmt[0].lower()
    suffix = os.path.splitext(parsed.path)[1].lstrip(".").lower()
    return suffix if suffix in allowed else None


def image_extension(img: Tag, url: str) -> str:
    """图片后缀: data-type > 链接中的格式 > jpg"""
    data_type = (img.get("data-type") or "").strip().lower()
    if data_type:
        return data_type
    return _url_suffix(url, IMAGE_EXTENSIONS) or "jpg"


def remote_src(img: Tag) -> str | None:
    url = (img.get("data-src") or img.get("src") or "").strip()
    if url.startswith("//"):
        url = "https:" + url
    if url.startswith(("http://", "https://")):
        return url
    return None


def _write_bytes(path: Path, content: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".part")
    tmp.write_bytes(content)
    os.replace(tmp, path)


def _copy_file(src: Path, dest: Path) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    if not dest.exists():
        shutil.copyfile(src, dest)


async def fetch_to_cache(ctx: RunContext, url: str, cache_dir: str, key: str, headers: dict | None = None) -> Path | None:
    """
    下载到缓存 (Download a remote asset into the cache once per run).
    同一个 key 的并发请求共用一把锁，后到者直接复用先到者的结果。

    Returns:
        缓存文件路径；下载失败时返回 None。
    """
    cached = ctx.asset_index.get(key)
    if cached is not None and cached.exists():
        return cached

    try:
        async with ctx.cache_lock(key):
            return await _download_locked(ctx, url, cache_dir, key, headers)
    finally:
        ctx.release_cache_lock(key)


async def _download_locked(ctx: RunContext, url: str, cache_dir: str, key: str, headers: dict | None) -> Path | None:
    cached = ctx.asset_index.get(key)
    if cached is not None and cached.exists():
        return cached

    target = Path(cache_dir) / key
    if target.exists():
        ctx.asset_index[key] = target
        return target

    try:
        resp = await get(ctx.http, url, headers=headers)
    except requests.RequestException as e:
        logger.warning("[ASSET] Download failed %s: %s", url, e)
        return None
    if resp.status_code != 200:
        logger.warning("[ASSET] Download failed %s: HTTP %s", url, resp.status_code)
        return None

    await asyncio.to_thread(_write_bytes, target, resp.content)
    ctx.asset_index[key] = target
    logger.debug("[ASSET] Cached %s -> %s", url, target)
    return target


async def _localize_image(ctx: RunContext, img: Tag, url: str, index: int, save_dir: str, cache_dir: str) -> None:
    ext = image_extension(img, url)
    cached = await fetch_to_cache(ctx, url, cache_dir, cache_key(url, ext), headers=IMG_HEADERS)
    if cached is None:
        return
    name = f"{index}.{ext}"
    await asyncio.to_thread(_copy_file, cached, Path(save_dir) / IMG_DIR / name)
    img["src"] = f"{IMG_DIR}/{name}"
    img[CACHE_ATTR] = str(cached)
    if img.has_attr("data-src"):
        del img["data-src"]


def _add_player(el: Tag, name: str, src: str, singer: str | None = None, cache_src: str | None = None) -> None:
    markup = MUSIC_DIV_TEMPLATE.render(name=name, src=src, singer=singer, cache_src=cache_src)
    player = BeautifulSoup(markup, "html.parser").find("div")
    el.insert_after(player)


async def _song_url(ctx: RunContext, mid: str) -> str | None:
    """QQ 音乐需要先调歌曲信息接口拿到播放地址"""
    try:
        _, data = await get_json(ctx.http, SONG_INFO_URL, params={"song_mid": mid})
    except requests.RequestException as e:
        logger.warning("[ASSET] Song info request failed, mid=%s: %s", mid, e)
        return None
    if not data:
        logger.warning("[ASSET] Song info unavailable, mid=%s", mid)
        return None
    try:
        song_desc = json.loads(data["resp_data"])
        return song_desc["songlist"][0]["song_play_url_standard"] or None
    except (KeyError, IndexError, TypeError, ValueError) as e:
        logger.warning("[ASSET] Unexpected song info for mid=%s: %s", mid, e)
        return None


def _voice_id(el: Tag) -> str | None:
    fileid = el.get("voice_encode_fileid")
    if fileid:
        return fileid
    src = el.get("src") or el.get("data-src") or ""
    values = parse_qs(urlparse(src).query).get("mediaid")
    return values[0] if values else None


async def _localize_audio(ctx: RunContext, el: Tag, index: int, save_dir: str, cache_dir: str) -> None:
    """
    处理一个音频控件 (Resolve, optionally download, and decorate one audio embed).
      - qqmusic: 授权音乐，mid -> 歌曲信息接口 -> m4a
      - mpvoice / mp-common-mpaudio: 作者录音，voice_encode_fileid -> mp3
    """
    singer = None
    if el.name == "qqmusic":
        name = el.get("music_name") or ""
        singer = el.get("singer")
        mid = el.get("mid")
        url = await _song_url(ctx, mid) if mid else None
        default_ext = "m4a"
    else:
        name = el.get("name") or el.get("title") or ""
        media_id = _voice_id(el)
        url = f"{VOICE_URL}?mediaid={media_id}" if media_id else None
        default_ext = "mp3"

    if not url:
        logger.warning("[ASSET] Cannot resolve audio source for <%s> %s", el.name, name)
        _add_player(el, name, "", singer)
        return

    if not ctx.option.audio:
        _add_player(el, name, url, singer)
        return

    ext = _url_suffix(url, AUDIO_EXTENSIONS) or default_ext
    ctx.emit(EventKind.SUCCESS, f"正在下载歌曲【{name}】...")
    cached = await fetch_to_cache(ctx, url, cache_dir, cache_key(url, ext))
    if cached is None:
        _add_player(el, name, url, singer)
        return
    file_name = f"{index}.{ext}"
    await asyncio.to_thread(_copy_file, cached, Path(save_dir) / SONG_DIR / file_name)
    _add_player(el, name, f"{SONG_DIR}/{file_name}", singer, cache_src=str(cached))
    ctx.emit(EventKind.SUCCESS, f"歌曲【{name}】下载完成")


async def materialize(ctx: RunContext, soup: BeautifulSoup, save_dir: str, cache_dir: str) -> int:
    """
    本地化文章中的图片与音频 (Localize embedded images and audio).

    Args:
        soup: 提取后的正文 DOM，原地修改
        save_dir: 文章保存目录
        cache_dir: 文章缓存目录

    Returns:
        图片数量
    """
    jobs = []
    img_count = 0
    if ctx.option.img:
        for img in soup.find_all("img"):
            url = remote_src(img)
            if url is None:
                continue
            jobs.append(_localize_image(ctx, img, url, img_count, save_dir, cache_dir))
            img_count += 1

    audio_index = 0
    for el in soup.find_all(["qqmusic", "mpvoice", "mp-common-mpaudio"]):
        jobs.append(_localize_audio(ctx, el, audio_index, save_dir, cache_dir))
        audio_index += 1

    results = await asyncio.gather(*jobs, return_exceptions=True)
    for result in results:
        if isinstance(result, Exception):
            logger.warning("[ASSET] Asset task failed: %s", result)
    logger.info("[ASSET] %d images, %d audio embeds in %s", img_count, audio_index, save_dir)
    return img_count
