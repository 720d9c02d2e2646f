"""HTTP session construction and async wrappers around blocking requests calls."""

import asyncio
import logging

import requests
from requests.adapters import HTTPAdapter
from urllib3.util import Retry

from config import HTTP_TIMEOUT_SECONDS
from wxarchive.models import Session

logger = logging.getLogger(__name__)

# 微信内置浏览器 UA，未捕获到会话 UA 时使用
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/116.0.0.0 Safari/537.36 "
    "NetType/WIFI MicroMessenger/7.0.20.1781(0x6700143B) WindowsWechat(0x63090a13)"
)

HEADERS = {
    "User-Agent": DEFAULT_USER_AGENT,
    "Accept-Language": "zh-CN,zh;q=0.9",
}


def build_http_session() -> requests.Session:
    """创建带有重试机制的 HTTP 会话 (Build Request Session with automatic retries)"""
    session = requests.Session()
    retries = Retry(
        total=3,
        connect=3,
        read=3,
        backoff_factor=0.8,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=("GET",),
    )
    adapter = HTTPAdapter(max_retries=retries)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update(HEADERS)
    return session


def session_headers(session: Session | None, referer: str | None = None) -> dict:
    """Request headers replaying a captured session (Host, Cookie, UA, Referer)."""
    headers = {"Connection": "keep-alive"}
    if session is not None:
        if session.host:
            headers["Host"] = session.host
        if session.cookie:
            headers["Cookie"] = session.cookie
        if session.user_agent:
            headers["User-Agent"] = session.user_agent
    if referer:
        headers["Referer"] = referer
    return headers


async def get(http, url: str, **kwargs) -> requests.Response:
    """Issue a GET on a worker thread so the event loop keeps scheduling other tasks."""
    kwargs.setdefault("timeout", HTTP_TIMEOUT_SECONDS)
    return await asyncio.to_thread(http.get, url, **kwargs)


async def get_json(http, url: str, **kwargs) -> tuple[int, dict | None]:
    """GET and decode a JSON body. Returns (status_code, data or None)."""
    resp = await get(http, url, **kwargs)
    if resp.status_code != 200:
        return resp.status_code, None
    try:
        return resp.status_code, resp.json()
    except ValueError as e:
        logger.warning("[HTTP] Invalid JSON from %s: %s", url, e)
        return resp.status_code, None
