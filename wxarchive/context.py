"""Per-run shared state threaded through every pipeline stage."""

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path

from config import (
    ANTI_BOT_COOLDOWN_SECONDS,
    ANTI_BOT_MAX_RETRIES,
    PDF_TIMEOUT_SECONDS,
    DownloadOption,
)
from wxarchive.models import EventKind, FilterRule, PdfInfo, StatusEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[StatusEvent], None]


class PdfBridge:
    """
    PDF 渲染完成的回执表 (Pending render completions keyed by correlation id).
    核心登记一个 future；外部 shell 回传 PDF_DONE(id) 时 resolve。
    """

    def __init__(self):
        self._pending: dict[str, asyncio.Future] = {}

    def register(self, info: PdfInfo) -> asyncio.Future:
        future = asyncio.get_running_loop().create_future()
        self._pending[info.id] = future
        return future

    def complete(self, pdf_id: str) -> bool:
        """Resolve a pending render. Safe to call from any thread."""
        future = self._pending.pop(pdf_id, None)
        if future is None:
            logger.warning("[PDF] Unknown or already completed render id: %s", pdf_id)
            return False
        future.get_loop().call_soon_threadsafe(_resolve, future)
        return True

    def discard(self, pdf_id: str) -> None:
        self._pending.pop(pdf_id, None)

    @property
    def pending_ids(self) -> list[str]:
        return list(self._pending)

    @staticmethod
    def new_id() -> str:
        return uuid.uuid4().hex


def _resolve(future: asyncio.Future) -> None:
    if not future.done():
        future.set_result(None)


@dataclass
class RunContext:
    """
    运行上下文 (Run context).
    由 BatchCoordinator 持有，传入每个下载任务；替代模块级全局状态。
    """
    option: DownloadOption
    http: object
    on_event: EventHandler | None = None
    filter_rule: FilterRule = field(default_factory=FilterRule)
    store: object | None = None
    sleep: Callable[[float], Awaitable] = asyncio.sleep
    max_retries: int = ANTI_BOT_MAX_RETRIES
    cooldown: float = ANTI_BOT_COOLDOWN_SECONDS
    pdf_timeout: float = PDF_TIMEOUT_SECONDS
    failure_counts: dict[str, int] = field(default_factory=dict)
    account_names: dict[str, str] = field(default_factory=dict)
    asset_index: dict[str, Path] = field(default_factory=dict)
    pdf_bridge: PdfBridge = field(default_factory=PdfBridge)
    fatal: Exception | None = None
    _cache_locks: dict[str, asyncio.Lock] = field(default_factory=dict)
    _throttle_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    _last_request_ts: float = 0.0

    def emit(self, kind: EventKind, message: str = "", payload: object = None) -> None:
        """Push a status event to the shell."""
        event = StatusEvent(kind=kind, message=message, payload=payload)
        if kind == EventKind.FAIL:
            logger.warning("[EVENT] %s %s", kind.value, message)
        else:
            logger.debug("[EVENT] %s %s", kind.value, message)
        if self.on_event is None:
            return
        try:
            self.on_event(event)
        except Exception as e:
            logger.error("[EVENT] Handler failed for %s: %s", kind.value, e)

    @property
    def aborted(self) -> bool:
        return self.fatal is not None

    def cache_lock(self, key: str) -> asyncio.Lock:
        lock = self._cache_locks.get(key)
        if lock is None:
            lock = self._cache_locks[key] = asyncio.Lock()
        return lock

    def release_cache_lock(self, key: str) -> None:
        """Drop the lock once the key is indexed; later lookups hit asset_index."""
        if key in self.asset_index:
            self._cache_locks.pop(key, None)

    async def throttle(self) -> None:
        """Keep at least `option.delay` seconds between article requests."""
        if self.option.delay <= 0:
            return
        async with self._throttle_lock:
            wait_s = self.option.delay - (time.monotonic() - self._last_request_ts)
            if wait_s > 0:
                await self.sleep(wait_s)
            self._last_request_ts = time.monotonic()
