import asyncio
import threading

from wxarchive.context import PdfBridge
from wxarchive.models import EventKind, PdfInfo


def test_pdf_bridge_resolves_from_another_thread():
    """The shell may acknowledge from any thread; the waiting task wakes up."""
    bridge = PdfBridge()
    info = PdfInfo(id=PdfBridge.new_id(), title="t", save_path="/tmp")

    async def scenario():
        future = bridge.register(info)
        worker = threading.Thread(target=bridge.complete, args=(info.id,))
        worker.start()
        await asyncio.wait_for(future, timeout=5)
        worker.join()
        return future.done()

    assert asyncio.run(scenario()) is True
    assert bridge.pending_ids == []


def test_pdf_bridge_ignores_unknown_ids():
    bridge = PdfBridge()
    assert bridge.complete("missing") is False


def test_emit_forwards_events_and_survives_handler_errors(make_ctx):
    events = []
    ctx = make_ctx(events=events)
    ctx.emit(EventKind.SUCCESS, "ok", {"n": 1})
    assert events[0].kind == EventKind.SUCCESS
    assert events[0].payload == {"n": 1}

    def broken(event):
        raise RuntimeError("shell crashed")

    ctx.on_event = broken
    ctx.emit(EventKind.FAIL, "still fine")


def test_throttle_waits_between_requests(make_ctx, make_option, fake_sleep):
    ctx = make_ctx(option=make_option(delay=1.5))

    async def scenario():
        await ctx.throttle()
        await ctx.throttle()

    asyncio.run(scenario())
    assert len(fake_sleep.delays) == 1
    assert 0 < fake_sleep.delays[0] <= 1.5


def test_throttle_is_a_no_op_without_delay(make_ctx, fake_sleep):
    ctx = make_ctx()
    asyncio.run(ctx.throttle())
    assert fake_sleep.delays == []


def test_cache_lock_is_shared_per_key(make_ctx):
    ctx = make_ctx()
    assert ctx.cache_lock("a.jpg") is ctx.cache_lock("a.jpg")
    assert ctx.cache_lock("a.jpg") is not ctx.cache_lock("b.jpg")


def test_cache_lock_is_released_once_key_is_indexed(make_ctx, tmp_path):
    ctx = make_ctx()
    ctx.cache_lock("a.jpg")
    ctx.release_cache_lock("a.jpg")
    assert "a.jpg" in ctx._cache_locks

    ctx.asset_index["a.jpg"] = tmp_path / "a.jpg"
    ctx.release_cache_lock("a.jpg")
    assert "a.jpg" not in ctx._cache_locks
