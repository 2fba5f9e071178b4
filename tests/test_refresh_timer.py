from __future__ import annotations

import threading

from dps_meter.refresh_timer import MIN_INTERVAL_MS, RefreshTimer, thread_after, thread_after_cancel


class AfterHarness:
    def __init__(self) -> None:
        self.scheduled: list[tuple[str, int, object]] = []
        self.cancelled: list[object] = []

    def after(self, ms: int, cb) -> str:
        handle = f"h{len(self.scheduled) + 1}"
        self.scheduled.append((handle, ms, cb))
        return handle

    def cancel(self, handle: object) -> None:
        self.cancelled.append(handle)

    def run(self, handle: str) -> None:
        for h, _ms, cb in list(self.scheduled):
            if h == handle:
                cb()
                return
        raise AssertionError(f"Handle {handle} not found")


def test_interval_is_clamped():
    harness = AfterHarness()
    timer = RefreshTimer(5, after=harness.after, after_cancel=harness.cancel)
    assert timer.interval_ms == MIN_INTERVAL_MS

    assert RefreshTimer("bogus", after=harness.after, after_cancel=harness.cancel).interval_ms == MIN_INTERVAL_MS
    assert RefreshTimer(250, after=harness.after, after_cancel=harness.cancel).interval_ms == 250


def test_tick_reschedules_until_stopped():
    harness = AfterHarness()
    calls: list[str] = []
    timer = RefreshTimer(100, after=harness.after, after_cancel=harness.cancel)

    first = timer.start(lambda: calls.append("tick"))
    assert first == "h1"
    harness.run("h1")
    harness.run("h2")

    assert calls == ["tick", "tick"]
    assert [entry[0] for entry in harness.scheduled] == ["h1", "h2", "h3"]

    timer.stop()
    assert harness.cancelled == ["h3"]
    assert not timer.running


def test_restart_cancels_pending_handle():
    harness = AfterHarness()
    timer = RefreshTimer(100, after=harness.after, after_cancel=harness.cancel)

    timer.start(lambda: None)
    timer.start(lambda: None)

    assert harness.cancelled == ["h1"]


def test_stop_inside_callback_prevents_reschedule():
    harness = AfterHarness()
    timer = RefreshTimer(100, after=harness.after, after_cancel=harness.cancel)
    timer.start(timer.stop)

    harness.run("h1")

    assert len(harness.scheduled) == 1
    assert not timer.running


def test_callback_errors_are_logged_and_ticking_continues():
    harness = AfterHarness()
    messages: list[str] = []

    def boom() -> None:
        raise ValueError("bad tick")

    timer = RefreshTimer(
        100,
        after=harness.after,
        after_cancel=harness.cancel,
        logger=lambda message, *args: messages.append(message % args),
    )
    timer.start(boom)
    harness.run("h1")

    assert messages == ["Refresh tick failed: bad tick"]
    assert len(harness.scheduled) == 2


def test_thread_after_runs_and_cancels():
    fired = threading.Event()
    handle = thread_after(0, fired.set)
    assert fired.wait(timeout=2.0)

    never = threading.Event()
    pending = thread_after(10_000, never.set)
    thread_after_cancel(pending)
    assert not never.is_set()
    thread_after_cancel(object())
    handle.join(timeout=1.0)
