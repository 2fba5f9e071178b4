from __future__ import annotations

import threading
from typing import Callable, Optional

AfterFn = Callable[[int, Callable[[], None]], object]
AfterCancelFn = Callable[[object], None]
LoggerFn = Callable[..., None]

MIN_INTERVAL_MS = 50


def _noop_log(message: str, *args: object) -> None:
    return None


def thread_after(delay_ms: int, callback: Callable[[], None]) -> threading.Timer:
    """``after`` implementation for hosts without an event loop of their own."""
    timer = threading.Timer(max(0, delay_ms) / 1000.0, callback)
    timer.daemon = True
    timer.start()
    return timer


def thread_after_cancel(handle: object) -> None:
    cancel = getattr(handle, "cancel", None)
    if callable(cancel):
        cancel()


class RefreshTimer:
    """Repeating display refresh with explicit cancellation.

    Scheduling goes through ``after``/``after_cancel`` so a Tk host can pass
    ``widget.after``/``widget.after_cancel`` and tests can drive ticks by hand.
    """

    def __init__(
        self,
        interval_ms: int = 100,
        *,
        after: AfterFn = thread_after,
        after_cancel: AfterCancelFn = thread_after_cancel,
        logger: Optional[LoggerFn] = None,
    ) -> None:
        self.interval_ms = self._clamp(interval_ms)
        self._after = after
        self._after_cancel = after_cancel
        self._logger = logger or _noop_log
        self._handle: object | None = None
        self._callback: Callable[[], None] | None = None
        self._lock = threading.RLock()

    @property
    def running(self) -> bool:
        return self._callback is not None

    def start(self, callback: Callable[[], None]) -> object:
        self.stop()
        with self._lock:
            self._callback = callback
            self._handle = self._after(self.interval_ms, self._run)
            return self._handle

    def stop(self) -> None:
        with self._lock:
            handle = self._handle
            self._handle = None
            self._callback = None
        if handle is not None:
            try:
                self._after_cancel(handle)
            except Exception as exc:
                self._log("Refresh timer cancel failed: %s", exc)

    def _run(self) -> None:
        with self._lock:
            callback = self._callback
            self._handle = None
        if callback is None:
            return
        try:
            callback()
        except Exception as exc:
            self._log("Refresh tick failed: %s", exc)
        finally:
            with self._lock:
                # stop() during the callback clears _callback; do not reschedule then.
                if self._callback is callback and self._handle is None:
                    self._handle = self._after(self.interval_ms, self._run)

    @staticmethod
    def _clamp(value: int) -> int:
        try:
            return max(MIN_INTERVAL_MS, int(value))
        except (TypeError, ValueError):
            return MIN_INTERVAL_MS

    def _log(self, message: str, *args: object) -> None:
        try:
            self._logger(message, *args)
        except Exception:
            pass
