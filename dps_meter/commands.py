"""Chat commands for driving the meter without touching its window.

The game keeps keyboard focus while playing, so the quickest way to start or
reset a measurement mid-fight is a short bang command typed into chat
(``!dps start``, ``!dps reset`` ...). The host hands every outgoing chat line
to :meth:`MeterCommandHelper.handle_message`; lines that match are consumed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

_LOGGER = logging.getLogger("DPSMeter.Commands")

DEFAULT_COMMAND_PREFIX = "!dps"


@dataclass
class _MeterCommandContext:
    """Callbacks the helper dispatches to."""

    send_message: Callable[[str], None]
    start: Callable[[], None]
    stop: Callable[[], None]
    reset: Callable[[], None]
    set_visible: Callable[[Optional[bool]], None]
    status: Optional[Callable[[], str]] = None


class MeterCommandHelper:
    """Parse chat lines and dispatch meter commands."""

    def __init__(self, context: _MeterCommandContext, prefix: str = DEFAULT_COMMAND_PREFIX) -> None:
        self._ctx = context
        self._prefix = normalise_prefix(prefix)

    @property
    def prefix(self) -> str:
        return self._prefix

    def help_text(self) -> str:
        p = self._prefix
        return f"DPS Meter commands: {p} start, {p} stop, {p} reset, {p} show, {p} hide, {p} toggle, {p} status"

    def handle_message(self, raw_message: object) -> bool:
        """Returns ``True`` when the line was a meter command."""

        if not isinstance(raw_message, str):
            return False
        tokens = raw_message.strip().split()
        if not tokens or tokens[0].lower() != self._prefix:
            return False
        handled = self._dispatch([token.lower() for token in tokens[1:]])
        if handled:
            _LOGGER.debug("Handled meter command: %s", raw_message.strip())
        return handled

    def _dispatch(self, args: list[str]) -> bool:
        if not args:
            self._invoke(lambda: self._ctx.set_visible(None), "Meter window toggled.")
            return True

        action = args[0]
        if action in {"help", "?"}:
            self._ctx.send_message(self.help_text())
        elif action in {"start", "go"}:
            self._invoke(self._ctx.start, "DPS tracking started.")
        elif action in {"stop", "pause"}:
            self._invoke(self._ctx.stop, "DPS tracking stopped.")
        elif action in {"reset", "clear"}:
            self._invoke(self._ctx.reset, "DPS tracking reset.")
        elif action in {"show", "open"}:
            self._invoke(lambda: self._ctx.set_visible(True), "Meter window shown.")
        elif action in {"hide", "close"}:
            self._invoke(lambda: self._ctx.set_visible(False), "Meter window hidden.")
        elif action == "toggle":
            self._invoke(lambda: self._ctx.set_visible(None), "Meter window toggled.")
        elif action == "status":
            self._emit_status()
        else:
            self._ctx.send_message(f"Unknown meter command: {action}. Try {self._prefix} help.")
        return True

    def _emit_status(self) -> None:
        if self._ctx.status is None:
            self._ctx.send_message("Meter status is unavailable right now.")
            return
        self._ctx.send_message(self._ctx.status())

    def _invoke(self, callback: Callable[[], None], success_message: str) -> None:
        try:
            callback()
        except RuntimeError as exc:
            self._ctx.send_message(f"DPS Meter unavailable: {exc}")
        except Exception as exc:  # pragma: no cover - defensive guard
            _LOGGER.warning("Meter command callback failed: %s", exc)
            self._ctx.send_message("DPS Meter command failed; see the client log.")
        else:
            self._ctx.send_message(success_message)


def normalise_prefix(prefix: Optional[str]) -> str:
    token = (prefix or "").strip().lower()
    if not token:
        return DEFAULT_COMMAND_PREFIX
    if not token.startswith("!"):
        token = "!" + token
    return token.split()[0]


def build_command_helper(
    plugin_runtime: object,
    prefix: str = DEFAULT_COMMAND_PREFIX,
    logger: Optional[logging.Logger] = None,
) -> MeterCommandHelper:
    """Construct a :class:`MeterCommandHelper` bound to the plugin runtime."""

    log = logger or _LOGGER

    def _send_chat_message(text: str) -> None:
        try:
            plugin_runtime.send_chat_message(text)
        except Exception as exc:  # pragma: no cover - defensive guard
            log.warning("Failed to send meter reply '%s': %s", text, exc)

    context = _MeterCommandContext(
        send_message=_send_chat_message,
        start=plugin_runtime.start_tracking,
        stop=plugin_runtime.stop_tracking,
        reset=plugin_runtime.reset_tracking,
        set_visible=plugin_runtime.toggle_visibility,
        status=getattr(plugin_runtime, "status_line", None),
    )
    return MeterCommandHelper(context, prefix=prefix)
