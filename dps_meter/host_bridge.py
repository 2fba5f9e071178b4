"""Contracts between the plugin and the game client hosting it."""
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, List, Mapping, Optional, Protocol, Tuple

PacketCallback = Callable[[Mapping[str, Any]], None]
SendObserver = Callable[[Any], None]


class HostLike(Protocol):
    before_send_hooks: "SendHookList"

    def hook_packet(self, name: str, callback: PacketCallback) -> None: ...
    def unhook_packet(self, name: str, callback: PacketCallback) -> None: ...
    def local_entity_id(self) -> Any: ...


class SendHookList:
    """Before-send observer list a host places in front of its packet sender.

    Observers see every outgoing packet and can neither alter nor block it;
    an observer that raises is logged and skipped.
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._observers: List[SendObserver] = []
        self._lock = threading.Lock()
        self._logger = logger or logging.getLogger("DPSMeter.Host")

    def __len__(self) -> int:
        return len(self._observers)

    def __contains__(self, observer: object) -> bool:
        return observer in self._observers

    def register(self, observer: SendObserver) -> None:
        with self._lock:
            if observer not in self._observers:
                self._observers.append(observer)

    def unregister(self, observer: SendObserver) -> None:
        with self._lock:
            try:
                self._observers.remove(observer)
            except ValueError:
                pass

    def dispatch(self, packet: Any) -> None:
        with self._lock:
            observers = list(self._observers)
        for observer in observers:
            try:
                observer(packet)
            except Exception as exc:
                self._logger.warning("Send observer %r failed: %s", observer, exc)

    def wrap(self, send: Callable[[Any], Any]) -> Callable[[Any], Any]:
        """Return a sender that notifies observers, then calls ``send`` unchanged."""

        def _send(packet: Any) -> Any:
            self.dispatch(packet)
            return send(packet)

        return _send


class HostHookSet:
    """Remembers what the plugin registered with the host so teardown is exact."""

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger
        self._packet_hooks: List[Tuple[str, PacketCallback]] = []
        self._send_observers: List[Tuple[SendHookList, SendObserver]] = []

    def hook_packet(self, host: HostLike, name: str, callback: PacketCallback) -> None:
        host.hook_packet(name, callback)
        self._packet_hooks.append((name, callback))

    def observe_sends(self, hooks: SendHookList, observer: SendObserver) -> None:
        hooks.register(observer)
        self._send_observers.append((hooks, observer))

    def uninstall(self, host: HostLike) -> None:
        for hooks, observer in self._send_observers:
            hooks.unregister(observer)
        self._send_observers.clear()
        unhook = getattr(host, "unhook_packet", None)
        for name, callback in self._packet_hooks:
            if not callable(unhook):
                break
            try:
                unhook(name, callback)
            except Exception as exc:
                self._logger.debug("Failed to unhook %s: %s", name, exc)
        if self._packet_hooks and not callable(unhook):
            # Hosts without unhook support keep calling; the runtime ignores them once stopped.
            self._logger.debug("Host cannot unhook packets; %d hooks stay registered", len(self._packet_hooks))
        self._packet_hooks.clear()
