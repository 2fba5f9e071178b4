"""Primary entry point for the DPS Meter plugin."""
from __future__ import annotations

import json
import logging
import os
import threading
from functools import partial
from pathlib import Path
from typing import Any, List, Mapping, Optional

if __package__:
    from .version import __version__ as DPS_METER_VERSION
    from .dps_meter.attribution import (
        ATTACK_PACKETS,
        GROUND_SKILL_PACKET,
        SKILL_PACKETS,
        DamageEvent,
        GroundSkillPlacement,
        OutgoingIntent,
        classify_packet,
    )
    from .dps_meter.commands import MeterCommandHelper, build_command_helper
    from .dps_meter.display import DisplayPublisher
    from .dps_meter.host_bridge import HostHookSet, HostLike
    from .dps_meter.ledger import LedgerSnapshot
    from .dps_meter.logging_utils import attach_trace_handler, build_rotating_trace_handler, detach_trace_handler
    from .dps_meter.preferences import Preferences
    from .dps_meter.presenter import build_snapshot_payload, build_visibility_payload, format_elapsed, format_number
    from .dps_meter.refresh_timer import RefreshTimer
    from .dps_meter.session import TrackingSession
    from .dps_meter.skill_catalog import SkillCatalog
    from .dps_meter.snapshot_server import SnapshotBroadcaster
else:  # pragma: no cover - host loads the plugin as a top-level module
    from version import __version__ as DPS_METER_VERSION
    from dps_meter.attribution import (
        ATTACK_PACKETS,
        GROUND_SKILL_PACKET,
        SKILL_PACKETS,
        DamageEvent,
        GroundSkillPlacement,
        OutgoingIntent,
        classify_packet,
    )
    from dps_meter.commands import MeterCommandHelper, build_command_helper
    from dps_meter.display import DisplayPublisher
    from dps_meter.host_bridge import HostHookSet, HostLike
    from dps_meter.ledger import LedgerSnapshot
    from dps_meter.logging_utils import attach_trace_handler, build_rotating_trace_handler, detach_trace_handler
    from dps_meter.preferences import Preferences
    from dps_meter.presenter import build_snapshot_payload, build_visibility_payload, format_elapsed, format_number
    from dps_meter.refresh_timer import RefreshTimer
    from dps_meter.session import TrackingSession
    from dps_meter.skill_catalog import SkillCatalog
    from dps_meter.snapshot_server import SnapshotBroadcaster

PLUGIN_NAME = "DPSMeter"
PLUGIN_VERSION = DPS_METER_VERSION
LOGGER_NAME = "DPSMeter"
LOG_TAG = "DPSMeter"
LOG_LEVEL_ENV = "DPS_METER_LOG_LEVEL"
PORT_FILE = "port.json"


DEFAULT_LOG_LEVEL = logging.INFO
_LEVEL_NAME_MAP = {
    "CRITICAL": logging.CRITICAL,
    "FATAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "TRACE": logging.DEBUG,
}

_host_logger: Optional[logging.Logger] = None


def _coerce_level(raw: Any) -> Optional[int]:
    if raw is None:
        return None
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str):
        token = raw.strip().upper()
        if token.isdigit():
            return int(token)
        return _LEVEL_NAME_MAP.get(token)
    return None


def _resolve_log_level() -> int:
    candidates: List[Optional[int]] = [_coerce_level(os.getenv(LOG_LEVEL_ENV))]
    if _host_logger is not None:
        candidates.append(_host_logger.getEffectiveLevel())
    candidates.append(logging.getLogger().getEffectiveLevel())
    for level in candidates:
        if isinstance(level, int) and level != logging.NOTSET:
            return level
    return DEFAULT_LOG_LEVEL


def _ensure_plugin_logger_level() -> int:
    level = _resolve_log_level()
    logging.getLogger(LOGGER_NAME).setLevel(level)
    return level


class _HostLogHandler(logging.Handler):
    """Logging bridge that forwards plugin records to the host's logger."""

    def emit(self, record: logging.LogRecord) -> None:
        if record.levelno < _resolve_log_level():
            return
        message = self.format(record)
        host_logger = _host_logger
        if host_logger is not None:
            try:
                if host_logger.isEnabledFor(record.levelno):
                    host_logger.log(record.levelno, message)
                return
            except Exception:
                pass
        root_logger = logging.getLogger()
        if root_logger.isEnabledFor(record.levelno):
            root_logger.log(record.levelno, message)


def _configure_logger() -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    _ensure_plugin_logger_level()
    if not any(getattr(handler, "_dps_meter_handler", False) for handler in logger.handlers):
        handler = _HostLogHandler()
        handler._dps_meter_handler = True  # type: ignore[attr-defined]
        formatter = logging.Formatter(f"[%(asctime)s] [{LOG_TAG}] %(message)s", "%H:%M:%S")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.propagate = False
    return logger


def _bind_host_logger(host: Any) -> None:
    global _host_logger
    candidate = getattr(host, "logger", None)
    _host_logger = candidate if isinstance(candidate, logging.Logger) else None
    _ensure_plugin_logger_level()


LOGGER = _configure_logger()


def _log(message: str) -> None:
    LOGGER.info(message)


class _PluginRuntime:
    """Encapsulates plugin state so the host only sees the hook functions."""

    def __init__(self, plugin_dir: str, preferences: Preferences, host: HostLike) -> None:
        self.plugin_dir = Path(plugin_dir)
        self.host = host
        self._preferences = preferences
        self._lock = threading.Lock()
        self._running = False
        self._visible = bool(preferences.show_meter)
        self._hooks = HostHookSet(LOGGER)
        self._trace_handler: Optional[logging.Handler] = None

        self.catalog = SkillCatalog.from_plugin_dir(self.plugin_dir, resolver=getattr(host, "skill_name", None))
        self.refresh = self._build_refresh_timer()
        self.session = TrackingSession(
            self._local_entity_id,
            catalog=self.catalog,
            retention_ms=preferences.claim_retention_ms,
            refresh=self.refresh,
            on_render=self._render_snapshot,
        )
        self.publisher = DisplayPublisher()
        host_sink = getattr(host, "render_meter", None)
        if callable(host_sink):
            self.publisher.register(host_sink)
        self.broadcaster: Optional[SnapshotBroadcaster] = (
            SnapshotBroadcaster() if preferences.broadcast_snapshots else None
        )
        self.command_helper: MeterCommandHelper = build_command_helper(self, preferences.command_prefix, LOGGER)

    @property
    def running(self) -> bool:
        return self._running

    @property
    def visible(self) -> bool:
        return self._visible

    # Lifecycle ------------------------------------------------------------

    def start(self) -> str:
        with self._lock:
            if self._running:
                return PLUGIN_NAME
            _ensure_plugin_logger_level()
            self._install_hooks()
            self._start_broadcaster()
            self._configure_trace_log()
            self._running = True
        self._publish_visibility()
        _log(f"Plugin started (version {PLUGIN_VERSION}); type '{self.command_helper.prefix} help' in chat")
        return PLUGIN_NAME

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
        _log("Plugin stopping")
        self.session.stop()
        self.refresh.stop()
        self._hooks.uninstall(self.host)
        if self.broadcaster is not None:
            self.publisher.unregister(self.broadcaster.publish)
            self.broadcaster.stop()
        self._delete_port_file()
        detach_trace_handler(self._trace_handler)
        self._trace_handler = None

    # Host feeds -----------------------------------------------------------

    def handle_packet(self, name: str, packet: Mapping[str, Any]) -> None:
        if not self._running or not isinstance(packet, Mapping):
            return
        try:
            if name == GROUND_SKILL_PACKET:
                placement = GroundSkillPlacement.from_packet(packet)
                if placement is not None:
                    self.session.handle_ground_skill(placement)
                return
            kind = classify_packet(name)
            if kind is None:
                return
            self.session.handle_damage(DamageEvent.from_packet(packet, kind))
        except Exception as exc:
            LOGGER.exception("Failed to process %s packet: %s", name, exc)

    def observe_outgoing(self, packet: Any) -> None:
        """Before-send observer; never alters or blocks the packet."""
        if not self._running:
            return
        try:
            intent = OutgoingIntent.from_packet(packet)
            if intent is not None:
                self.session.handle_intent(intent)
        except Exception as exc:
            LOGGER.exception("Failed to inspect outgoing packet: %s", exc)

    def handle_chat(self, message: str) -> bool:
        return self.command_helper.handle_message(message)

    # Presentation surface -------------------------------------------------

    def start_tracking(self) -> None:
        self._require_running()
        self.session.start()

    def stop_tracking(self) -> None:
        self._require_running()
        self.session.stop()

    def reset_tracking(self) -> None:
        self._require_running()
        self.session.reset()

    def toggle_visibility(self, visible: Optional[bool] = None) -> bool:
        desired = (not self._visible) if visible is None else bool(visible)
        self._visible = desired
        self._preferences.show_meter = desired
        try:
            self._preferences.save()
        except OSError as exc:
            LOGGER.warning("Failed to save preferences after visibility change: %s", exc)
        self._publish_visibility()
        if desired:
            self.session.render()
        LOGGER.debug("Meter window %s", "shown" if desired else "hidden")
        return desired

    def status_line(self) -> str:
        snapshot = self.session.snapshot()
        state = "tracking" if self.session.active else "stopped"
        return (
            f"DPS {format_number(snapshot.total_dps)} | Damage {format_number(snapshot.total_damage)} "
            f"| {format_elapsed(snapshot.elapsed_seconds)} ({state})"
        )

    def send_chat_message(self, text: str) -> None:
        message = text.strip()
        if not message:
            raise ValueError("Message is empty")
        show = getattr(self.host, "show_chat_message", None)
        if callable(show):
            show(message)
        else:
            _log(message)

    # Helpers --------------------------------------------------------------

    def _require_running(self) -> None:
        if not self._running:
            raise RuntimeError("DPS Meter is not running")

    def _local_entity_id(self) -> Any:
        try:
            return self.host.local_entity_id()
        except Exception as exc:
            LOGGER.debug("Host identity lookup failed: %s", exc)
            return None

    def _build_refresh_timer(self) -> RefreshTimer:
        after = getattr(self.host, "after", None)
        after_cancel = getattr(self.host, "after_cancel", None)
        interval = self._preferences.refresh_interval_ms
        if callable(after) and callable(after_cancel):
            return RefreshTimer(interval, after=after, after_cancel=after_cancel, logger=LOGGER.debug)
        return RefreshTimer(interval, logger=LOGGER.debug)

    def _install_hooks(self) -> None:
        for name in ATTACK_PACKETS + SKILL_PACKETS + (GROUND_SKILL_PACKET,):
            self._hooks.hook_packet(self.host, name, partial(self.handle_packet, name))
        send_hooks = getattr(self.host, "before_send_hooks", None)
        if send_hooks is None:
            LOGGER.warning("Host exposes no before-send hooks; cast counts will stay empty.")
        else:
            self._hooks.observe_sends(send_hooks, self.observe_outgoing)

    def _start_broadcaster(self) -> None:
        if self.broadcaster is None:
            return
        if not self.broadcaster.start():
            _log("Snapshot server failed to start; display clients will not receive updates.")
            self._delete_port_file()
            return
        self.publisher.register(self.broadcaster.publish)
        self._write_port_file()

    def _configure_trace_log(self) -> None:
        if not self._preferences.log_events or self._trace_handler is not None:
            return
        try:
            handler = build_rotating_trace_handler(
                self.plugin_dir / "logs",
                retention=self._preferences.trace_log_retention,
            )
        except OSError as exc:
            LOGGER.warning("Failed to open hit trace log: %s", exc)
            return
        attach_trace_handler(handler)
        self._trace_handler = handler
        LOGGER.debug("Hit trace logging enabled under %s", self.plugin_dir / "logs")

    def _render_snapshot(self, snapshot: LedgerSnapshot) -> None:
        self.publisher.publish(build_snapshot_payload(snapshot, active=self.session.active))

    def _publish_visibility(self) -> None:
        self.publisher.publish(
            build_visibility_payload(self._visible, x=self._preferences.x, y=self._preferences.y)
        )

    def _write_port_file(self) -> None:
        if self.broadcaster is None:
            return
        data = {
            "port": self.broadcaster.port,
            "version": PLUGIN_VERSION,
        }
        target = self.plugin_dir / PORT_FILE
        try:
            target.write_text(json.dumps(data, indent=2), encoding="utf-8")
        except OSError as exc:
            LOGGER.warning("Failed to write %s: %s", PORT_FILE, exc)
            return
        _log(f"Wrote {PORT_FILE} with port {self.broadcaster.port}")

    def _delete_port_file(self) -> None:
        try:
            (self.plugin_dir / PORT_FILE).unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            LOGGER.debug("Failed to remove %s: %s", PORT_FILE, exc)


# Host hook functions -----------------------------------------------------

_plugin: Optional[_PluginRuntime] = None
_preferences: Optional[Preferences] = None


def plugin_start3(plugin_dir: str, host: HostLike) -> str:
    global _plugin, _preferences
    if _plugin is not None:
        return _plugin.start()
    _bind_host_logger(host)
    _log(f"Initialising DPS Meter plugin from {plugin_dir}")
    _preferences = Preferences(Path(plugin_dir))
    _plugin = _PluginRuntime(plugin_dir, _preferences, host)
    return _plugin.start()


def plugin_stop() -> None:
    global _plugin, _preferences
    if _plugin:
        try:
            _plugin.stop()
        finally:
            _plugin = None
    _preferences = None


def chat_command(message: str) -> bool:
    """Host hook for outgoing chat lines; ``True`` means the line was consumed."""
    if _plugin is None:
        return False
    try:
        return _plugin.handle_chat(message)
    except Exception as exc:
        LOGGER.exception("Failed to handle chat command: %s", exc)
        return False


def toggle_visibility() -> Optional[bool]:
    """Host hotkey hook (Alt+D in the stock client)."""
    if _plugin is None:
        return None
    try:
        return _plugin.toggle_visibility()
    except Exception as exc:
        LOGGER.exception("Failed to toggle meter visibility: %s", exc)
        return None


# Metadata expected by the host's plugin loader
name = PLUGIN_NAME
plugin_name = PLUGIN_NAME
version = PLUGIN_VERSION
