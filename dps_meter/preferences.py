"""Preferences for the DPS Meter plugin."""
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

from .commands import DEFAULT_COMMAND_PREFIX, normalise_prefix
from .correlation import DEFAULT_RETENTION_MS
from .refresh_timer import MIN_INTERVAL_MS

PREFERENCES_FILE = "dps_meter_settings.json"
DEFAULT_REFRESH_MS = 100
MAX_REFRESH_MS = 5_000
MIN_RETENTION_MS = 1_000
MAX_RETENTION_MS = 600_000


def _coerce_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass
class Preferences:
    """Simple JSON-backed preferences store."""

    plugin_dir: Path
    show_meter: bool = False
    x: int = 100
    y: int = 100
    refresh_interval_ms: int = DEFAULT_REFRESH_MS
    claim_retention_ms: int = DEFAULT_RETENTION_MS
    command_prefix: str = DEFAULT_COMMAND_PREFIX
    broadcast_snapshots: bool = False
    log_events: bool = False
    trace_log_retention: int = 3

    def __post_init__(self) -> None:
        self.plugin_dir = Path(self.plugin_dir)
        self._path = self.plugin_dir / PREFERENCES_FILE
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    # Persistence ---------------------------------------------------------

    def _load(self) -> None:
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return
        except (OSError, json.JSONDecodeError):
            return
        if not isinstance(data, dict):
            return
        self.show_meter = bool(data.get("show_meter", False))
        self.x = max(0, _coerce_int(data.get("x", 100), 100))
        self.y = max(0, _coerce_int(data.get("y", 100), 100))
        refresh = _coerce_int(data.get("refresh_interval_ms", DEFAULT_REFRESH_MS), DEFAULT_REFRESH_MS)
        self.refresh_interval_ms = max(MIN_INTERVAL_MS, min(refresh, MAX_REFRESH_MS))
        retention = _coerce_int(data.get("claim_retention_ms", DEFAULT_RETENTION_MS), DEFAULT_RETENTION_MS)
        self.claim_retention_ms = max(MIN_RETENTION_MS, min(retention, MAX_RETENTION_MS))
        self.command_prefix = normalise_prefix(data.get("command_prefix"))
        self.broadcast_snapshots = bool(data.get("broadcast_snapshots", False))
        self.log_events = bool(data.get("log_events", False))
        self.trace_log_retention = max(1, _coerce_int(data.get("trace_log_retention", 3), 3))

    def save(self) -> None:
        payload: Dict[str, Any] = {
            "show_meter": bool(self.show_meter),
            "x": int(self.x),
            "y": int(self.y),
            "refresh_interval_ms": int(self.refresh_interval_ms),
            "claim_retention_ms": int(self.claim_retention_ms),
            "command_prefix": str(self.command_prefix or DEFAULT_COMMAND_PREFIX),
            "broadcast_snapshots": bool(self.broadcast_snapshots),
            "log_events": bool(self.log_events),
            "trace_log_retention": int(self.trace_log_retention),
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
