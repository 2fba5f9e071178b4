"""Turn ledger snapshots into display payloads for the meter window."""
from __future__ import annotations

import math
from typing import Any, Dict, List

from .attribution import is_modifier_label
from .ledger import LabelRow, LedgerSnapshot

SNAPSHOT_EVENT = "DPSMeterSnapshot"
VISIBILITY_EVENT = "DPSMeterVisibility"
CAST_PLACEHOLDER = "-"


def format_number(value: float) -> str:
    """Thousands separators, keeping integral values free of a decimal part."""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return f"{value:,}"


def format_elapsed(elapsed_seconds: float) -> str:
    seconds = max(0.0, float(elapsed_seconds))
    minutes = math.floor(seconds / 60)
    return f"{minutes:02d}:{math.floor(seconds % 60):02d}"


def format_percentage(percentage: float) -> str:
    return f"{percentage:.1f}%"


def casts_display(row: LabelRow) -> str:
    # Modifier sublabels piggyback on another label's casts.
    if is_modifier_label(row.label) or row.casts == 0:
        return CAST_PLACEHOLDER
    return str(row.casts)


def row_payload(row: LabelRow) -> Dict[str, Any]:
    return {
        "name": row.label,
        "casts": casts_display(row),
        "damage": format_number(row.damage),
        "dps": format_number(math.floor(row.dps)),
        "percent": format_percentage(row.percentage),
        "hits": row.hits,
    }


def build_snapshot_payload(snapshot: LedgerSnapshot, *, active: bool) -> Dict[str, Any]:
    rows: List[Dict[str, Any]] = [row_payload(row) for row in snapshot.per_label]
    return {
        "event": SNAPSHOT_EVENT,
        "active": bool(active),
        "time": format_elapsed(snapshot.elapsed_seconds),
        "total_dps": format_number(snapshot.total_dps),
        "total_damage": format_number(snapshot.total_damage),
        "skills": rows,
    }


def build_visibility_payload(visible: bool, *, x: int, y: int) -> Dict[str, Any]:
    return {"event": VISIBILITY_EVENT, "visible": bool(visible), "x": int(x), "y": int(y)}
