"""Per-label damage/hit/cast accumulator and its read model."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .attribution import CRITICAL_LABEL


@dataclass
class SkillStat:
    damage: float = 0
    hits: int = 0
    casts: int = 0


@dataclass(frozen=True)
class LabelRow:
    label: str
    damage: float
    hits: int
    dps: float
    percentage: float
    casts: int


@dataclass(frozen=True)
class LedgerSnapshot:
    elapsed_seconds: float
    total_damage: float
    total_dps: int
    per_label: Tuple[LabelRow, ...]

    @property
    def is_empty(self) -> bool:
        return not self.per_label


class AggregationLedger:
    """Accumulates damage per label; totals always equal the per-label sum."""

    def __init__(self) -> None:
        self.started_at: Optional[float] = None
        self._total_damage: float = 0
        self._stats: Dict[str, SkillStat] = {}

    @property
    def total_damage(self) -> float:
        return self._total_damage

    @property
    def stats_by_label(self) -> Dict[str, SkillStat]:
        return {label: SkillStat(s.damage, s.hits, s.casts) for label, s in self._stats.items()}

    def stat(self, label: str) -> Optional[SkillStat]:
        return self._stats.get(label)

    def record_damage(self, label: str, amount: float) -> SkillStat:
        stat = self._stats.setdefault(label, SkillStat())
        stat.damage += amount
        stat.hits += 1
        self._total_damage += amount
        # Critical normal attacks never produce a separate cast intent.
        if label == CRITICAL_LABEL:
            stat.casts += 1
        return stat

    def record_cast(self, label: str) -> SkillStat:
        stat = self._stats.setdefault(label, SkillStat())
        stat.casts += 1
        return stat

    def clear(self) -> None:
        self.started_at = None
        self._total_damage = 0
        self._stats = {}

    def elapsed_seconds(self, now: float) -> float:
        if self.started_at is None:
            return 0.0
        return max(0.0, (now - self.started_at) / 1000.0)

    def snapshot(self, now: float) -> LedgerSnapshot:
        elapsed = self.elapsed_seconds(now)
        total = self._total_damage
        total_dps = math.floor(total / elapsed) if elapsed > 0 else 0
        rows: List[LabelRow] = []
        for label, stat in self._stats.items():
            rows.append(
                LabelRow(
                    label=label,
                    damage=stat.damage,
                    hits=stat.hits,
                    dps=stat.damage / elapsed if elapsed > 0 else 0.0,
                    percentage=100.0 * stat.damage / total if total > 0 else 0.0,
                    casts=stat.casts,
                )
            )
        # sorted() is stable, so equal shares keep insertion order.
        rows.sort(key=lambda row: row.percentage, reverse=True)
        return LedgerSnapshot(
            elapsed_seconds=elapsed,
            total_damage=total,
            total_dps=total_dps,
            per_label=tuple(rows),
        )
