"""Tracking session lifecycle: wires the feeds through attribution into the ledger."""
from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Optional

from .attribution import (
    NORMAL_ATTACK_LABEL,
    AttributionEngine,
    AttributionResult,
    DamageEvent,
    GroundSkillPlacement,
    OutgoingIntent,
)
from .correlation import DEFAULT_RETENTION_MS, CorrelationStore
from .ledger import AggregationLedger, LedgerSnapshot
from .refresh_timer import RefreshTimer
from .skill_catalog import SkillCatalog

_LOGGER = logging.getLogger("DPSMeter.Session")
_TRACE = logging.getLogger("DPSMeter.Trace")

RenderFn = Callable[[LedgerSnapshot], None]


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class TrackingSession:
    """Owns one correlation store and one ledger; Idle <-> Active state machine.

    Every mutation happens under a single lock because the refresh timer may
    tick on its own thread while the host delivers packets on another.
    """

    def __init__(
        self,
        identity: Callable[[], Any],
        *,
        catalog: Optional[SkillCatalog] = None,
        clock: Callable[[], float] = monotonic_ms,
        retention_ms: float = DEFAULT_RETENTION_MS,
        refresh: Optional[RefreshTimer] = None,
        on_render: Optional[RenderFn] = None,
    ) -> None:
        self._identity = identity
        self.catalog = catalog if catalog is not None else SkillCatalog()
        self._clock = clock
        self.store = CorrelationStore(retention_ms)
        self.ledger = AggregationLedger()
        self.engine = AttributionEngine(self.store, self.catalog)
        self._refresh = refresh
        self._on_render = on_render
        self._active = False
        self._stopped_at: Optional[float] = None
        self._lock = threading.RLock()

    @property
    def active(self) -> bool:
        return self._active

    def set_renderer(self, on_render: Optional[RenderFn]) -> None:
        self._on_render = on_render

    # Lifecycle ------------------------------------------------------------

    def start(self) -> bool:
        with self._lock:
            if self._active:
                return False
            now = self._clock()
            self._active = True
            self._stopped_at = None
            if self.ledger.started_at is None:
                self.ledger.started_at = now
            resumed = bool(self.ledger.stats_by_label)
        if self._refresh is not None:
            self._refresh.start(self.render)
        _LOGGER.info("Tracking %s", "resumed" if resumed else "started")
        return True

    def stop(self) -> bool:
        with self._lock:
            if not self._active:
                return False
            self._active = False
            self._stopped_at = self._clock()
        if self._refresh is not None:
            self._refresh.stop()
        _LOGGER.info("Tracking stopped (total damage %s)", self.ledger.total_damage)
        self.render()
        return True

    def reset(self) -> None:
        with self._lock:
            was_active = self._active
            if was_active:
                self.stop()
            self.ledger.clear()
            self._stopped_at = None
        _LOGGER.debug("Tracking data reset (was_active=%s)", was_active)
        if was_active:
            self.start()
        else:
            self.render()

    # Feeds ----------------------------------------------------------------

    def handle_damage(self, event: DamageEvent) -> Optional[AttributionResult]:
        with self._lock:
            now = self._clock()
            result = self.engine.attribute(event, self._identity(), now, active=self._active)
            if result is None:
                return None
            stat = self.ledger.record_damage(result.label, result.amount)
        _TRACE.debug(
            "hit label=%s amount=%s hits=%d via=%s",
            result.label,
            result.amount,
            stat.hits,
            "claim" if result.matched_claim else "source",
        )
        return result

    def handle_intent(self, intent: OutgoingIntent) -> Optional[str]:
        """Count a cast and, for skills, claim the skill id for the local player."""
        with self._lock:
            now = self._clock()
            if intent.is_skill:
                label = self.catalog.label_for(intent.skill_id)
                owner = self._identity()
                if owner is not None:
                    self.store.record_claim(intent.skill_id, owner, label, now)
            else:
                label = NORMAL_ATTACK_LABEL
            if not self._active:
                return None
            stat = self.ledger.record_cast(label)
        _TRACE.debug("cast label=%s casts=%d", label, stat.casts)
        return label

    def handle_ground_skill(self, placement: GroundSkillPlacement) -> bool:
        with self._lock:
            local_id = self._identity()
            if local_id is None:
                return False
            owner = placement.owner_id if placement.owner_id is not None else local_id
            if owner != local_id:
                _LOGGER.debug("Ignoring ground skill %s placed by %s", placement.skill_id, owner)
                return False
            label = self.catalog.label_for(placement.skill_id)
            self.store.record_claim(placement.skill_id, local_id, label, self._clock())
        _LOGGER.debug("Registered ground skill %s -> %s", placement.skill_id, label)
        return True

    # Read model -----------------------------------------------------------

    def snapshot(self) -> LedgerSnapshot:
        with self._lock:
            if not self._active and self._stopped_at is not None:
                now = self._stopped_at
            else:
                now = self._clock()
            return self.ledger.snapshot(now)

    def render(self) -> None:
        callback = self._on_render
        if callback is None:
            return
        try:
            callback(self.snapshot())
        except Exception as exc:
            _LOGGER.warning("Meter render failed: %s", exc)
