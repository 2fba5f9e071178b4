"""Time-windowed ownership claims used to correlate anonymous skill damage."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional

DEFAULT_RETENTION_MS = 60_000


@dataclass(frozen=True)
class SkillUsageClaim:
    """Most recent caster of a skill id, stamped with a monotonic ms clock."""

    skill_id: int
    owner_id: Any
    skill_name: str
    claimed_at: float

    def age(self, now: float) -> float:
        return now - self.claimed_at


class CorrelationStore:
    """Bounded map of skill id -> latest :class:`SkillUsageClaim`.

    Server damage notifications for skills only carry the skill id, so the
    caster has to be recovered from the last claim recorded for that id.
    Ground-effect skills keep hitting long after the cast, hence the generous
    retention window. Eviction happens on writes; reads also check the age so
    a lookup after a long quiet period never returns a stale claim.
    """

    def __init__(self, retention_ms: float = DEFAULT_RETENTION_MS) -> None:
        self._retention_ms = max(0.0, float(retention_ms))
        self._claims: Dict[int, SkillUsageClaim] = {}

    @property
    def retention_ms(self) -> float:
        return self._retention_ms

    def __len__(self) -> int:
        return len(self._claims)

    def __contains__(self, skill_id: object) -> bool:
        return skill_id in self._claims

    def __iter__(self) -> Iterator[SkillUsageClaim]:
        return iter(list(self._claims.values()))

    def record_claim(self, skill_id: int, owner_id: Any, skill_name: str, now: float) -> SkillUsageClaim:
        claim = SkillUsageClaim(skill_id=skill_id, owner_id=owner_id, skill_name=skill_name, claimed_at=now)
        self._claims[skill_id] = claim
        self.purge(now)
        return claim

    def lookup(self, skill_id: Optional[int], now: float) -> Optional[SkillUsageClaim]:
        if skill_id is None:
            return None
        claim = self._claims.get(skill_id)
        if claim is None or self._expired(claim, now):
            return None
        return claim

    def purge(self, now: float) -> int:
        """Drop every claim past the retention window; returns how many went."""
        stale = [skid for skid, claim in self._claims.items() if self._expired(claim, now)]
        for skid in stale:
            del self._claims[skid]
        return len(stale)

    def clear(self) -> None:
        self._claims.clear()

    def _expired(self, claim: SkillUsageClaim, now: float) -> bool:
        return claim.age(now) > self._retention_ms
