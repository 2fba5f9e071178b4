"""Decide whether inbound damage belongs to the local player and label it."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

from .correlation import CorrelationStore, SkillUsageClaim
from .skill_catalog import SkillCatalog

_LOGGER = logging.getLogger("DPSMeter.Attribution")

KIND_ATTACK = "attack"
KIND_SKILL = "skill"

NORMAL_ATTACK_LABEL = "Normal Attack"
CRITICAL_LABEL = "Critical"
CRIT_SUFFIX = " (Crit)"
LUCKY_SUFFIX = " (Lucky)"
DAMAGE_MODIFIER_SUFFIXES = (CRIT_SUFFIX, LUCKY_SUFFIX)

CRITICAL_ACTION = 10
NORMAL_ATTACK_ACTIONS = frozenset({0, 7})

ATTACK_PACKETS = ("NOTIFY_ACT", "NOTIFY_ACT2", "NOTIFY_ACT3")
SKILL_PACKETS = ("NOTIFY_SKILL", "NOTIFY_SKILL2", "NOTIFY_SKILL_POSITION")
GROUND_SKILL_PACKET = "NOTIFY_GROUNDSKILL"


def _first_present(packet: Mapping[str, Any], keys: Iterable[str]) -> Any:
    # Packet variants use different field names for the same role.
    for key in keys:
        value = packet.get(key)
        if value:
            return value
    return None


def _skill_id(raw: Any) -> Optional[int]:
    if isinstance(raw, bool) or not isinstance(raw, int):
        return None
    return raw if raw > 0 else None


def _amount(raw: Any) -> Optional[float]:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return None
    return raw


@dataclass(frozen=True)
class DamageEvent:
    """Decoded damage notification; consumed once, never stored."""

    source_id: Any
    amount: Optional[float]
    skill_id: Optional[int] = None
    target_id: Any = None
    action_flag: Optional[int] = None
    kind: str = KIND_ATTACK

    @property
    def is_critical(self) -> bool:
        return self.action_flag == CRITICAL_ACTION

    @classmethod
    def from_packet(cls, packet: Mapping[str, Any], kind: str) -> "DamageEvent":
        return cls(
            source_id=_first_present(packet, ("GID", "AID")),
            amount=_amount(packet.get("damage")),
            skill_id=_skill_id(packet.get("SKID")),
            target_id=packet.get("targetID"),
            action_flag=packet.get("action"),
            kind=kind,
        )


@dataclass(frozen=True)
class GroundSkillPlacement:
    """A persistent ground effect placed on the map."""

    skill_id: int
    owner_id: Any = None

    @classmethod
    def from_packet(cls, packet: Mapping[str, Any]) -> Optional["GroundSkillPlacement"]:
        skill_id = _skill_id(packet.get("SKID"))
        if skill_id is None:
            return None
        return cls(skill_id=skill_id, owner_id=packet.get("AID"))


@dataclass(frozen=True)
class OutgoingIntent:
    """A skill cast or attack action the local player is about to send."""

    skill_id: Optional[int] = None
    action_code: Optional[int] = None
    target_id: Any = None

    @property
    def is_skill(self) -> bool:
        return self.skill_id is not None

    @classmethod
    def from_packet(cls, packet: Any) -> Optional["OutgoingIntent"]:
        if not isinstance(packet, Mapping):
            return None
        skill_id = _skill_id(packet.get("SKID"))
        if skill_id is not None:
            return cls(skill_id=skill_id, target_id=packet.get("targetID"))
        action = packet.get("action")
        target = packet.get("targetGID")
        if action is None or not target:
            return None
        if action not in NORMAL_ATTACK_ACTIONS:
            return None
        return cls(action_code=action, target_id=target)


@dataclass(frozen=True)
class AttributionResult:
    label: str
    amount: float
    skill_id: Optional[int] = None
    matched_claim: bool = False


def is_modifier_label(label: str) -> bool:
    return any(label.endswith(suffix) for suffix in DAMAGE_MODIFIER_SUFFIXES)


def classify_packet(name: str) -> Optional[str]:
    if name in ATTACK_PACKETS:
        return KIND_ATTACK
    if name in SKILL_PACKETS:
        return KIND_SKILL
    return None


class AttributionEngine:
    """Attribute damage events to the tracked player and resolve labels."""

    def __init__(self, store: CorrelationStore, catalog: SkillCatalog) -> None:
        self._store = store
        self._catalog = catalog

    def attribute(
        self,
        event: DamageEvent,
        local_player_id: Any,
        now: float,
        *,
        active: bool = True,
    ) -> Optional[AttributionResult]:
        if not active:
            return None
        amount = event.amount
        if amount is None or amount <= 0:
            _LOGGER.debug("Skipping event without positive damage: %r", event)
            return None
        if local_player_id is None:
            return None

        is_own = event.source_id is not None and event.source_id == local_player_id
        claim: Optional[SkillUsageClaim] = None
        if not is_own and event.skill_id is not None:
            candidate = self._store.lookup(event.skill_id, now)
            if candidate is not None and candidate.owner_id == local_player_id:
                is_own = True
                claim = candidate
                _LOGGER.debug("Damage matched own claim for skill %s (%s)", event.skill_id, candidate.skill_name)

        if not is_own:
            return None

        return AttributionResult(
            label=self._resolve_label(event, claim),
            amount=amount,
            skill_id=event.skill_id,
            matched_claim=claim is not None,
        )

    def _resolve_label(self, event: DamageEvent, claim: Optional[SkillUsageClaim]) -> str:
        if event.kind == KIND_SKILL and event.skill_id is not None:
            if claim is not None:
                label = claim.skill_name
            else:
                label = self._catalog.label_for(event.skill_id)
            if event.is_critical:
                label += CRIT_SUFFIX
            return label
        if event.is_critical:
            return CRITICAL_LABEL
        return NORMAL_ATTACK_LABEL
