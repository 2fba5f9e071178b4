from __future__ import annotations

import logging

from dps_meter.attribution import (
    CRITICAL_ACTION,
    KIND_ATTACK,
    KIND_SKILL,
    DamageEvent,
    GroundSkillPlacement,
    OutgoingIntent,
)
from dps_meter.logging_utils import attach_trace_handler, detach_trace_handler
from dps_meter.refresh_timer import RefreshTimer
from dps_meter.session import TrackingSession
from dps_meter.skill_catalog import SkillCatalog

P1 = "P1"


class ClockStub:
    def __init__(self, value: float = 0.0) -> None:
        self.value = value

    def now(self) -> float:
        return self.value


class AfterHarness:
    def __init__(self) -> None:
        self.scheduled: list[tuple[str, int, object]] = []
        self.cancelled: list[object] = []

    def after(self, ms: int, cb) -> str:
        handle = f"h{len(self.scheduled) + 1}"
        self.scheduled.append((handle, ms, cb))
        return handle

    def cancel(self, handle: object) -> None:
        self.cancelled.append(handle)


def build_session(identity=P1, names=None, refresh=None):
    clock = ClockStub()
    renders = []
    session = TrackingSession(
        lambda: identity,
        catalog=SkillCatalog(names or {5: "Fireball"}),
        clock=clock.now,
        refresh=refresh,
        on_render=renders.append,
    )
    return session, clock, renders


def test_claimed_skill_damage_from_unknown_source_is_attributed():
    session, clock, _renders = build_session()
    session.start()

    assert session.handle_intent(OutgoingIntent(skill_id=5)) == "Fireball"
    clock.value = 500
    result = session.handle_damage(DamageEvent(source_id=999, amount=300, skill_id=5, kind=KIND_SKILL))

    assert result.label == "Fireball"
    stat = session.ledger.stat("Fireball")
    assert (stat.damage, stat.hits, stat.casts) == (300, 1, 1)


def test_critical_normal_attack_counts_its_own_cast():
    session, _clock, _renders = build_session()
    session.start()

    session.handle_damage(DamageEvent(source_id=P1, amount=150, action_flag=CRITICAL_ACTION))

    stat = session.ledger.stat("Critical")
    assert (stat.damage, stat.hits, stat.casts) == (150, 1, 1)


def test_zero_damage_leaves_ledger_untouched():
    session, _clock, _renders = build_session()
    session.start()

    assert session.handle_damage(DamageEvent(source_id=P1, amount=0)) is None
    assert session.ledger.stats_by_label == {}
    assert session.ledger.total_damage == 0


def test_expired_claim_only_counts_direct_hits():
    session, clock, _renders = build_session(names={7: "Storm Gust"})
    session.start()
    session.handle_intent(OutgoingIntent(skill_id=7))
    clock.value = 61_000

    dropped = session.handle_damage(DamageEvent(source_id=999, amount=100, skill_id=7, kind=KIND_SKILL))
    direct = session.handle_damage(DamageEvent(source_id=P1, amount=100, skill_id=7, kind=KIND_SKILL))

    assert dropped is None
    assert direct.label == "Storm Gust"
    assert session.ledger.total_damage == 100


def test_snapshot_right_after_start_has_zero_dps():
    session, _clock, _renders = build_session()
    session.start()
    session.handle_damage(DamageEvent(source_id=P1, amount=50))

    snapshot = session.snapshot()
    assert snapshot.elapsed_seconds == 0
    assert snapshot.total_dps == 0


def test_start_stop_start_keeps_accumulated_totals_and_start_time():
    session, clock, _renders = build_session()
    assert session.start() is True
    assert session.start() is False
    session.handle_damage(DamageEvent(source_id=P1, amount=100))
    clock.value = 1_000
    assert session.stop() is True
    assert session.stop() is False
    clock.value = 5_000

    session.start()
    session.handle_damage(DamageEvent(source_id=P1, amount=100))

    assert session.ledger.total_damage == 200
    assert session.ledger.started_at == 0
    assert session.snapshot().elapsed_seconds == 5.0


def test_damage_while_idle_is_dropped_but_claims_still_recorded():
    session, _clock, _renders = build_session()

    assert session.handle_intent(OutgoingIntent(skill_id=5)) is None
    assert session.handle_damage(DamageEvent(source_id=P1, amount=100)) is None
    assert 5 in session.store
    assert session.ledger.stats_by_label == {}


def test_snapshot_is_frozen_while_stopped():
    session, clock, renders = build_session()
    session.start()
    session.handle_damage(DamageEvent(source_id=P1, amount=1_000))
    clock.value = 2_000
    session.stop()

    assert renders[-1].total_dps == 500
    clock.value = 10_000
    assert session.snapshot().elapsed_seconds == 2.0


def test_reset_while_idle_is_a_clear_with_a_render():
    session, _clock, renders = build_session()

    session.reset()

    assert not session.active
    assert session.ledger.stats_by_label == {}
    assert session.ledger.started_at is None
    assert len(renders) == 1
    assert renders[0].is_empty


def test_reset_while_active_restarts_with_fresh_start_time():
    session, clock, _renders = build_session()
    session.start()
    session.handle_damage(DamageEvent(source_id=P1, amount=100))
    clock.value = 3_000

    session.reset()

    assert session.active
    assert session.ledger.total_damage == 0
    assert session.ledger.started_at == 3_000


def test_total_equals_sum_of_labels_after_mixed_feed():
    session, _clock, _renders = build_session(names={5: "Fireball", 9: "Bolt"})
    session.start()
    session.handle_intent(OutgoingIntent(skill_id=9))
    session.handle_intent(OutgoingIntent(action_code=0, target_id=42))
    for event in (
        DamageEvent(source_id=P1, amount=10),
        DamageEvent(source_id=P1, amount=20, action_flag=CRITICAL_ACTION),
        DamageEvent(source_id=None, amount=30, skill_id=9, kind=KIND_SKILL),
        DamageEvent(source_id=P1, amount=40, skill_id=5, action_flag=CRITICAL_ACTION, kind=KIND_SKILL),
        DamageEvent(source_id="someone", amount=999, kind=KIND_ATTACK),
    ):
        session.handle_damage(event)

    stats = session.ledger.stats_by_label
    assert session.ledger.total_damage == sum(stat.damage for stat in stats.values()) == 100
    assert stats["Normal Attack"].casts == 1
    assert stats["Fireball (Crit)"].damage == 40


def test_ground_skill_claims_only_for_local_owner():
    session, clock, _renders = build_session(names={89: "Storm Gust"})
    session.start()

    assert session.handle_ground_skill(GroundSkillPlacement(skill_id=89, owner_id="other")) is False
    assert 89 not in session.store
    assert session.handle_ground_skill(GroundSkillPlacement(skill_id=89)) is True

    clock.value = 30_000
    result = session.handle_damage(DamageEvent(source_id=None, amount=70, skill_id=89, kind=KIND_SKILL))
    assert result.label == "Storm Gust"


def test_unknown_identity_attributes_nothing():
    session, _clock, _renders = build_session(identity=None)
    session.start()

    session.handle_intent(OutgoingIntent(skill_id=5))
    assert len(session.store) == 0
    assert session.handle_damage(DamageEvent(source_id=None, amount=10)) is None
    assert session.handle_ground_skill(GroundSkillPlacement(skill_id=5)) is False


def test_refresh_timer_follows_session_lifecycle():
    harness = AfterHarness()
    timer = RefreshTimer(100, after=harness.after, after_cancel=harness.cancel)
    session, _clock, renders = build_session(refresh=timer)

    session.start()
    assert timer.running
    assert harness.scheduled[-1][1] == 100

    _handle, _ms, tick = harness.scheduled[-1]
    tick()
    assert len(renders) == 1
    assert len(harness.scheduled) == 2

    session.stop()
    assert not timer.running
    assert harness.cancelled == ["h2"]
    # One final render after stop.
    assert len(renders) == 2


def test_render_errors_are_contained():
    session, _clock, _renders = build_session()

    def explode(_snapshot):
        raise RuntimeError("boom")

    session.set_renderer(explode)
    session.start()
    session.stop()
    assert not session.active


def test_resolver_only_catalog_names_claims_and_hits():
    catalog = SkillCatalog(resolver={5: "Fireball"}.get)
    clock = ClockStub()
    session = TrackingSession(lambda: P1, catalog=catalog, clock=clock.now)
    session.start()

    assert session.catalog is catalog
    assert session.handle_intent(OutgoingIntent(skill_id=5)) == "Fireball"
    clock.value = 200
    result = session.handle_damage(DamageEvent(source_id=999, amount=80, skill_id=5, kind=KIND_SKILL))

    assert result.label == "Fireball"
    assert result.matched_claim is True
    assert session.ledger.stat("Fireball").casts == 1


def test_hit_trace_records_how_damage_was_attributed():
    class CollectingHandler(logging.Handler):
        def __init__(self) -> None:
            super().__init__()
            self.messages: list[str] = []

        def emit(self, record: logging.LogRecord) -> None:
            self.messages.append(record.getMessage())

    handler = CollectingHandler()
    attach_trace_handler(handler)
    try:
        session, _clock, _renders = build_session()
        session.start()
        session.handle_intent(OutgoingIntent(skill_id=5))
        session.handle_damage(DamageEvent(source_id=999, amount=300, skill_id=5, kind=KIND_SKILL))
        session.handle_damage(DamageEvent(source_id=P1, amount=40))
    finally:
        detach_trace_handler(handler)

    hits = [message for message in handler.messages if message.startswith("hit ")]
    assert hits == [
        "hit label=Fireball amount=300 hits=1 via=claim",
        "hit label=Normal Attack amount=40 hits=1 via=source",
    ]
