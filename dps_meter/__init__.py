from .attribution import AttributionEngine, AttributionResult, DamageEvent, GroundSkillPlacement, OutgoingIntent
from .correlation import CorrelationStore, SkillUsageClaim
from .ledger import AggregationLedger, LabelRow, LedgerSnapshot, SkillStat
from .session import TrackingSession
from .skill_catalog import SkillCatalog

__all__ = [
    "AggregationLedger",
    "AttributionEngine",
    "AttributionResult",
    "CorrelationStore",
    "DamageEvent",
    "GroundSkillPlacement",
    "LabelRow",
    "LedgerSnapshot",
    "OutgoingIntent",
    "SkillCatalog",
    "SkillStat",
    "SkillUsageClaim",
    "TrackingSession",
]
