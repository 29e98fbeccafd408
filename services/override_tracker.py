"""
Override Tracker

How often does the athlete say no? Rolling statistics over decided check-ins
feed one qualitative insight (also passed to the check-in coach so its
explanations adapt), and a behavior signal lands in the audit log once
overrides pile up.

Insight, first match wins:
    rate >= 50% with >= 3 overrides      frequently overrides
    >= 2 REST overrides                  pushes through rest
    >= 2 REDUCE_INTENSITY overrides      prefers full intensity
    rate <= 20% with >= 5 check-ins      trusts recommendations

Behavior signal: OVERRIDE_SIGNAL_THRESHOLD overrides inside the trailing
OVERRIDE_SIGNAL_WINDOW_DAYS, at most one signal per window.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence
from uuid import UUID

import logging
from sqlalchemy.orm import Session

from core.config import settings
from models import AuditLogEntry, DailyCheckin
from services.audit_log import (
    CHECKIN_OVERRIDDEN,
    OVERRIDE_BEHAVIOR_SIGNAL,
    TARGET_ATHLETE,
    record_audit_event,
)
from services.readiness_score import round_half_up

logger = logging.getLogger(__name__)

INSIGHT_FREQUENT_OVERRIDES = "Frequently overrides recommendations. Recalibrate readiness thresholds."
INSIGHT_PUSHES_THROUGH_REST = "Pushes through rest recommendations. Be more cautious when suggesting rest."
INSIGHT_PREFERS_FULL_INTENSITY = "Prefers full intensity. Raise the threshold for reducing intensity."
INSIGHT_TRUSTS_RECOMMENDATIONS = "Trusts recommendations. Calibration is working."

RECENT_OVERRIDES_LIMIT = 5


@dataclass
class RecentOverride:
    date: date
    decision: Optional[str]
    reason: Optional[str]


@dataclass
class OverrideStats:
    window_days: int
    total_checkins: int = 0
    total_overrides: int = 0
    override_rate: int = 0
    overrides_by_decision: Dict[str, int] = field(default_factory=dict)
    recent_overrides: List[RecentOverride] = field(default_factory=list)
    insight: Optional[str] = None


def derive_insight(
    total_checkins: int,
    total_overrides: int,
    override_rate: int,
    overrides_by_decision: Dict[str, int],
) -> Optional[str]:
    if override_rate >= 50 and total_overrides >= 3:
        return INSIGHT_FREQUENT_OVERRIDES
    if overrides_by_decision.get("REST", 0) >= 2:
        return INSIGHT_PUSHES_THROUGH_REST
    if overrides_by_decision.get("REDUCE_INTENSITY", 0) >= 2:
        return INSIGHT_PREFERS_FULL_INTENSITY
    if override_rate <= 20 and total_checkins >= 5:
        return INSIGHT_TRUSTS_RECOMMENDATIONS
    return None


def compute_override_stats(checkins: Sequence[DailyCheckin], window_days: int) -> OverrideStats:
    """Stats over check-ins that carry a decision. ``checkins`` may be in any order."""
    decided = [c for c in checkins if c.ai_decision is not None]
    overridden = sorted(
        (c for c in decided if c.user_accepted is False),
        key=lambda c: c.date,
        reverse=True,
    )
    total = len(decided)
    rate = round_half_up(len(overridden) / total * 100) if total else 0
    by_decision = dict(Counter(c.ai_decision for c in overridden))

    return OverrideStats(
        window_days=window_days,
        total_checkins=total,
        total_overrides=len(overridden),
        override_rate=rate,
        overrides_by_decision=by_decision,
        recent_overrides=[
            RecentOverride(date=c.date, decision=c.ai_decision, reason=c.user_override_reason)
            for c in overridden[:RECENT_OVERRIDES_LIMIT]
        ],
        insight=derive_insight(total, len(overridden), rate, by_decision),
    )


def load_override_stats(
    db: Session,
    athlete_id: UUID,
    days: Optional[int] = None,
    today: Optional[date] = None,
) -> OverrideStats:
    days = days or settings.OVERRIDE_STATS_WINDOW_DAYS
    today = today or date.today()
    checkins = (
        db.query(DailyCheckin)
        .filter(
            DailyCheckin.athlete_id == athlete_id,
            DailyCheckin.date > today - timedelta(days=days),
            DailyCheckin.date <= today,
            DailyCheckin.ai_decision.isnot(None),
        )
        .all()
    )
    return compute_override_stats(checkins, days)


def maybe_record_behavior_signal(
    db: Session,
    athlete_id: UUID,
    now: Optional[datetime] = None,
) -> Optional[AuditLogEntry]:
    """Write OVERRIDE_BEHAVIOR_SIGNAL when the trailing window crosses the threshold and has none yet."""
    now = now or datetime.now(timezone.utc)
    window_days = settings.OVERRIDE_SIGNAL_WINDOW_DAYS
    since = now - timedelta(days=window_days)

    def _count(action_type: str) -> int:
        return (
            db.query(AuditLogEntry)
            .filter(
                AuditLogEntry.athlete_id == athlete_id,
                AuditLogEntry.action_type == action_type,
                AuditLogEntry.created_at >= since,
            )
            .count()
        )

    override_count = _count(CHECKIN_OVERRIDDEN)
    if override_count < settings.OVERRIDE_SIGNAL_THRESHOLD:
        return None
    if _count(OVERRIDE_BEHAVIOR_SIGNAL) > 0:
        return None

    logger.info(
        "override_behavior_signal",
        extra={"extra_fields": {"athlete_id": str(athlete_id), "override_count": override_count}},
    )
    return record_audit_event(
        db,
        athlete_id=athlete_id,
        action_type=OVERRIDE_BEHAVIOR_SIGNAL,
        target_type=TARGET_ATHLETE,
        target_id=athlete_id,
        summary=f"Athlete overrode {override_count} recommendations in the last {window_days} days.",
        details={"override_count": override_count, "window_days": window_days},
    )
