"""
Plan Rigidity Gate

Decides whether a scheduled session is protected from direct edits. A locked
session can only change through an explicitly accepted plan change proposal.

    LOCKED_TODAY    today only
    LOCKED_1_DAY    today and tomorrow
    LOCKED_2_DAYS   today + 2 days
    LOCKED_3_DAYS   today + 3 days
    FLEXIBLE_WEEK   never locked

Past sessions are not locked (offset < 0). Unknown settings fall back to the
configured default (LOCKED_1_DAY unless DEFAULT_PLAN_RIGIDITY says otherwise).
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional, Union

import logging
from sqlalchemy.orm import Session

from core.config import settings
from models import Athlete
from services.audit_log import SETTINGS_CHANGED, TARGET_ATHLETE, record_audit_event

logger = logging.getLogger(__name__)


class PlanRigidity(str, Enum):
    LOCKED_TODAY = "LOCKED_TODAY"
    LOCKED_1_DAY = "LOCKED_1_DAY"
    LOCKED_2_DAYS = "LOCKED_2_DAYS"
    LOCKED_3_DAYS = "LOCKED_3_DAYS"
    FLEXIBLE_WEEK = "FLEXIBLE_WEEK"


DEFAULT_PLAN_RIGIDITY = PlanRigidity.__members__.get(settings.DEFAULT_PLAN_RIGIDITY, PlanRigidity.LOCKED_1_DAY)

LOCK_WINDOW_DAYS = {
    PlanRigidity.LOCKED_TODAY: 0,
    PlanRigidity.LOCKED_1_DAY: 1,
    PlanRigidity.LOCKED_2_DAYS: 2,
    PlanRigidity.LOCKED_3_DAYS: 3,
    PlanRigidity.FLEXIBLE_WEEK: None,
}


def resolve_plan_rigidity(value: Union[str, PlanRigidity, None]) -> PlanRigidity:
    if isinstance(value, PlanRigidity):
        return value
    try:
        return PlanRigidity(value)
    except ValueError:
        return DEFAULT_PLAN_RIGIDITY


def lock_window_days(setting: Union[str, PlanRigidity, None]) -> Optional[int]:
    """Days ahead of today that stay locked, or None when nothing locks."""
    return LOCK_WINDOW_DAYS[resolve_plan_rigidity(setting)]


def is_workout_locked(
    workout_date: Union[date, datetime],
    setting: Union[str, PlanRigidity, None],
    today: Optional[date] = None,
) -> bool:
    window = lock_window_days(setting)
    if window is None:
        return False
    if isinstance(workout_date, datetime):
        workout_date = workout_date.date()
    today = today or date.today()
    offset = (workout_date - today).days
    return 0 <= offset <= window


def get_plan_rigidity(athlete: Athlete) -> PlanRigidity:
    return resolve_plan_rigidity(athlete.plan_rigidity)


def update_plan_rigidity(db: Session, athlete: Athlete, value: str) -> PlanRigidity:
    """Persist a new setting and audit the change. Unknown values are rejected by the caller's schema."""
    new_setting = PlanRigidity(value)
    previous = get_plan_rigidity(athlete)
    athlete.plan_rigidity = new_setting.value
    db.flush()

    record_audit_event(
        db,
        athlete_id=athlete.id,
        action_type=SETTINGS_CHANGED,
        target_type=TARGET_ATHLETE,
        target_id=athlete.id,
        summary=f"Plan rigidity changed from {previous.value} to {new_setting.value}.",
        details={"setting": "plan_rigidity", "before": previous.value, "after": new_setting.value},
    )
    logger.info(
        "plan_rigidity_updated",
        extra={"extra_fields": {"athlete_id": str(athlete.id), "plan_rigidity": new_setting.value}},
    )
    return new_setting
