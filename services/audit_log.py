"""
Check-in Engine Audit Log

Append-only record of every state-changing action the engine takes
(adaptations, proposals, overrides, undo, conflict decisions, behavior
signals, skipped pre-training checks, settings changes).

Safety:
- Never throws (does not block the primary operation).
- Details must be JSON-serializable and must not contain secrets.
"""

from typing import Any, Dict, Optional
from uuid import UUID

import logging
from sqlalchemy.orm import Session

from models import AuditLogEntry

logger = logging.getLogger(__name__)

# Action types
AI_WORKOUT_ADAPTED = "AI_WORKOUT_ADAPTED"
CHECKIN_ACCEPTED_NEEDS_PROPOSAL = "CHECKIN_ACCEPTED_NEEDS_PROPOSAL"
CHECKIN_OVERRIDDEN = "CHECKIN_OVERRIDDEN"
CHECKIN_UNDONE = "CHECKIN_UNDONE"
CHECKIN_CONFLICT_ACCEPTED = "CHECKIN_CONFLICT_ACCEPTED"
CHECKIN_CONFLICT_DISMISSED = "CHECKIN_CONFLICT_DISMISSED"
OVERRIDE_BEHAVIOR_SIGNAL = "OVERRIDE_BEHAVIOR_SIGNAL"
PLAN_CHANGE_PROPOSED = "PLAN_CHANGE_PROPOSED"
PLAN_CHANGE_ACCEPTED = "PLAN_CHANGE_ACCEPTED"
PLAN_CHANGE_DECLINED = "PLAN_CHANGE_DECLINED"
PRETRAINING_SKIPPED = "PRETRAINING_SKIPPED"
SETTINGS_CHANGED = "SETTINGS_CHANGED"

# Target types
TARGET_CHECKIN = "CHECKIN"
TARGET_WORKOUT = "WORKOUT"
TARGET_PROPOSAL = "PROPOSAL"
TARGET_ATHLETE = "ATHLETE"


def record_audit_event(
    db: Session,
    *,
    athlete_id: UUID,
    action_type: str,
    target_type: str,
    summary: str,
    target_id: Optional[Any] = None,
    details: Optional[Dict[str, Any]] = None,
    actor_id: Optional[UUID] = None,
) -> Optional[AuditLogEntry]:
    """
    Best-effort append of one audit row. Returns the row, or None if the write failed.
    """
    entry = None
    try:
        entry = AuditLogEntry(
            athlete_id=athlete_id,
            actor_id=actor_id or athlete_id,
            action_type=action_type,
            target_type=target_type,
            target_id=str(target_id) if target_id is not None else None,
            summary=summary,
            details=details or {},
        )
        db.add(entry)
        db.flush()
        return entry
    except Exception as e:
        logger.exception("Audit logging failed for %s: %s", action_type, str(e))
        if entry is not None and entry in db:
            try:
                db.expunge(entry)
            except Exception:
                logger.warning("Could not discard failed audit row for %s", action_type)
        return None
