"""
Lightweight analytics event sink.

Handlers subscribe by event name; ``track`` fans out to them. The sink is
fire-and-forget: a failing handler is logged and never reaches the caller.
"""
import logging
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

logger = logging.getLogger(__name__)

# Event registry: event_name -> list of handlers
_event_handlers: Dict[str, List[Callable]] = {}


def subscribe(event_name: str, handler: Callable):
    """
    Subscribe a handler function to an event.
    
    Example:
        def on_submitted(athlete_id: str, properties: dict):
            ...
        subscribe(EVENT_CHECKIN_SUBMITTED, on_submitted)
    """
    _event_handlers.setdefault(event_name, []).append(handler)
    logger.debug(f"Subscribed handler to event: {event_name}")


def unsubscribe_all(event_name: Optional[str] = None) -> None:
    if event_name is None:
        _event_handlers.clear()
    else:
        _event_handlers.pop(event_name, None)


def track(event_name: str, athlete_id: UUID, properties: Optional[Dict[str, Any]] = None) -> None:
    """Record an analytics event: structured log line plus subscribed handlers."""
    payload = {
        "event": event_name,
        "athlete_id": str(athlete_id),
        **(properties or {}),
    }
    try:
        logger.info("analytics_event", extra={"extra_fields": payload})
    except Exception:
        # Never fail requests due to telemetry.
        pass

    for handler in _event_handlers.get(event_name, []):
        try:
            handler(athlete_id=str(athlete_id), properties=dict(properties or {}))
        except Exception as e:
            logger.error(f"Error in event handler for {event_name}: {e}", exc_info=True)


# Event names
EVENT_CHECKIN_SUBMITTED = "checkin_submitted"
EVENT_PREMIUM_CHECKIN_SUBMITTED = "premium_checkin_submitted"
EVENT_RECOMMENDATION_ACCEPTED = "checkin_recommendation_accepted"
EVENT_RECOMMENDATION_OVERRIDDEN = "checkin_recommendation_overridden"
EVENT_ADAPTATION_UNDONE = "checkin_adaptation_undone"
EVENT_PROPOSAL_DECIDED = "plan_change_proposal_decided"
