"""Escalation decision: a pure function of an event and its durable window.

No store access and no counters here. The subscriber reads the window
count from the history store and hands it in, which keeps every decision
reproducible under redelivery.
"""
from datetime import datetime
from typing import Optional

from sukoon.shared.models import RiskEvent, RiskLevel, TriageDecision, TriagePriority
from sukoon.shared.utils import utc_now
from .config import TriagePolicy


def needs_history(event: RiskEvent) -> bool:
    """Only HIGH events are decided against the user's history."""
    return event.risk_level == RiskLevel.HIGH


def decide(
    event: RiskEvent,
    window_count: int,
    policy: Optional[TriagePolicy] = None,
    now: Optional[datetime] = None,
) -> TriageDecision:
    """Derive the triage decision for one risk event.

    Args:
        event: The delivered risk event
        window_count: Stored HIGH/CRITICAL events for the user in the
            trailing window ending at event.created_at, this event included
        policy: Escalation thresholds
        now: Triage timestamp (defaults to now, UTC)

    Returns:
        TriageDecision keyed by the event's deterministic decision id
    """
    policy = policy or TriagePolicy()

    if event.risk_level == RiskLevel.CRITICAL:
        priority, escalated = TriagePriority.URGENT, True
    elif event.risk_level == RiskLevel.HIGH and window_count >= policy.escalation_threshold:
        priority, escalated = TriagePriority.HIGH, True
    else:
        priority, escalated = TriagePriority.MEDIUM, False

    return TriageDecision(
        decision_id=event.decision_id,
        event_id=event.event_id,
        user_id=event.user_id,
        event_created_at=event.created_at,
        risk_level=event.risk_level,
        priority=priority,
        escalated=escalated,
        triage_timestamp=now or utc_now(),
        window_count=window_count,
    )
