"""Shared domain models for the Sukoon risk pipeline."""
from .risk import (
    ESCALATION_LEVELS,
    NotificationEvent,
    RiskEvent,
    RiskLevel,
    TriageDecision,
    TriagePriority,
    event_digest,
)

__all__ = [
    "ESCALATION_LEVELS",
    "NotificationEvent",
    "RiskEvent",
    "RiskLevel",
    "TriageDecision",
    "TriagePriority",
    "event_digest",
]
