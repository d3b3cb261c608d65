"""Triage Service: asynchronous re-evaluation and escalation of risk events.

Consumes risk.flagged, re-derives an escalation decision from the event's
level and the user's durable risk history, upserts the decision under a
key derived from the event, and publishes a NotificationEvent for the
crisis team when a decision escalates.

Components:
- subscriber.py: TriageSubscriber consumption loop (ack/nack, deadlines)
- decision.py: Pure decide(event, window_count, policy)
- history.py / history_repository.py: Risk history store (memory, PostgreSQL)
- notifier.py: NotificationDispatcher (notifications topic)
- assessment.py: Stateless manual assessment
- handler.py: Flask endpoints (/assess, /users/<id>/risks)
- worker.py: Process entry point for the subscriber
"""

from .assessment import RiskAssessment, assess
from .config import TriagePolicy, TriageServiceConfig
from .decision import decide
from .history import InMemoryRiskHistoryStore, RiskHistoryStore
from .history_repository import PostgresRiskHistoryStore
from .notifier import NOTIFICATION_TOPIC, NotificationDispatcher
from .subscriber import DeliveryState, TriageSubscriber

__all__ = [
    "RiskAssessment",
    "assess",
    "TriagePolicy",
    "TriageServiceConfig",
    "decide",
    "InMemoryRiskHistoryStore",
    "RiskHistoryStore",
    "PostgresRiskHistoryStore",
    "NOTIFICATION_TOPIC",
    "NotificationDispatcher",
    "DeliveryState",
    "TriageSubscriber",
]
