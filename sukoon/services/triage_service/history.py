"""Risk history store: durable per-user record of risk events and decisions.

The triage subscriber is the only writer. Every write is keyed by an id
derived from the originating event, so concurrent or repeated writes of
the same event resolve to the same record. Two flags are sticky:
a risk event's `escalated` and a decision's `escalated`/`notified`.
"""
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Dict, FrozenSet, List, Optional

from sukoon.shared.database import DecisionConflict
from sukoon.shared.models import ESCALATION_LEVELS, RiskEvent, RiskLevel, TriageDecision
from sukoon.shared.utils import utc_now

logger = logging.getLogger(__name__)


def _event_identity(event: RiskEvent) -> tuple:
    return (event.user_id, event.created_at, event.source_text_ref)


class RiskHistoryStore(ABC):
    """Keyed document store for risk events and triage decisions.

    Implementations raise StoreUnavailable when the backend fails and
    DecisionConflict when one key maps to two different events.
    """

    @abstractmethod
    def save_event(self, event: RiskEvent) -> RiskEvent:
        """Upsert a risk event under its event_id; returns the stored event."""

    @abstractmethod
    def count_events(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        levels: FrozenSet[RiskLevel] = ESCALATION_LEVELS,
    ) -> int:
        """Count stored events of `levels` with start <= created_at <= end."""

    @abstractmethod
    def events_between(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        levels: FrozenSet[RiskLevel] = ESCALATION_LEVELS,
    ) -> List[RiskEvent]:
        """Stored events of `levels` with start <= created_at <= end, oldest first."""

    @abstractmethod
    def recent_events(self, user_id: str, limit: int = 20) -> List[RiskEvent]:
        """Most recent stored events for a user, newest first."""

    @abstractmethod
    def get_decision(self, decision_id: str) -> Optional[TriageDecision]:
        pass

    @abstractmethod
    def upsert_decision(self, decision: TriageDecision) -> TriageDecision:
        """Store a decision merged with any prior one (see TriageDecision.merge)."""

    @abstractmethod
    def claim_notification(self, decision_id: str, lease: timedelta) -> bool:
        """Take the exclusive right to publish a decision's notification.

        Conditional write: succeeds only for an escalated, not yet notified
        decision with no unexpired claim. A claim whose lease ran out (its
        holder crashed mid-publish) can be taken over.
        """

    @abstractmethod
    def release_notification(self, decision_id: str) -> None:
        """Drop a claim after a failed publish so redelivery can retry."""

    @abstractmethod
    def mark_notified(self, decision_id: str) -> bool:
        """Flag an escalated decision as notified.

        Conditional write: returns True only for the call that flipped the
        flag, False if it was already set or the decision is not escalated.
        Clears any notification claim.
        """


class InMemoryRiskHistoryStore(RiskHistoryStore):
    """Process-local store for tests and local development.

    A single lock makes each conditional write atomic, standing in for
    the per-key conditional writes of a real document store.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._events: Dict[str, RiskEvent] = {}
        self._decisions: Dict[str, TriageDecision] = {}
        self._claims: Dict[str, datetime] = {}

        logger.info("RISK_HISTORY_STORE_INITIALIZED", extra={"backend": "memory"})

    def save_event(self, event: RiskEvent) -> RiskEvent:
        with self._lock:
            existing = self._events.get(event.event_id)
            if existing is not None:
                if _event_identity(existing) != _event_identity(event):
                    raise DecisionConflict(f"Event key collision on {event.event_id}")
                event = replace(event, escalated=existing.escalated or event.escalated)
            self._events[event.event_id] = event
            return event

    def _select(self, user_id, start, end, levels) -> List[RiskEvent]:
        return sorted(
            (
                e for e in self._events.values()
                if e.user_id == user_id
                and start <= e.created_at <= end
                and e.risk_level in levels
            ),
            key=lambda e: e.created_at,
        )

    def count_events(self, user_id, start, end, levels=ESCALATION_LEVELS) -> int:
        with self._lock:
            return len(self._select(user_id, start, end, levels))

    def events_between(self, user_id, start, end, levels=ESCALATION_LEVELS) -> List[RiskEvent]:
        with self._lock:
            return self._select(user_id, start, end, levels)

    def recent_events(self, user_id: str, limit: int = 20) -> List[RiskEvent]:
        with self._lock:
            events = [e for e in self._events.values() if e.user_id == user_id]
        events.sort(key=lambda e: e.created_at, reverse=True)
        return events[:limit]

    def get_decision(self, decision_id: str) -> Optional[TriageDecision]:
        with self._lock:
            return self._decisions.get(decision_id)

    def upsert_decision(self, decision: TriageDecision) -> TriageDecision:
        with self._lock:
            prior = self._decisions.get(decision.decision_id)
            if prior is not None and (
                (prior.user_id, prior.event_created_at)
                != (decision.user_id, decision.event_created_at)
            ):
                raise DecisionConflict(f"Decision key collision on {decision.decision_id}")
            stored = decision.merge(prior)
            self._decisions[decision.decision_id] = stored
            return stored

    def mark_notified(self, decision_id: str) -> bool:
        with self._lock:
            decision = self._decisions.get(decision_id)
            if decision is None or not decision.escalated or decision.notified:
                return False
            self._decisions[decision_id] = replace(decision, notified=True)
            self._claims.pop(decision_id, None)
            return True

    def claim_notification(self, decision_id: str, lease: timedelta) -> bool:
        now = utc_now()
        with self._lock:
            decision = self._decisions.get(decision_id)
            if decision is None or not decision.escalated or decision.notified:
                return False
            expires = self._claims.get(decision_id)
            if expires is not None and expires > now:
                return False
            self._claims[decision_id] = now + lease
            return True

    def release_notification(self, decision_id: str) -> None:
        with self._lock:
            self._claims.pop(decision_id, None)
