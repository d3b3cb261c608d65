"""PostgreSQL risk history store.

Risk events and triage decisions live in two tables keyed by the
deterministic ids derived from each event. Sticky flags are enforced in
the ON CONFLICT clause, and the notified flag flips through a
conditional UPDATE, so concurrent workers never need a shared lock.
Rows are never deleted (audit requirement).
"""
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sukoon.shared.database import (
    BaseRepository,
    ConnectionManager,
    DecisionConflict,
)
from sukoon.shared.models import (
    ESCALATION_LEVELS,
    RiskEvent,
    RiskLevel,
    TriageDecision,
    TriagePriority,
)
from .history import RiskHistoryStore

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS risk_events (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL,
    risk_level TEXT NOT NULL,
    reason TEXT NOT NULL DEFAULT '',
    source_text_ref TEXT NOT NULL DEFAULT '',
    lang TEXT NOT NULL DEFAULT 'en',
    escalated BOOLEAN NOT NULL DEFAULT FALSE
);
CREATE INDEX IF NOT EXISTS risk_events_user_time
    ON risk_events (user_id, created_at);

CREATE TABLE IF NOT EXISTS triage_decisions (
    id TEXT PRIMARY KEY,
    event_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    event_created_at TIMESTAMPTZ NOT NULL,
    risk_level TEXT NOT NULL,
    priority TEXT NOT NULL,
    escalated BOOLEAN NOT NULL,
    triage_timestamp TIMESTAMPTZ NOT NULL,
    window_count INTEGER NOT NULL DEFAULT 0,
    notified BOOLEAN NOT NULL DEFAULT FALSE,
    notify_claim_expires TIMESTAMPTZ
);
ALTER TABLE triage_decisions
    ADD COLUMN IF NOT EXISTS notify_claim_expires TIMESTAMPTZ;
"""


class RiskEventRepository(BaseRepository[RiskEvent]):
    """risk_events table. `escalated` never goes back to false."""

    columns = (
        "id", "user_id", "created_at", "risk_level",
        "reason", "source_text_ref", "lang", "escalated",
    )
    upsert_overrides = {
        "escalated": "risk_events.escalated OR EXCLUDED.escalated",
    }

    def __init__(self, connection_manager: ConnectionManager):
        super().__init__(connection_manager, "risk_events")

    def _row_to_entity(self, row: tuple) -> RiskEvent:
        return RiskEvent(
            user_id=row[1],
            created_at=row[2],
            risk_level=RiskLevel(row[3]),
            reason=row[4],
            source_text_ref=row[5],
            lang=row[6],
            escalated=row[7],
        )

    def _entity_to_params(self, entity: RiskEvent) -> Dict[str, Any]:
        return {
            "id": entity.event_id,
            "user_id": entity.user_id,
            "created_at": entity.created_at,
            "risk_level": entity.risk_level.value,
            "reason": entity.reason,
            "source_text_ref": entity.source_text_ref,
            "lang": entity.lang,
            "escalated": entity.escalated,
        }


class TriageDecisionRepository(BaseRepository[TriageDecision]):
    """triage_decisions table.

    Mirrors TriageDecision.merge: an escalated row keeps its priority and
    escalation, and `notified` is only ever changed by mark_notified().
    `notify_claim_expires` is not part of the entity; only the claim
    methods touch it.
    """

    columns = (
        "id", "event_id", "user_id", "event_created_at", "risk_level",
        "priority", "escalated", "triage_timestamp", "window_count", "notified",
    )
    upsert_overrides = {
        "priority": (
            "CASE WHEN triage_decisions.escalated "
            "THEN triage_decisions.priority ELSE EXCLUDED.priority END"
        ),
        "escalated": "triage_decisions.escalated OR EXCLUDED.escalated",
        "window_count": (
            "CASE WHEN triage_decisions.escalated "
            "THEN GREATEST(triage_decisions.window_count, EXCLUDED.window_count) "
            "ELSE EXCLUDED.window_count END"
        ),
        "notified": "triage_decisions.notified",
    }

    def __init__(self, connection_manager: ConnectionManager):
        super().__init__(connection_manager, "triage_decisions")

    def _row_to_entity(self, row: tuple) -> TriageDecision:
        return TriageDecision(
            decision_id=row[0],
            event_id=row[1],
            user_id=row[2],
            event_created_at=row[3],
            risk_level=RiskLevel(row[4]),
            priority=TriagePriority(row[5]),
            escalated=row[6],
            triage_timestamp=row[7],
            window_count=row[8],
            notified=row[9],
        )

    def _entity_to_params(self, entity: TriageDecision) -> Dict[str, Any]:
        return {
            "id": entity.decision_id,
            "event_id": entity.event_id,
            "user_id": entity.user_id,
            "event_created_at": entity.event_created_at,
            "risk_level": entity.risk_level.value,
            "priority": entity.priority.value,
            "escalated": entity.escalated,
            "triage_timestamp": entity.triage_timestamp,
            "window_count": entity.window_count,
            "notified": entity.notified,
        }

    def mark_notified(self, decision_id: str) -> bool:
        with self._cursor("mark_notified") as cur:
            cur.execute(
                "UPDATE triage_decisions SET notified = TRUE, notify_claim_expires = NULL "
                "WHERE id = %s AND escalated AND NOT notified",
                (decision_id,)
            )
            return cur.rowcount == 1

    def claim_notification(self, decision_id: str, lease: timedelta) -> bool:
        with self._cursor("claim_notification") as cur:
            cur.execute(
                "UPDATE triage_decisions SET notify_claim_expires = now() + %s "
                "WHERE id = %s AND escalated AND NOT notified "
                "AND (notify_claim_expires IS NULL OR notify_claim_expires < now())",
                (lease, decision_id)
            )
            return cur.rowcount == 1

    def release_notification(self, decision_id: str) -> None:
        with self._cursor("release_notification") as cur:
            cur.execute(
                "UPDATE triage_decisions SET notify_claim_expires = NULL "
                "WHERE id = %s AND NOT notified",
                (decision_id,)
            )


class PostgresRiskHistoryStore(RiskHistoryStore):
    """RiskHistoryStore on PostgreSQL via psycopg2."""

    def __init__(self, connection_manager: ConnectionManager):
        self.connection_manager = connection_manager
        self.events = RiskEventRepository(connection_manager)
        self.decisions = TriageDecisionRepository(connection_manager)

        logger.info("RISK_HISTORY_STORE_INITIALIZED", extra={"backend": "postgresql"})

    def create_schema(self) -> None:
        with self.connection_manager.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(SCHEMA_SQL)
            conn.commit()
        logger.info("RISK_HISTORY_SCHEMA_READY")

    def save_event(self, event: RiskEvent) -> RiskEvent:
        stored = self.events.save(event)
        if (stored.user_id, stored.created_at, stored.source_text_ref) != (
            event.user_id, event.created_at, event.source_text_ref
        ):
            raise DecisionConflict(f"Event key collision on {event.event_id}")
        return stored

    @staticmethod
    def _level_values(levels) -> List[str]:
        return sorted(level.value for level in levels)

    def count_events(self, user_id, start, end, levels=ESCALATION_LEVELS) -> int:
        return self.events.count_where(
            "user_id = %s AND created_at >= %s AND created_at <= %s AND risk_level = ANY(%s)",
            (user_id, start, end, self._level_values(levels)),
        )

    def events_between(self, user_id, start, end, levels=ESCALATION_LEVELS) -> List[RiskEvent]:
        return self.events.fetch(
            "user_id = %s AND created_at >= %s AND created_at <= %s AND risk_level = ANY(%s)",
            (user_id, start, end, self._level_values(levels)),
            order_by="created_at ASC",
        )

    def recent_events(self, user_id: str, limit: int = 20) -> List[RiskEvent]:
        return self.events.fetch(
            "user_id = %s",
            (user_id,),
            order_by="created_at DESC",
            limit=limit,
        )

    def get_decision(self, decision_id: str) -> Optional[TriageDecision]:
        return self.decisions.find_by_id(decision_id)

    def upsert_decision(self, decision: TriageDecision) -> TriageDecision:
        stored = self.decisions.save(decision)
        if (stored.user_id, stored.event_created_at) != (decision.user_id, decision.event_created_at):
            raise DecisionConflict(f"Decision key collision on {decision.decision_id}")
        return stored

    def mark_notified(self, decision_id: str) -> bool:
        return self.decisions.mark_notified(decision_id)

    def claim_notification(self, decision_id: str, lease: timedelta) -> bool:
        return self.decisions.claim_notification(decision_id, lease)

    def release_notification(self, decision_id: str) -> None:
        self.decisions.release_notification(decision_id)
