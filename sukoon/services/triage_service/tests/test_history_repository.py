"""Tests for the PostgreSQL risk history store."""
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import psycopg2

from sukoon.shared.database import DecisionConflict, StoreUnavailable
from sukoon.shared.models import ESCALATION_LEVELS, RiskEvent, RiskLevel, TriagePriority
from sukoon.services.triage_service.decision import decide
from sukoon.services.triage_service.history_repository import (
    PostgresRiskHistoryStore,
    SCHEMA_SQL,
)


T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def db():
    manager = MagicMock()
    conn = MagicMock()
    cursor = MagicMock()
    manager.get_connection.return_value.__enter__.return_value = conn
    conn.cursor.return_value.__enter__.return_value = cursor
    return manager, conn, cursor


@pytest.fixture
def store(db):
    manager, _, _ = db
    return PostgresRiskHistoryStore(manager)


def event_row(event, escalated=False):
    return (
        event.event_id, event.user_id, event.created_at, event.risk_level.value,
        event.reason, event.source_text_ref, event.lang, escalated,
    )


def decision_row(decision, notified=False):
    return (
        decision.decision_id, decision.event_id, decision.user_id, decision.event_created_at,
        decision.risk_level.value, decision.priority.value, decision.escalated,
        decision.triage_timestamp, decision.window_count, notified,
    )


class TestRiskEvents:
    def test_save_event_upsert_keeps_escalated(self, store, db):
        _, _, cursor = db
        event = RiskEvent(user_id="u1", created_at=T0, risk_level=RiskLevel.HIGH, reason="r")
        cursor.fetchone.return_value = event_row(event, escalated=True)

        stored = store.save_event(event)

        query, values = cursor.execute.call_args.args
        assert "INSERT INTO risk_events" in query
        assert "escalated = risk_events.escalated OR EXCLUDED.escalated" in query
        assert values[0] == event.event_id
        assert stored.escalated is True
        assert stored.event_id == event.event_id

    def test_save_event_conflict(self, store, db):
        _, _, cursor = db
        event = RiskEvent(user_id="u1", created_at=T0, risk_level=RiskLevel.HIGH)
        other = RiskEvent(user_id="u2", created_at=T0, risk_level=RiskLevel.HIGH)
        cursor.fetchone.return_value = event_row(other)

        with pytest.raises(DecisionConflict):
            store.save_event(event)

    def test_save_event_conflict_on_text_ref(self, store, db):
        _, _, cursor = db
        event = RiskEvent(user_id="u1", created_at=T0, risk_level=RiskLevel.HIGH, source_text_ref="msg-a")
        other = RiskEvent(user_id="u1", created_at=T0, risk_level=RiskLevel.HIGH, source_text_ref="msg-b")
        cursor.fetchone.return_value = event_row(other)

        assert event.event_id != other.event_id
        with pytest.raises(DecisionConflict):
            store.save_event(event)

    def test_count_events_window(self, store, db):
        _, _, cursor = db
        cursor.fetchone.return_value = (3,)
        start, end = T0 - timedelta(days=7), T0

        assert store.count_events("u1", start, end) == 3

        query, params = cursor.execute.call_args.args
        assert "created_at >= %s AND created_at <= %s" in query
        assert "risk_level = ANY(%s)" in query
        assert params == ("u1", start, end, ["critical", "high"])

    def test_events_between_oldest_first(self, store, db):
        _, _, cursor = db
        event = RiskEvent(user_id="u1", created_at=T0, risk_level=RiskLevel.HIGH)
        cursor.fetchall.return_value = [event_row(event)]

        events = store.events_between("u1", T0, T0 + timedelta(days=7), levels=frozenset({RiskLevel.HIGH}))

        query, params = cursor.execute.call_args.args
        assert query.endswith("ORDER BY created_at ASC")
        assert params[-1] == ["high"]
        assert events[0].risk_level == RiskLevel.HIGH

    def test_recent_events(self, store, db):
        _, _, cursor = db
        cursor.fetchall.return_value = []

        store.recent_events("u1", limit=5)

        query, params = cursor.execute.call_args.args
        assert "ORDER BY created_at DESC LIMIT %s" in query
        assert params == ("u1", 5)

    def test_driver_error(self, store, db):
        _, _, cursor = db
        cursor.execute.side_effect = psycopg2.OperationalError("timeout")

        with pytest.raises(StoreUnavailable):
            store.count_events("u1", T0, T0, ESCALATION_LEVELS)


class TestTriageDecisions:
    def test_upsert_decision_sticky_columns(self, store, db):
        _, _, cursor = db
        event = RiskEvent(user_id="u1", created_at=T0, risk_level=RiskLevel.HIGH)
        stored_row = decide(event, 3)
        cursor.fetchone.return_value = decision_row(stored_row, notified=True)

        stored = store.upsert_decision(decide(event, 2))

        query, _ = cursor.execute.call_args.args
        assert "escalated = triage_decisions.escalated OR EXCLUDED.escalated" in query
        assert "notified = triage_decisions.notified" in query
        assert "CASE WHEN triage_decisions.escalated" in query
        assert stored.escalated is True
        assert stored.priority == TriagePriority.HIGH
        assert stored.notified is True

    def test_get_decision_missing(self, store, db):
        _, _, cursor = db
        cursor.fetchone.return_value = None

        assert store.get_decision("tri_missing") is None

    @pytest.mark.parametrize("rowcount,expected", [(1, True), (0, False)])
    def test_mark_notified_is_conditional(self, store, db, rowcount, expected):
        _, _, cursor = db
        cursor.rowcount = rowcount

        assert store.mark_notified("tri_1") is expected

        query, params = cursor.execute.call_args.args
        assert "WHERE id = %s AND escalated AND NOT notified" in query
        assert params == ("tri_1",)


    @pytest.mark.parametrize("rowcount,expected", [(1, True), (0, False)])
    def test_claim_notification_is_conditional(self, store, db, rowcount, expected):
        _, conn, cursor = db
        cursor.rowcount = rowcount
        lease = timedelta(minutes=5)

        assert store.claim_notification("tri_1", lease) is expected

        query, params = cursor.execute.call_args.args
        assert "SET notify_claim_expires = now() + %s" in query
        assert "escalated AND NOT notified" in query
        assert "notify_claim_expires IS NULL OR notify_claim_expires < now()" in query
        assert params == (lease, "tri_1")
        conn.commit.assert_called_once()

    def test_release_notification_clears_claim(self, store, db):
        _, _, cursor = db

        store.release_notification("tri_1")

        query, params = cursor.execute.call_args.args
        assert "SET notify_claim_expires = NULL" in query
        assert params == ("tri_1",)

    def test_mark_notified_clears_claim(self, store, db):
        _, _, cursor = db
        cursor.rowcount = 1

        store.mark_notified("tri_1")

        query, _ = cursor.execute.call_args.args
        assert "notify_claim_expires = NULL" in query

class TestSchema:
    def test_create_schema(self, store, db):
        _, conn, cursor = db

        store.create_schema()

        cursor.execute.assert_called_once_with(SCHEMA_SQL)
        conn.commit.assert_called_once()
        assert "notify_claim_expires TIMESTAMPTZ" in SCHEMA_SQL
