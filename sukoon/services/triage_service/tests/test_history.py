"""Tests for the in-memory risk history store."""
import pytest
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from sukoon.shared.database import DecisionConflict
from sukoon.shared.models import RiskEvent, RiskLevel, TriagePriority
from sukoon.services.triage_service.decision import decide
from sukoon.services.triage_service.history import InMemoryRiskHistoryStore


T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_event(offset_hours=0, level=RiskLevel.HIGH, user_id="u1", ref=""):
    return RiskEvent(
        user_id=user_id,
        created_at=T0 + timedelta(hours=offset_hours),
        risk_level=level,
        reason="r",
        source_text_ref=ref,
    )


@pytest.fixture
def store():
    return InMemoryRiskHistoryStore()


class TestEvents:
    def test_save_is_idempotent(self, store):
        event = make_event()
        store.save_event(event)
        store.save_event(event)

        assert len(store.recent_events("u1")) == 1

    def test_escalated_is_sticky(self, store):
        event = make_event()
        store.save_event(replace(event, escalated=True))

        stored = store.save_event(event)

        assert stored.escalated is True
        assert store.recent_events("u1")[0].escalated is True

    def test_same_millisecond_events_kept_apart(self, store):
        store.save_event(make_event(ref="msg-a"))
        store.save_event(make_event(ref="msg-b"))

        assert len(store.recent_events("u1")) == 2
        assert store.count_events("u1", T0, T0) == 2

    def test_count_window_is_inclusive(self, store):
        store.save_event(make_event(0))
        store.save_event(make_event(24))
        store.save_event(make_event(48))

        assert store.count_events("u1", T0, T0 + timedelta(hours=48)) == 3
        assert store.count_events("u1", T0 + timedelta(hours=1), T0 + timedelta(hours=47)) == 1

    def test_count_filters_levels_and_user(self, store):
        store.save_event(make_event(0, RiskLevel.HIGH))
        store.save_event(make_event(1, RiskLevel.CRITICAL))
        store.save_event(make_event(2, RiskLevel.LOW))
        store.save_event(make_event(3, RiskLevel.HIGH, user_id="u2"))

        end = T0 + timedelta(days=1)
        assert store.count_events("u1", T0, end) == 2
        assert store.count_events("u1", T0, end, levels=frozenset({RiskLevel.HIGH})) == 1

    def test_events_between_oldest_first(self, store):
        for offset in (5, 1, 3):
            store.save_event(make_event(offset))

        events = store.events_between("u1", T0, T0 + timedelta(hours=10))

        assert [e.created_at for e in events] == [
            T0 + timedelta(hours=1), T0 + timedelta(hours=3), T0 + timedelta(hours=5),
        ]

    def test_recent_events_newest_first_with_limit(self, store):
        for offset in range(5):
            store.save_event(make_event(offset, RiskLevel.LOW))

        recent = store.recent_events("u1", limit=2)

        assert [e.created_at for e in recent] == [T0 + timedelta(hours=4), T0 + timedelta(hours=3)]


class TestDecisions:
    def test_upsert_and_get(self, store):
        decision = decide(make_event(), 1)

        store.upsert_decision(decision)

        assert store.get_decision(decision.decision_id) == decision
        assert store.get_decision("tri_missing") is None

    def test_upsert_keeps_escalation(self, store):
        event = make_event()
        store.upsert_decision(decide(event, 3))

        stored = store.upsert_decision(decide(event, 2))

        assert stored.escalated is True
        assert stored.priority == TriagePriority.HIGH
        assert stored.window_count == 3

    def test_upsert_conflict(self, store):
        decision = decide(make_event(), 1)
        store.upsert_decision(decision)
        clash = replace(decide(make_event(1), 1), decision_id=decision.decision_id)

        with pytest.raises(DecisionConflict):
            store.upsert_decision(clash)

    def test_mark_notified_flips_once(self, store):
        decision = store.upsert_decision(decide(make_event(level=RiskLevel.CRITICAL), 0))

        assert store.mark_notified(decision.decision_id) is True
        assert store.mark_notified(decision.decision_id) is False
        assert store.get_decision(decision.decision_id).notified is True

    def test_mark_notified_requires_escalation(self, store):
        decision = store.upsert_decision(decide(make_event(), 1))

        assert store.mark_notified(decision.decision_id) is False
        assert store.mark_notified("tri_missing") is False

    def test_notified_survives_upsert(self, store):
        event = make_event(level=RiskLevel.CRITICAL)
        decision = store.upsert_decision(decide(event, 0))
        store.mark_notified(decision.decision_id)

        stored = store.upsert_decision(decide(event, 0))

        assert stored.notified is True


class TestNotificationClaims:
    """Only one worker at a time may publish a decision's notice."""

    LEASE = timedelta(minutes=5)

    @pytest.fixture
    def escalated(self, store):
        return store.upsert_decision(decide(make_event(level=RiskLevel.CRITICAL), 0))

    def test_second_claim_refused_while_held(self, store, escalated):
        assert store.claim_notification(escalated.decision_id, self.LEASE) is True
        assert store.claim_notification(escalated.decision_id, self.LEASE) is False

    def test_expired_claim_can_be_taken_over(self, store, escalated):
        assert store.claim_notification(escalated.decision_id, timedelta(0)) is True
        assert store.claim_notification(escalated.decision_id, self.LEASE) is True

    def test_release_allows_reclaim(self, store, escalated):
        store.claim_notification(escalated.decision_id, self.LEASE)

        store.release_notification(escalated.decision_id)

        assert store.claim_notification(escalated.decision_id, self.LEASE) is True

    def test_notified_decision_cannot_be_claimed(self, store, escalated):
        store.claim_notification(escalated.decision_id, self.LEASE)
        assert store.mark_notified(escalated.decision_id) is True

        assert store.claim_notification(escalated.decision_id, timedelta(0)) is False

    def test_unescalated_or_missing_decision_cannot_be_claimed(self, store):
        decision = store.upsert_decision(decide(make_event(), 1))

        assert store.claim_notification(decision.decision_id, self.LEASE) is False
        assert store.claim_notification("tri_missing", self.LEASE) is False
