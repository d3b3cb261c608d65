"""Tests for intake screening."""
import pytest
from datetime import datetime, timezone
from unittest.mock import MagicMock

from sukoon.shared.errors import PublishFailure
from sukoon.shared.messaging import InMemoryTopic
from sukoon.shared.models import RiskEvent, RiskLevel
from sukoon.shared.utils import configure_pii_salt
from sukoon.services.safety_service import IntakeScreener, RiskEventPublisher
from sukoon.services.safety_service.risk_publisher import RISK_TOPIC


T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


@pytest.fixture
def topic():
    return InMemoryTopic()


@pytest.fixture
def screener(topic):
    return IntakeScreener(RiskEventPublisher(topic))


class TestIntakeScreener:
    def test_low_text_is_not_published(self, screener, topic):
        result = screener.screen("u1", "had a nice walk today", "ref-1", created_at=T0)

        assert result.risk_level == RiskLevel.LOW
        assert result.block_reply is False
        assert result.published is False
        assert topic.published(RISK_TOPIC) == []

    def test_high_text_is_published_not_blocked(self, screener, topic):
        result = screener.screen("u1", "I feel hopeless", "ref-1", created_at=T0)

        assert result.risk_level == RiskLevel.HIGH
        assert result.block_reply is False
        assert result.published is True
        event = RiskEvent.from_payload(topic.published(RISK_TOPIC)[0].payload)
        assert event.reason == "High-risk keywords detected"
        assert event.source_text_ref == "ref-1"

    def test_critical_text_blocks_reply(self, screener, topic):
        result = screener.screen("u1", "I want to kill myself", "ref-1", created_at=T0)

        assert result.risk_level == RiskLevel.CRITICAL
        assert result.block_reply is True
        assert result.published is True
        event = RiskEvent.from_payload(topic.published(RISK_TOPIC)[0].payload)
        assert event.reason == "Critical risk keywords detected"

    def test_reply_risk_is_combined(self, screener, topic):
        result = screener.screen(
            "u1",
            "I had a rough day",
            "ref-1",
            reply_text="It sounds like you feel hopeless",
            created_at=T0,
        )

        assert result.risk_level == RiskLevel.HIGH
        assert result.matched_patterns == ["hopeless"]
        assert len(topic.published(RISK_TOPIC)) == 1

    def test_reply_never_lowers_risk(self, screener):
        result = screener.screen(
            "u1", "I want to end it all", "ref-1", reply_text="Let's talk.", created_at=T0,
        )
        assert result.risk_level == RiskLevel.CRITICAL

    def test_publish_failure_does_not_raise(self):
        publisher = MagicMock()
        publisher.publish.side_effect = PublishFailure("queue down", topic=RISK_TOPIC)
        screener = IntakeScreener(publisher)

        result = screener.screen("u1", "I want to kill myself", "ref-1", created_at=T0)

        assert result.risk_level == RiskLevel.CRITICAL
        assert result.block_reply is True
        assert result.published is False
        publisher.publish.assert_called_once()
