"""Tests for triage service configuration and runtime wiring."""
from datetime import timedelta

import pytest

from sukoon.shared.messaging import InMemoryTopic, SqsTopic
from sukoon.shared.utils import configure_pii_salt
from sukoon.services.triage_service.config import TriageServiceConfig, _parse_queue_urls
from sukoon.services.triage_service.history import InMemoryRiskHistoryStore
from sukoon.services.triage_service.history_repository import PostgresRiskHistoryStore
from sukoon.services.triage_service.runtime import (
    build_history_store,
    build_subscriber,
    build_topic_client,
)


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


class TestQueueUrls:
    def test_parses_pairs(self):
        urls = _parse_queue_urls(
            "risk.flagged=https://sqs/1, notifications=https://sqs/2,"
        )
        assert urls == {"risk.flagged": "https://sqs/1", "notifications": "https://sqs/2"}

    def test_empty(self):
        assert _parse_queue_urls("") == {}

    def test_rejects_malformed_entry(self):
        with pytest.raises(ValueError):
            _parse_queue_urls("risk.flagged")


class TestTriageServiceConfig:
    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("TOPIC_BACKEND", "SQS")
        monkeypatch.setenv("STORE_BACKEND", "postgres")
        monkeypatch.setenv("TRIAGE_MAX_WORKERS", "4")
        monkeypatch.setenv("TRIAGE_NOTIFICATION_LEASE_SECONDS", "120")
        monkeypatch.setenv("SQS_QUEUE_URLS", "risk.flagged=https://sqs/1")

        config = TriageServiceConfig.from_env()

        assert config.topic_backend == "sqs"
        assert config.store_backend == "postgres"
        assert config.max_workers == 4
        assert config.notification_lease_seconds == 120.0
        assert config.sqs_queue_urls == {"risk.flagged": "https://sqs/1"}

    def test_defaults_are_local(self):
        config = TriageServiceConfig()
        assert config.topic_backend == "memory"
        assert config.store_backend == "memory"


class TestRuntime:
    def test_memory_backends(self):
        config = TriageServiceConfig()
        assert isinstance(build_topic_client(config), InMemoryTopic)
        assert isinstance(build_history_store(config), InMemoryRiskHistoryStore)

    def test_sqs_backend(self):
        config = TriageServiceConfig(topic_backend="sqs", sqs_queue_urls={"risk.flagged": "u"})
        client = build_topic_client(config)
        assert isinstance(client, SqsTopic)
        assert client.queue_urls == {"risk.flagged": "u"}

    def test_postgres_backend_from_env(self, monkeypatch):
        monkeypatch.setenv("DB_HOST", "db.internal")
        store = build_history_store(TriageServiceConfig(store_backend="postgres"))

        assert isinstance(store, PostgresRiskHistoryStore)
        assert store.connection_manager.config.host == "db.internal"

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            build_topic_client(TriageServiceConfig(topic_backend="kafka"))
        with pytest.raises(ValueError):
            build_history_store(TriageServiceConfig(store_backend="mongo"))

    def test_build_subscriber_shares_topic_client(self):
        topic = InMemoryTopic()
        config = TriageServiceConfig(
            notification_topic="alerts", max_workers=2, notification_lease_seconds=60
        )

        subscriber = build_subscriber(config, topic_client=topic)

        assert subscriber.topic_client is topic
        assert subscriber.dispatcher.topic_client is topic
        assert subscriber.dispatcher.topic == "alerts"
        assert subscriber.max_workers == 2
        assert subscriber.notification_lease == timedelta(seconds=60)
