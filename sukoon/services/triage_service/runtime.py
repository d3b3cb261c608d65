"""Builds the triage service's collaborators from configuration."""
import logging
from typing import Optional

from sukoon.shared.database import ConnectionManager, DatabaseConfig
from sukoon.shared.messaging import DurableTopic, InMemoryTopic, SqsTopic
from .config import TriagePolicy, TriageServiceConfig
from .history import InMemoryRiskHistoryStore, RiskHistoryStore
from .history_repository import PostgresRiskHistoryStore
from .notifier import NotificationDispatcher
from .subscriber import TriageSubscriber

logger = logging.getLogger(__name__)


def build_topic_client(config: TriageServiceConfig) -> DurableTopic:
    if config.topic_backend == "sqs":
        return SqsTopic(queue_urls=config.sqs_queue_urls, region=config.region)
    if config.topic_backend == "memory":
        return InMemoryTopic()
    raise ValueError(f"Unknown TOPIC_BACKEND: {config.topic_backend}")


def build_history_store(config: TriageServiceConfig) -> RiskHistoryStore:
    if config.store_backend == "postgres":
        if config.db_secret_arn:
            db_config = DatabaseConfig.from_secrets_manager(config.db_secret_arn, config.region)
        else:
            db_config = DatabaseConfig.from_env()
        return PostgresRiskHistoryStore(ConnectionManager(db_config))
    if config.store_backend == "memory":
        return InMemoryRiskHistoryStore()
    raise ValueError(f"Unknown STORE_BACKEND: {config.store_backend}")


def build_subscriber(
    config: TriageServiceConfig,
    policy: Optional[TriagePolicy] = None,
    topic_client: Optional[DurableTopic] = None,
    store: Optional[RiskHistoryStore] = None,
) -> TriageSubscriber:
    topic_client = topic_client or build_topic_client(config)
    store = store or build_history_store(config)

    logger.info(
        "TRIAGE_RUNTIME_BUILT",
        extra={
            "topic_backend": config.topic_backend,
            "store_backend": config.store_backend,
        }
    )

    return TriageSubscriber(
        topic_client=topic_client,
        store=store,
        dispatcher=NotificationDispatcher(topic_client, topic=config.notification_topic),
        policy=policy or TriagePolicy.from_env(),
        topic=config.risk_topic,
        max_workers=config.max_workers,
        message_timeout_seconds=config.message_timeout_seconds,
        notification_lease_seconds=config.notification_lease_seconds,
    )
