"""Triage policy and service configuration.

The escalation thresholds are product policy, not properties of any
model: they live here as configuration with the current defaults.
"""
import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict


@dataclass(frozen=True)
class TriagePolicy:
    """When a HIGH event escalates.

    A HIGH event escalates once the user has at least
    `escalation_threshold` HIGH/CRITICAL events (the current one included)
    in the `window_days` ending at the event's own timestamp. CRITICAL
    events always escalate.
    """
    window_days: int = 7
    escalation_threshold: int = 3

    def __post_init__(self):
        if self.window_days < 1:
            raise ValueError(f"window_days must be >= 1, got {self.window_days}")
        if self.escalation_threshold < 1:
            raise ValueError(f"escalation_threshold must be >= 1, got {self.escalation_threshold}")

    @property
    def window(self) -> timedelta:
        return timedelta(days=self.window_days)

    @classmethod
    def from_env(cls) -> "TriagePolicy":
        """Environment variables: TRIAGE_WINDOW_DAYS, TRIAGE_ESCALATION_THRESHOLD."""
        return cls(
            window_days=int(os.getenv("TRIAGE_WINDOW_DAYS", "7")),
            escalation_threshold=int(os.getenv("TRIAGE_ESCALATION_THRESHOLD", "3")),
        )


def _parse_queue_urls(value: str) -> Dict[str, str]:
    """Parse "risk.flagged=https://...,notifications=https://..."."""
    urls = {}
    for item in value.split(","):
        item = item.strip()
        if not item:
            continue
        topic, sep, url = item.partition("=")
        if not sep or not topic.strip() or not url.strip():
            raise ValueError(f"Invalid SQS_QUEUE_URLS entry: {item!r}")
        urls[topic.strip()] = url.strip()
    return urls


@dataclass(frozen=True)
class TriageServiceConfig:
    """Runtime wiring for the triage worker and HTTP handler."""
    risk_topic: str = "risk.flagged"
    notification_topic: str = "notifications"
    max_workers: int = 8
    message_timeout_seconds: float = 30.0
    notification_lease_seconds: float = 300.0
    topic_backend: str = "memory"       # "memory" | "sqs"
    store_backend: str = "memory"       # "memory" | "postgres"
    region: str = "us-east-1"
    sqs_queue_urls: Dict[str, str] = field(default_factory=dict)
    db_secret_arn: str = ""

    @classmethod
    def from_env(cls) -> "TriageServiceConfig":
        return cls(
            risk_topic=os.getenv("RISK_TOPIC", "risk.flagged"),
            notification_topic=os.getenv("NOTIFICATION_TOPIC", "notifications"),
            max_workers=int(os.getenv("TRIAGE_MAX_WORKERS", "8")),
            message_timeout_seconds=float(os.getenv("TRIAGE_MESSAGE_TIMEOUT_SECONDS", "30")),
            notification_lease_seconds=float(
                os.getenv("TRIAGE_NOTIFICATION_LEASE_SECONDS", "300")
            ),
            topic_backend=os.getenv("TOPIC_BACKEND", "memory").lower(),
            store_backend=os.getenv("STORE_BACKEND", "memory").lower(),
            region=os.getenv("AWS_REGION", "us-east-1"),
            sqs_queue_urls=_parse_queue_urls(os.getenv("SQS_QUEUE_URLS", "")),
            db_secret_arn=os.getenv("DB_SECRET_ARN", ""),
        )
