"""Durable pub/sub transport for risk and notification events.

Components:
- topic.py: DurableTopic interface, Delivery, InMemoryTopic
- sqs.py: SQS adapter (boto3)
"""

from sukoon.shared.errors import PublishFailure
from .topic import Delivery, DurableTopic, InMemoryTopic, PublishedMessage
from .sqs import SqsTopic

__all__ = [
    "Delivery",
    "DurableTopic",
    "InMemoryTopic",
    "PublishedMessage",
    "PublishFailure",
    "SqsTopic",
]
