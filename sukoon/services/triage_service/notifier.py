"""Notification dispatcher: publishes escalation notices for the crisis team.

Paging mechanics (SMS, email, on-call rotation) belong to whatever
consumes the notifications topic. This module only publishes.
"""
import logging

from sukoon.shared.messaging import DurableTopic
from sukoon.shared.models import NotificationEvent, TriageDecision
from sukoon.shared.utils import hash_pii, utc_now

logger = logging.getLogger(__name__)

NOTIFICATION_TOPIC = "notifications"


class NotificationDispatcher:
    """Publishes one NotificationEvent per escalated decision."""

    def __init__(self, topic_client: DurableTopic, topic: str = NOTIFICATION_TOPIC):
        self.topic_client = topic_client
        self.topic = topic

        logger.info("NOTIFICATION_DISPATCHER_INITIALIZED", extra={"topic": topic})

    def build(self, decision: TriageDecision, reason: str) -> NotificationEvent:
        return NotificationEvent(
            notification_id=decision.notification_id,
            user_id=decision.user_id,
            priority=decision.priority,
            message=f"Risk escalation: {reason}",
            created_at=utc_now(),
        )

    def dispatch(self, decision: TriageDecision, reason: str = "") -> str:
        """Publish the escalation notice for a decision.

        Args:
            decision: An escalated TriageDecision
            reason: Reason carried on the originating risk event

        Returns:
            Topic message id

        Raises:
            ValueError: If the decision is not escalated
            PublishFailure: If the topic did not accept the notice
        """
        if not decision.escalated:
            raise ValueError(f"Decision {decision.decision_id} is not escalated")

        notification = self.build(decision, reason)
        attributes = {
            "eventType": "notification",
            "priority": notification.priority.value,
            "notificationId": notification.notification_id,
        }

        message_id = self.topic_client.publish(self.topic, notification.to_payload(), attributes)

        logger.critical(
            "CRISIS_TEAM_NOTIFIED",
            extra={
                "notification_id": notification.notification_id,
                "decision_id": decision.decision_id,
                "user_id_hash": hash_pii(decision.user_id),
                "priority": notification.priority.value,
                "message_id": message_id,
            }
        )
        return message_id
