"""Risk event publisher for the intake path.

Publishes locally classified HIGH and CRITICAL outcomes to the
risk.flagged topic for asynchronous triage. The producer only
publishes; the triage service owns the durable record of each event.
"""
import logging
from datetime import datetime
from typing import Optional

from sukoon.shared.errors import PublishFailure
from sukoon.shared.messaging import DurableTopic
from sukoon.shared.models import ESCALATION_LEVELS, RiskEvent, RiskLevel
from sukoon.shared.utils import hash_pii, utc_now

logger = logging.getLogger(__name__)

RISK_TOPIC = "risk.flagged"


class RiskEventPublisher:
    """Turns a risk outcome into a published, attributed RiskEvent.

    Failure Handling:
        - Transport errors surface as PublishFailure; no retry here
        - Redelivery and backoff are the topic client's contract
    """

    def __init__(self, topic_client: DurableTopic, topic: str = RISK_TOPIC):
        self.topic_client = topic_client
        self.topic = topic

        logger.info("RISK_PUBLISHER_INITIALIZED", extra={"topic": topic})

    def publish(
        self,
        user_id: str,
        risk_level: RiskLevel,
        reason: str,
        source_text_ref: str,
        created_at: Optional[datetime] = None,
        lang: str = "en",
    ) -> Optional[str]:
        """Publish a risk event if the level warrants triage.

        Args:
            user_id: User the text belongs to
            risk_level: Level decided by the classifier
            reason: Human-readable reason for the flag
            source_text_ref: Opaque locator of the stored text (never the text)
            created_at: Classification time (defaults to now, UTC)
            lang: Language tag of the source text

        Returns:
            Topic message id, or None when the level is below HIGH

        Raises:
            PublishFailure: If the topic did not accept the message
        """
        user_id_hash = hash_pii(user_id)

        if risk_level not in ESCALATION_LEVELS:
            logger.info(
                "RISK_PUBLISH_SKIPPED",
                extra={
                    "user_id_hash": user_id_hash,
                    "risk_level": risk_level.value,
                    "reason": "below_publish_threshold",
                }
            )
            return None

        event = RiskEvent(
            user_id=user_id,
            created_at=created_at or utc_now(),
            risk_level=risk_level,
            reason=reason,
            source_text_ref=source_text_ref,
            lang=lang,
        )
        attributes = {
            "eventType": self.topic,
            "userId": user_id,
            "riskLevel": risk_level.value,
        }

        try:
            message_id = self.topic_client.publish(self.topic, event.to_payload(), attributes)
        except PublishFailure:
            logger.critical(
                "RISK_EVENT_PUBLISH_FAILED",
                extra={
                    "event_id": event.event_id,
                    "user_id_hash": user_id_hash,
                    "risk_level": risk_level.value,
                    "action": "ESCALATION_DELAYED",
                }
            )
            raise
        except Exception as e:
            logger.critical(
                "RISK_EVENT_PUBLISH_FAILED",
                extra={
                    "event_id": event.event_id,
                    "user_id_hash": user_id_hash,
                    "risk_level": risk_level.value,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "action": "ESCALATION_DELAYED",
                }
            )
            raise PublishFailure(f"Publish to {self.topic} failed: {e}", topic=self.topic) from e

        log = logger.critical if risk_level == RiskLevel.CRITICAL else logger.warning
        log(
            "RISK_EVENT_PUBLISHED",
            extra={
                "event_id": event.event_id,
                "message_id": message_id,
                "user_id_hash": user_id_hash,
                "risk_level": risk_level.value,
            }
        )
        return message_id
