"""Intake screening: synchronous classification on the request thread.

Every chat message or diary entry passes through screen() before an AI
reply is drafted or shown. CRITICAL blocks the reply outright; HIGH and
CRITICAL are published for triage. A failed publish never blocks the
caller, which still holds the classification for immediate handling.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sukoon.shared.errors import PublishFailure
from sukoon.shared.models import ESCALATION_LEVELS, RiskLevel
from sukoon.shared.utils import hash_pii, hash_text_for_audit
from .classifier import RiskClassifier, combine
from .risk_publisher import RiskEventPublisher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IntakeResult:
    risk_level: RiskLevel
    block_reply: bool
    published: bool
    matched_patterns: List[str]


class IntakeScreener:
    """Classifies intake text and feeds risky outcomes to the pipeline."""

    def __init__(
        self,
        publisher: RiskEventPublisher,
        classifier: Optional[RiskClassifier] = None,
    ):
        self.publisher = publisher
        self.classifier = classifier or RiskClassifier()

    def screen(
        self,
        user_id: str,
        text: str,
        source_text_ref: str,
        reply_text: Optional[str] = None,
        created_at: Optional[datetime] = None,
        lang: str = "en",
    ) -> IntakeResult:
        """Screen one message, optionally together with its drafted reply.

        Args:
            user_id: Author of the text
            text: User text (never logged)
            source_text_ref: Locator of the stored text
            reply_text: Assistant reply drafted for the text, if any
            created_at: Time of the message
            lang: Language tag

        Returns:
            IntakeResult with the combined level and the publish outcome
        """
        user_id_hash = hash_pii(user_id)
        message = self.classifier.explain(text)
        risk_level = message.risk_level
        matched = list(message.matched_patterns)

        if reply_text is not None:
            reply = self.classifier.explain(reply_text)
            risk_level = combine(risk_level, reply.risk_level)
            matched.extend(p for p in reply.matched_patterns if p not in matched)

        logger.info(
            "INTAKE_SCREENED",
            extra={
                "user_id_hash": user_id_hash,
                "text_hash": hash_text_for_audit(text),
                "risk_level": risk_level.value,
                "matched_patterns": matched,
                "reply_screened": reply_text is not None,
            }
        )

        block_reply = risk_level == RiskLevel.CRITICAL
        if risk_level not in ESCALATION_LEVELS:
            return IntakeResult(risk_level, block_reply, False, matched)

        reason = (
            "Critical risk keywords detected"
            if risk_level == RiskLevel.CRITICAL
            else "High-risk keywords detected"
        )
        try:
            self.publisher.publish(
                user_id=user_id,
                risk_level=risk_level,
                reason=reason,
                source_text_ref=source_text_ref,
                created_at=created_at,
                lang=lang,
            )
        except PublishFailure as e:
            # Caller still blocks the reply on CRITICAL; escalation is delayed
            logger.critical(
                "INTAKE_PUBLISH_FALLBACK",
                extra={
                    "user_id_hash": user_id_hash,
                    "risk_level": risk_level.value,
                    "error": str(e),
                    "action": "MANUAL_REVIEW_REQUIRED",
                }
            )
            return IntakeResult(risk_level, block_reply, False, matched)

        return IntakeResult(risk_level, block_reply, True, matched)
