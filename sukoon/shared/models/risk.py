"""Risk level, risk event and triage decision domain models.

This file defines the core enums and data structures shared by the
producer (intake screening) and the consumer (triage service).
Events are immutable once published; identifiers for decisions and
notifications are derived from the originating event so that every
write downstream of the risk topic is idempotent.
"""
import hashlib
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sukoon.shared.utils.clock import format_timestamp, parse_timestamp, utc_now


class RiskLevel(Enum):
    """Severity of detected self-harm/crisis content.

    Totally ordered: LOW < MEDIUM < HIGH < CRITICAL. Comparisons use an
    explicit rank table rather than the declaration order.
    """
    LOW = "low"
    MEDIUM = "medium"       # Reserved: keyword classification never yields it
    HIGH = "high"           # Published to risk.flagged, triaged with history
    CRITICAL = "critical"   # Published to risk.flagged, always escalated

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]

    def __lt__(self, other):
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank >= other.rank

    @classmethod
    def parse(cls, value: Any) -> "RiskLevel":
        """Parse a wire value ("high", "HIGH", RiskLevel.HIGH).

        Raises:
            ValueError: If the value names no risk level
        """
        if isinstance(value, RiskLevel):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Invalid risk level: {value!r}")
        return cls(value.strip().lower())


_RISK_RANK = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRITICAL: 3,
}

# Levels that enter the async pipeline and count toward the escalation window
ESCALATION_LEVELS = frozenset({RiskLevel.HIGH, RiskLevel.CRITICAL})


class TriagePriority(Enum):
    """Priority assigned by triage. Not the same dimension as RiskLevel."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


def event_digest(user_id: str, created_at: datetime, source_text_ref: str = "") -> str:
    """Deterministic digest of a risk event's identity.

    Redelivery of the same event always produces the same digest, which
    is what makes decision and notification writes idempotent. The text
    locator is part of the key because timestamps only carry milliseconds:
    two messages from one user in the same millisecond stay distinct.
    """
    key = f"{user_id}|{format_timestamp(created_at)}|{source_text_ref}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:24]


@dataclass(frozen=True)
class RiskEvent:
    """A locally classified risk outcome, published to risk.flagged.

    `source_text_ref` is an opaque locator (e.g. an object-storage URI),
    never the raw text. `escalated` is only ever set by triage.
    """
    user_id: str
    created_at: datetime
    risk_level: RiskLevel
    reason: str = ""
    source_text_ref: str = ""
    escalated: bool = False
    lang: str = "en"

    def __post_init__(self):
        if not self.user_id:
            raise ValueError("RiskEvent requires a user_id")
        if self.created_at.tzinfo is None:
            raise ValueError("RiskEvent.created_at must be timezone-aware")

    @property
    def event_id(self) -> str:
        return f"rsk_{event_digest(self.user_id, self.created_at, self.source_text_ref)}"

    @property
    def decision_id(self) -> str:
        return f"tri_{event_digest(self.user_id, self.created_at, self.source_text_ref)}"

    def to_payload(self) -> Dict[str, Any]:
        """Convert to the JSON payload carried on the risk topic."""
        return {
            "userId": self.user_id,
            "createdAt": format_timestamp(self.created_at),
            "riskLevel": self.risk_level.value,
            "reason": self.reason,
            "sourceTextRef": self.source_text_ref,
            "lang": self.lang,
            "escalated": self.escalated,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "RiskEvent":
        """Decode a risk topic payload.

        Accepts the legacy `textUri` key for the source text locator.

        Raises:
            ValueError: If a required field is missing or malformed
        """
        try:
            user_id = payload["userId"]
            created_at = parse_timestamp(payload["createdAt"])
            risk_level = RiskLevel.parse(payload["riskLevel"])
        except KeyError as e:
            raise ValueError(f"Risk event payload missing field: {e.args[0]}") from e

        return cls(
            user_id=user_id,
            created_at=created_at,
            risk_level=risk_level,
            reason=payload.get("reason", ""),
            source_text_ref=payload.get("sourceTextRef", payload.get("textUri", "")),
            escalated=bool(payload.get("escalated", False)),
            lang=payload.get("lang", "en"),
        )


@dataclass(frozen=True)
class TriageDecision:
    """Outcome of triaging one RiskEvent. One per originating event.

    Stored under `decision_id`, so redelivery overwrites the same record.
    """
    decision_id: str
    event_id: str
    user_id: str
    event_created_at: datetime
    risk_level: RiskLevel
    priority: TriagePriority
    escalated: bool
    triage_timestamp: datetime = field(default_factory=utc_now)
    window_count: int = 0
    notified: bool = False

    @property
    def notification_id(self) -> str:
        return "ntf_" + self.decision_id[len("tri_"):]

    def merge(self, prior: Optional["TriageDecision"]) -> "TriageDecision":
        """Combine a freshly computed decision with the stored one.

        Escalation is sticky: once a decision for this event escalated,
        recomputation never withdraws it, and the notified flag carries over.
        """
        if prior is None:
            return self
        if prior.decision_id != self.decision_id:
            raise ValueError(
                f"Cannot merge decisions {self.decision_id} and {prior.decision_id}"
            )
        if prior.escalated:
            return replace(
                self,
                priority=prior.priority,
                escalated=True,
                window_count=max(prior.window_count, self.window_count),
                notified=prior.notified,
            )
        return replace(self, notified=prior.notified)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "decisionId": self.decision_id,
            "eventId": self.event_id,
            "userId": self.user_id,
            "createdAt": format_timestamp(self.event_created_at),
            "riskLevel": self.risk_level.value,
            "priority": self.priority.value,
            "escalated": self.escalated,
            "triageTimestamp": format_timestamp(self.triage_timestamp),
            "windowCount": self.window_count,
            "notified": self.notified,
        }


@dataclass(frozen=True)
class NotificationEvent:
    """Escalation notice for the crisis team's paging system."""
    notification_id: str
    user_id: str
    priority: TriagePriority
    message: str
    type: str = "risk_escalation"
    created_at: datetime = field(default_factory=utc_now)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "notificationId": self.notification_id,
            "userId": self.user_id,
            "type": self.type,
            "priority": self.priority.value,
            "message": self.message,
            "createdAt": format_timestamp(self.created_at),
        }
