"""Manual risk assessment: a stateless decision aid.

Runs the same classifier as intake plus a context-aware threshold on a
caller-supplied count of recent risk events. Never reads or writes the
durable pipeline. The threshold matches the subscriber's: a HIGH level
with more than (threshold - 1) recent events requires escalation.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sukoon.services.safety_service import RiskClassifier, combine
from sukoon.shared.models import RiskLevel
from .config import TriagePolicy


RECOMMENDED_ACTIONS: Dict[RiskLevel, List[str]] = {
    RiskLevel.CRITICAL: [
        "Immediate crisis intervention",
        "Contact emergency services if location known",
        "Notify on-call crisis counselor",
        "Block further AI responses",
    ],
    RiskLevel.HIGH: [
        "Schedule follow-up within 24 hours",
        "Provide crisis hotline numbers",
        "Monitor for escalation",
        "Recommend professional consultation",
    ],
}

DEFAULT_ACTIONS: List[str] = [
    "Continue monitoring",
    "Provide supportive resources",
    "Regular check-ins",
]


@dataclass(frozen=True)
class RiskAssessment:
    risk_level: RiskLevel
    reasons: List[str] = field(default_factory=list)
    requires_escalation: bool = False
    recommended_actions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "riskLevel": self.risk_level.value,
            "reasons": list(self.reasons),
            "requiresEscalation": self.requires_escalation,
            "recommendedActions": list(self.recommended_actions),
        }


def recommended_actions(risk_level: RiskLevel) -> List[str]:
    return list(RECOMMENDED_ACTIONS.get(risk_level, DEFAULT_ACTIONS))


def assess(
    text: str,
    recent_risks: int = 0,
    classifier: Optional[RiskClassifier] = None,
    policy: Optional[TriagePolicy] = None,
) -> RiskAssessment:
    """Assess text in the context of the user's recent risk count.

    Args:
        text: Text to classify
        recent_risks: Caller-supplied count of the user's recent risk events
        classifier: Classifier to use (default pattern sets if omitted)
        policy: Escalation thresholds

    Returns:
        RiskAssessment; requires_escalation is True for CRITICAL, or for
        HIGH with recent_risks > escalation_threshold - 1

    Raises:
        ValueError: If recent_risks is negative
    """
    if recent_risks < 0:
        raise ValueError(f"recent_risks must be >= 0, got {recent_risks}")

    classifier = classifier or RiskClassifier()
    policy = policy or TriagePolicy()

    risk_level = classifier.classify(text)
    reasons = []
    if risk_level == RiskLevel.CRITICAL:
        reasons.append("Critical keywords detected")
    elif risk_level == RiskLevel.HIGH:
        reasons.append("High-risk keywords detected")

    repeated = recent_risks > policy.escalation_threshold - 1
    if repeated:
        # Raises LOW to HIGH; never lowers a CRITICAL
        risk_level = combine(risk_level, RiskLevel.HIGH)
        reasons.append("Multiple recent risk indicators")

    requires_escalation = risk_level == RiskLevel.CRITICAL or (
        risk_level == RiskLevel.HIGH and repeated
    )

    return RiskAssessment(
        risk_level=risk_level,
        reasons=reasons,
        requires_escalation=requires_escalation,
        recommended_actions=recommended_actions(risk_level),
    )
