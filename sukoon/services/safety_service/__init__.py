"""Safety Service: synchronous risk classification on the intake path.

Every chat message and diary entry is classified before an AI reply is
drafted. HIGH and CRITICAL outcomes are published to risk.flagged for
asynchronous triage; CRITICAL also blocks the AI reply.

Components:
- classifier.py: RiskClassifier, classify(), combine()
- config.py: Pattern sets and classifier configuration
- risk_publisher.py: RiskEventPublisher (risk.flagged topic)
- intake.py: IntakeScreener tying classification to publishing

Usage:
    from sukoon.services.safety_service import classify, combine
    level = combine(classify(message), classify(reply))
"""

from .classifier import Classification, RiskClassifier, classify, combine
from .config import ClassifierConfig, CRITICAL_PATTERNS, HIGH_RISK_PATTERNS
from .intake import IntakeResult, IntakeScreener
from .risk_publisher import RISK_TOPIC, RiskEventPublisher

__all__ = [
    "Classification",
    "RiskClassifier",
    "classify",
    "combine",
    "ClassifierConfig",
    "CRITICAL_PATTERNS",
    "HIGH_RISK_PATTERNS",
    "IntakeResult",
    "IntakeScreener",
    "RISK_TOPIC",
    "RiskEventPublisher",
]
