"""Keyword risk classifier.

Pure and deterministic: no I/O, no clock, no state beyond the compiled
pattern sets. Used synchronously by intake screening and by the manual
assessment endpoint.

Only LOW, HIGH and CRITICAL are reachable from text. MEDIUM exists in
RiskLevel but no pattern set maps to it.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from sukoon.shared.errors import ClassificationError
from sukoon.shared.models import RiskLevel
from .config import CRITICAL_PATTERNS, HIGH_RISK_PATTERNS, ClassifierConfig, Pattern

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Classification:
    """Risk level plus the names of the patterns that produced it."""
    risk_level: RiskLevel
    matched_patterns: List[str] = field(default_factory=list)


class RiskClassifier:
    """Two-tier keyword classifier.

    The critical set is evaluated first and any match short-circuits;
    the high-risk set is only consulted when nothing critical matched.
    """

    def __init__(
        self,
        config: Optional[ClassifierConfig] = None,
        critical_patterns: Sequence[Pattern] = CRITICAL_PATTERNS,
        high_risk_patterns: Sequence[Pattern] = HIGH_RISK_PATTERNS,
    ):
        self.config = config or ClassifierConfig()
        self._critical = self._compile_patterns(critical_patterns)
        self._high_risk = self._compile_patterns(high_risk_patterns)

        logger.info(
            "RISK_CLASSIFIER_INITIALIZED",
            extra={
                "pattern_version": self.config.pattern_version,
                "critical_pattern_count": len(self._critical),
                "high_risk_pattern_count": len(self._high_risk),
            }
        )

    @staticmethod
    def _compile_patterns(patterns: Sequence[Pattern]) -> List[Tuple[str, re.Pattern]]:
        return [(name, re.compile(regex, re.IGNORECASE)) for name, regex in patterns]

    @staticmethod
    def _matches(text: str, patterns: List[Tuple[str, re.Pattern]]) -> List[str]:
        return [name for name, pattern in patterns if pattern.search(text)]

    def explain(self, text: str) -> Classification:
        """Classify text and report which patterns matched.

        Raises:
            ClassificationError: If text is not a str
        """
        if not isinstance(text, str):
            raise ClassificationError(f"Expected text, got {type(text).__name__}")

        critical = self._matches(text, self._critical)
        if critical:
            return Classification(RiskLevel.CRITICAL, critical)

        high = self._matches(text, self._high_risk)
        if high:
            return Classification(RiskLevel.HIGH, high)

        return Classification(RiskLevel.LOW)

    def classify(self, text: str) -> RiskLevel:
        return self.explain(text).risk_level


def combine(a: RiskLevel, b: RiskLevel) -> RiskLevel:
    """Return the higher of two risk levels.

    Used to fold a user message's risk with the risk of the reply drafted
    for it before any escalation decision is made.
    """
    return a if a >= b else b


_default_classifier: Optional[RiskClassifier] = None


def classify(text: str) -> RiskLevel:
    """Classify text with the default pattern sets."""
    global _default_classifier
    if _default_classifier is None:
        _default_classifier = RiskClassifier()
    return _default_classifier.classify(text)
