"""Risk classifier configuration and pattern sets.

Patterns are ordered (name, regex) pairs evaluated case-insensitively.
Critical patterns are matched as substrings with flexible whitespace so
surrounding punctuation or run-on text never hides them. High-risk
patterns are whole-word, since short words like "die" would otherwise
fire inside "studied".
"""
from dataclasses import dataclass
from typing import Tuple

Pattern = Tuple[str, str]


@dataclass(frozen=True)
class ClassifierConfig:
    """Configuration for keyword risk classification."""

    # Version tracking for audit trail
    pattern_version: str = "2026.10.01"


# Any match short-circuits to CRITICAL: AI reply blocked, always escalated
CRITICAL_PATTERNS: Tuple[Pattern, ...] = (
    ("suicide", r"suicid(?:e|al)"),
    ("kill myself", r"kill(?:ing)?\s+myself"),
    ("end it all", r"end(?:ing)?\s+it\s+all"),
    ("not worth living", r"not\s+worth\s+living"),
    ("self harm", r"self[\s-]*harm"),
    ("cut myself", r"cut(?:ting)?\s+myself"),
    ("hurt myself", r"hurt(?:ing)?\s+myself"),
)

# Any match yields HIGH: published for triage against the user's history
HIGH_RISK_PATTERNS: Tuple[Pattern, ...] = (
    ("depressed", r"\bdepressed\b"),
    ("hopeless", r"\bhopeless\b"),
    ("worthless", r"\bworthless\b"),
    ("die", r"\b(?:die|dies|died|dying)\b"),
    ("death", r"\bdeath\b"),
    ("crisis", r"\bcrisis\b"),
    ("emergency", r"\bemergency\b"),
    ("help me", r"\bhelp\s+me\b"),
)
