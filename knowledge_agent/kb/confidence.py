"""
Confidence scoring — how well local knowledge covers a query.

``score_confidence`` maps a result count to a scalar in [0, 1];
``ConfidencePolicy`` turns that scalar into a :class:`Decision` using
configurable thresholds.  Both are pure and safe to call from any thread.

Boundary convention: the VERIFY band is closed on both ends, so with the
default thresholds a confidence of exactly 0.4 or exactly 0.7 is VERIFY.
Four results score 0.7 and therefore land in VERIFY; five or more score
0.9 and land in ANSWER_DIRECTLY.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

NO_RESULTS_CONFIDENCE = 0.0
FEW_RESULTS_MIN = 0.5
FEW_RESULTS_MAX = 0.7
MANY_RESULTS_CONFIDENCE = 0.9
MANY_RESULTS_THRESHOLD = 5


def score_confidence(total_results: int) -> float:
    """
    Confidence for *total_results* matches.

    0 -> 0.0; 1..4 -> linear over [0.5, 0.7]; 5 or more -> 0.9.
    """
    if total_results <= 0:
        return NO_RESULTS_CONFIDENCE
    if total_results >= MANY_RESULTS_THRESHOLD:
        return MANY_RESULTS_CONFIDENCE
    step = (FEW_RESULTS_MAX - FEW_RESULTS_MIN) / (MANY_RESULTS_THRESHOLD - 2)
    return round(FEW_RESULTS_MIN + (total_results - 1) * step, 4)


class Decision(str, Enum):
    """What a caller should do with a given confidence."""

    ANSWER_DIRECTLY = "answer_directly"
    VERIFY = "verify"
    MUST_FETCH = "must_fetch"


@dataclass(frozen=True)
class ConfidencePolicy:
    """Threshold pair used to classify a confidence value."""

    low: float = 0.4
    high: float = 0.7

    def __post_init__(self) -> None:
        if not (0.0 <= self.low <= self.high <= 1.0):
            raise ValueError(
                f"Invalid confidence thresholds: low={self.low}, high={self.high} "
                "(need 0 <= low <= high <= 1)"
            )

    def decide(self, confidence: float) -> Decision:
        if confidence < self.low:
            return Decision.MUST_FETCH
        if confidence <= self.high:
            return Decision.VERIFY
        return Decision.ANSWER_DIRECTLY

    def should_fetch(self, confidence: float) -> bool:
        """True unless the caller may answer without consulting the store."""
        return self.decide(confidence) is not Decision.ANSWER_DIRECTLY

    def can_answer_directly(self, confidence: float) -> bool:
        return self.decide(confidence) is Decision.ANSWER_DIRECTLY

    def needs_verification(self, confidence: float) -> bool:
        return self.decide(confidence) is Decision.VERIFY
