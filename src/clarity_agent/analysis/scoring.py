"""Confidence and quality heuristics for clarity rewrites.

Formulas:

- similarity = |lowercase word set intersection| / |union|
- confidence = 0.7
  + 0.1 if |word delta| / original words > 0.1
  + 0.2 if 0.3 < similarity < 0.9
  capped at 1.0
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Literal

from clarity_agent.types import ImprovementResult, count_words

QualityLevel = Literal["poor", "medium", "good"]

BASE_CONFIDENCE = 0.7
LENGTH_DELTA_BONUS = 0.1
BALANCE_BONUS = 0.2
SLOW_PROCESSING_MS = 2000
SIGNIFICANT_LENGTH_CHANGE = 0.5


def word_overlap_similarity(first: str, second: str) -> float:
    words_a = set(first.lower().split())
    words_b = set(second.lower().split())
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def heuristic_confidence(original_text: str, improved_text: str) -> float:
    if not original_text.strip() or not improved_text.strip():
        return 0.0

    original_words = count_words(original_text)
    improved_words = count_words(improved_text)
    delta_ratio = abs(improved_words - original_words) / original_words
    similarity = word_overlap_similarity(original_text, improved_text)

    confidence = BASE_CONFIDENCE
    if delta_ratio > 0.1:
        confidence += LENGTH_DELTA_BONUS
    if 0.3 < similarity < 0.9:
        confidence += BALANCE_BONUS
    return min(round(confidence, 4), 1.0)


def resolve_confidence(
    supplied: float | None, original_text: str, improved_text: str
) -> float:
    """Prefer a backend-supplied score (clamped to [0, 1]); otherwise use the heuristic."""
    if (
        supplied is not None
        and not isinstance(supplied, bool)
        and isinstance(supplied, (int, float))
        and math.isfinite(supplied)
    ):
        return min(max(float(supplied), 0.0), 1.0)
    return heuristic_confidence(original_text, improved_text)


@dataclass(slots=True)
class QualityAssessment:
    level: QualityLevel
    reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {"level": self.level, "reasons": list(self.reasons)}


def assess_quality(result: ImprovementResult) -> QualityAssessment:
    """Rate a result; each rule is evaluated independently.

    Only the confidence bands and the unchanged-text rule set the level. The other
    rules add reasons without changing it.
    """
    reasons: list[str] = []
    level: QualityLevel = "good"

    if result.confidence < 0.6:
        level = "poor"
        reasons.append("low confidence")
    elif result.confidence < 0.8:
        level = "medium"
        reasons.append("medium confidence")

    if result.improved_text == result.original_text:
        level = "poor"
        reasons.append("no changes made")

    if result.processing_time_ms > SLOW_PROCESSING_MS:
        reasons.append("slow processing")

    original_length = len(result.original_text)
    if original_length:
        change = abs(len(result.improved_text) - original_length) / original_length
        if change > SIGNIFICANT_LENGTH_CHANGE:
            reasons.append("significant length change")

    if not result.changes:
        reasons.append("no specific changes documented")

    return QualityAssessment(level=level, reasons=reasons)
