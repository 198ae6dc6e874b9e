"""
Result combination and post-processing.

Non-moderation results only have their confidence clamped into [0, 1].
Moderation results are normalized into a ``ModerationVerdict``; when two
moderation backends answered, their scores are averaged field by field and
the risk level is recomputed from the merged scores.
"""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Mapping, Optional

from dispatch_core.serving.models import (
    Capability,
    ModerationVerdict,
    Result,
    RiskLevel,
)

logger = logging.getLogger(__name__)


# =============================================================================
# THRESHOLDS
# =============================================================================

SEVERE_CATEGORIES = ("explicit", "violent", "hate", "self_harm")
CRITICAL_THRESHOLD = 0.8
CRITICAL_HATE_VIOLENCE_THRESHOLD = 0.7
HIGH_THRESHOLD = 0.6
MEDIUM_THRESHOLD = 0.3
MEDIUM_CONFIDENCE_THRESHOLD = 0.8

DEFAULT_NSFW_THRESHOLD = 0.75
DEFAULT_CATEGORIES = ("explicit", "suggestive", "violent", "hate", "other")


def normalize_confidence(value: Any) -> float:
    """Clamp a confidence into [0, 1]. NaN and non-numeric values become 0."""
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(confidence):
        return 0.0
    return min(1.0, max(0.0, confidence))


def calculate_risk_level(categories: Mapping[str, float], confidence: float) -> RiskLevel:
    """Derive a risk level from category scores. All comparisons are strict."""
    if any(categories.get(name, 0.0) > CRITICAL_THRESHOLD for name in SEVERE_CATEGORIES):
        return RiskLevel.CRITICAL
    if (
        categories.get("hate", 0.0) > CRITICAL_HATE_VIOLENCE_THRESHOLD
        or categories.get("violent", 0.0) > CRITICAL_HATE_VIOLENCE_THRESHOLD
    ):
        return RiskLevel.CRITICAL

    if any(score > HIGH_THRESHOLD for score in categories.values()):
        return RiskLevel.HIGH

    if (
        any(score > MEDIUM_THRESHOLD for score in categories.values())
        or confidence > MEDIUM_CONFIDENCE_THRESHOLD
    ):
        return RiskLevel.MEDIUM

    return RiskLevel.LOW


def generate_recommendations(
    is_nsfw: bool,
    risk_level: RiskLevel,
    categories: Mapping[str, float],
) -> List[str]:
    recommendations: List[str] = []

    if is_nsfw:
        recommendations.append("Content flagged as NSFW - apply age restrictions")

        if risk_level == RiskLevel.CRITICAL:
            recommendations.append("Immediate action required - content violates policies")
            recommendations.append("Consider account suspension for repeated violations")
        elif risk_level == RiskLevel.HIGH:
            recommendations.append("Review content for policy compliance")
            recommendations.append("Apply strict filtering")

    if categories.get("explicit", 0.0) > 0.5:
        recommendations.append("Explicit content detected - enable content warnings")
    if categories.get("suggestive", 0.0) > 0.6:
        recommendations.append("Suggestive content - apply appropriate filtering")
    if categories.get("violent", 0.0) > 0.4:
        recommendations.append("Violent content detected - review for policy compliance")
    if categories.get("hate", 0.0) > 0.4:
        recommendations.append("Hate speech detected - consider content removal")

    return recommendations


def _unique(items: Iterable[str]) -> List[str]:
    seen: Dict[str, None] = {}
    for item in items:
        seen.setdefault(item, None)
    return list(seen)


# =============================================================================
# COMBINER
# =============================================================================

class ResultCombiner:
    """Merges one or two backend Results into a single normalized Result."""

    def __init__(self, nsfw_threshold: float = DEFAULT_NSFW_THRESHOLD):
        self.nsfw_threshold = nsfw_threshold

    def combine(
        self,
        primary: Result,
        secondary: Optional[Result] = None,
        capability: Optional[Capability] = None,
    ) -> Result:
        """
        Combine ``primary`` with an optional ``secondary`` result.

        Args:
            primary: Result from the selected backend
            secondary: Result from a second backend of the same capability
            capability: Capability of the job; inferred from the payload shape
                when omitted

        Returns:
            A new Result; the inputs are never mutated
        """
        if capability is None:
            capability = (
                Capability.CONTENT_MODERATION
                if self._looks_like_moderation(primary.payload)
                else None
            )

        if capability != Capability.CONTENT_MODERATION:
            return replace(primary, confidence=normalize_confidence(primary.confidence))

        if secondary is None or not secondary.success:
            verdict = self.to_verdict(primary.payload, primary.confidence)
            return replace(primary, payload=verdict, confidence=verdict.confidence)

        return self._merge_moderation(primary, secondary)

    def to_verdict(self, payload: Any, fallback_confidence: float = 0.0) -> ModerationVerdict:
        """Normalize a raw moderation payload into a verdict."""
        if isinstance(payload, ModerationVerdict):
            data: Mapping[str, Any] = payload.to_dict()
        elif isinstance(payload, Mapping):
            data = payload
        else:
            data = {}

        categories = self._categories(data)
        confidence = normalize_confidence(data.get("confidence", fallback_confidence))
        edge_cases = _unique(data.get("edge_cases") or data.get("edgeCases") or [])

        return self._build_verdict(categories, confidence, edge_cases)

    def _merge_moderation(self, primary: Result, secondary: Result) -> Result:
        first = self.to_verdict(primary.payload, primary.confidence)
        second = self.to_verdict(secondary.payload, secondary.confidence)

        names = _unique(list(first.categories) + list(second.categories))
        categories = {
            name: (first.categories.get(name, 0.0) + second.categories.get(name, 0.0)) / 2
            for name in names
        }
        confidence = (first.confidence + second.confidence) / 2
        edge_cases = _unique(first.edge_cases + second.edge_cases)

        verdict = self._build_verdict(categories, confidence, edge_cases)

        logger.debug(
            f"Combined moderation from {primary.model_used} and {secondary.model_used}: "
            f"risk={verdict.risk_level.value}"
        )

        return Result(
            success=True,
            payload=verdict,
            confidence=verdict.confidence,
            model_used=f"{primary.model_used}+{secondary.model_used}",
            processing_time_ms=primary.processing_time_ms + secondary.processing_time_ms,
            job_id=primary.job_id,
            metadata={
                **primary.metadata,
                "sources": [primary.model_used, secondary.model_used],
            },
        )

    def _build_verdict(
        self,
        categories: Dict[str, float],
        confidence: float,
        edge_cases: List[str],
    ) -> ModerationVerdict:
        is_nsfw = confidence > self.nsfw_threshold and (
            categories.get("explicit", 0.0) > 0.5 or categories.get("suggestive", 0.0) > 0.6
        )
        risk_level = calculate_risk_level(categories, confidence)

        return ModerationVerdict(
            is_nsfw=is_nsfw,
            confidence=confidence,
            categories=categories,
            risk_level=risk_level,
            edge_cases=edge_cases,
            recommendations=generate_recommendations(is_nsfw, risk_level, categories),
        )

    @staticmethod
    def _categories(data: Mapping[str, Any]) -> Dict[str, float]:
        raw = data.get("categories") or {}
        categories = {name: 0.0 for name in DEFAULT_CATEGORIES}
        for name, score in raw.items():
            categories[str(name).replace("-", "_")] = normalize_confidence(score)
        return categories

    @staticmethod
    def _looks_like_moderation(payload: Any) -> bool:
        return isinstance(payload, ModerationVerdict) or (
            isinstance(payload, Mapping) and "categories" in payload
        )


__all__ = [
    "ResultCombiner",
    "calculate_risk_level",
    "generate_recommendations",
    "normalize_confidence",
    "SEVERE_CATEGORIES",
    "DEFAULT_NSFW_THRESHOLD",
]
