"""
Confidence tiers for the best detection of a scan.

    confidence >= high    -> HIGH      shown, saved to history
    medium <= c < high    -> MEDIUM    shown with a warning, saved
    low <= c < medium     -> LOW       shown only, not saved
    c < low / no boxes    -> REJECTED  nothing shown
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, Tuple

from mangrove_kit.types import Detection


class ConfidenceTier(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    REJECTED = "rejected"


@dataclass(frozen=True)
class TierRule:
    tier: ConfidenceTier
    surfaced: bool
    persist: bool
    warning: bool


# Ordered from most to least trusted; REJECTED is the fallthrough.
TIER_RULES = {
    ConfidenceTier.HIGH: TierRule(ConfidenceTier.HIGH, surfaced=True, persist=True, warning=False),
    ConfidenceTier.MEDIUM: TierRule(ConfidenceTier.MEDIUM, surfaced=True, persist=True, warning=True),
    ConfidenceTier.LOW: TierRule(ConfidenceTier.LOW, surfaced=True, persist=False, warning=True),
    ConfidenceTier.REJECTED: TierRule(ConfidenceTier.REJECTED, surfaced=False, persist=False, warning=False),
}


@dataclass(frozen=True)
class TierCutPoints:
    high: float = 0.80
    medium: float = 0.65
    low: float = 0.50

    def __post_init__(self) -> None:
        if not 0.0 <= self.low <= self.medium <= self.high <= 1.0:
            raise ValueError("tier cut points must satisfy 0 <= low <= medium <= high <= 1")

    def ordered(self) -> Tuple[Tuple[float, ConfidenceTier], ...]:
        return (
            (self.high, ConfidenceTier.HIGH),
            (self.medium, ConfidenceTier.MEDIUM),
            (self.low, ConfidenceTier.LOW),
        )


def classify_confidence(confidence: float, cut_points: TierCutPoints = TierCutPoints()) -> ConfidenceTier:
    for threshold, tier in cut_points.ordered():
        if confidence >= threshold:
            return tier
    return ConfidenceTier.REJECTED


@dataclass(frozen=True)
class ScanDecision:
    tier: ConfidenceTier
    detection: Optional[Detection]
    surfaced: bool
    persist: bool
    warning: bool
    message: str

    @property
    def accepted(self) -> bool:
        return self.tier is not ConfidenceTier.REJECTED


def best_detection(detections: Sequence[Detection]) -> Optional[Detection]:
    best: Optional[Detection] = None
    for det in detections:
        if best is None or det.confidence > best.confidence:
            best = det
    return best


def _message(tier: ConfidenceTier, best: Optional[Detection]) -> str:
    pct = f"{best.confidence * 100:.1f}%" if best is not None else "0%"
    if tier is ConfidenceTier.HIGH:
        return f"High confidence detection: {best.label} ({pct})"
    if tier is ConfidenceTier.MEDIUM:
        return (
            f"Detected as {best.label} with {pct} confidence. "
            "Results may not be fully accurate. Please verify the identification!"
        )
    if tier is ConfidenceTier.LOW:
        return f"Very low confidence ({pct}). This may NOT be a mangrove species! Scan not saved."
    return f"Not detected as a mangrove species! Confidence too low ({pct}). Please scan a valid mangrove leaf."


def decide(detections: Sequence[Detection], cut_points: TierCutPoints = TierCutPoints()) -> ScanDecision:
    """
    Classify the single most confident detection. An empty sequence is REJECTED.
    """

    best = best_detection(detections)
    tier = classify_confidence(best.confidence, cut_points) if best is not None else ConfidenceTier.REJECTED
    rule = TIER_RULES[tier]
    return ScanDecision(
        tier=tier,
        detection=best if rule.surfaced else None,
        surfaced=rule.surfaced,
        persist=rule.persist,
        warning=rule.warning,
        message=_message(tier, best),
    )
