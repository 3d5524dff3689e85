"""
Auxiliary signals: reversal quality and volatility regime.

Both are computed from the same tick features as the cascade score but are
independent of it.  Reversal quality estimates whether conditions favour a
counter-trend entry; the volatility regime sets how much quality an entry
needs (``rq_threshold_adjusted``).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from cascade.features import CascadeFeatures


class RQBucket(str, Enum):
    POOR = "poor"
    OK = "ok"
    GOOD = "good"
    EXCELLENT = "excellent"


class VolatilityRegime(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class ReversalQuality:
    score: int
    bucket: RQBucket


@dataclass(frozen=True)
class RegimeAssessment:
    regime: VolatilityRegime
    rq_threshold: int


def reversal_quality(features: CascadeFeatures) -> ReversalQuality:
    score = 0

    if features.lq >= 8:
        score += 2
    elif features.lq >= 6:
        score += 1

    if features.ret >= 25:
        score += 1

    if features.doi_1m <= -1.0 or features.doi_3m <= -1.5:
        score += 2
    elif features.doi_1m <= -0.5 or features.doi_3m <= -1.0:
        score += 1

    # Open interest still building on both horizons contradicts a flush.
    if features.doi_1m > 0 and features.doi_3m > 0:
        score -= 2

    score = max(0, score)
    return ReversalQuality(score=score, bucket=bucket_for_quality(score))


def bucket_for_quality(score: int) -> RQBucket:
    if score <= 1:
        return RQBucket.POOR
    if score == 2:
        return RQBucket.OK
    if score == 3:
        return RQBucket.GOOD
    return RQBucket.EXCELLENT


def volatility_regime(ret: float) -> RegimeAssessment:
    """Classify RET and return the reversal-quality bar for that regime.

    high   (RET >= 35) -> require "good"  (3)
    medium (RET >= 25) -> require "ok"    (2)
    low                -> require minimal (1)
    """
    if ret >= 35:
        return RegimeAssessment(VolatilityRegime.HIGH, 3)
    if ret >= 25:
        return RegimeAssessment(VolatilityRegime.MEDIUM, 2)
    return RegimeAssessment(VolatilityRegime.LOW, 1)
