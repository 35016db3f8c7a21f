"""
Composite Scorer Service Module

Combines the three family values into one 0-100 composite score:

1. Renormalize family weights when their sum drifts from 1 (non-finite or
   negative weights count as 0; a zero sum falls back to equal thirds)
2. Weighted sum of the family values, each clamped to [0, 1]
3. Penalty: when the trigger feature is finite and above its threshold,
   f = clamp01((value - threshold) / threshold) is shaped by the curve
   (linear: f, log: ln(1 + f) / ln 2) and max_penalty * curve(f) is
   subtracted
4. Scale by 100 and clamp to [0, 100]

The result is never NaN, negative or above 100.
"""

import logging
import math
from typing import Dict, Mapping, Optional

from revenue_potential.models.enums import Family, PenaltyCurve
from revenue_potential.models.schemas import CanonicalRecord, PenaltySpec


# Configure module logger
logger = logging.getLogger(__name__)


WEIGHT_SUM_TOLERANCE = 1e-6


def _finite_nonnegative(value: Optional[float]) -> float:
    if value is None:
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number) or number < 0:
        return 0.0
    return number


def normalize_family_weights(weights: Mapping[Family, Optional[float]]) -> Dict[Family, float]:
    """
    Normalize family weights to sum to 1.

    Example:
        >>> normalize_family_weights({Family.CADASTRO: 0.1, Family.MEDICAO: 0.1,
        ...                           Family.INADIMPLENCIA: 0.1})
        {cadastro: 0.333..., medicao: 0.333..., inadimplencia: 0.333...}
    """
    cleaned = {family: _finite_nonnegative(weights.get(family)) for family in Family}
    total = sum(cleaned.values())

    if total <= 0:
        return {family: 1.0 / 3.0 for family in Family}
    if abs(total - 1.0) <= WEIGHT_SUM_TOLERANCE:
        return cleaned
    return {family: value / total for family, value in cleaned.items()}


def penalty_factor(value: float, threshold: float) -> float:
    """
    Relative excess of value over threshold, clamped to [0, 1].

    A non-positive threshold yields 1 for any value above it.
    """
    if threshold <= 0:
        return 1.0 if value > threshold else 0.0
    return max(0.0, min(1.0, (value - threshold) / threshold))


def apply_curve(factor: float, curve: PenaltyCurve) -> float:
    """Shape a penalty factor in [0, 1]; log maps 0 to 0 and 1 to 1."""
    if curve == PenaltyCurve.LOG:
        return math.log1p(factor) / math.log(2)
    return factor


def penalty_amount(record: CanonicalRecord, penalty: Optional[PenaltySpec]) -> float:
    """
    Penalty (in 0-1 score units) to subtract for a record.

    Returns 0 when there is no penalty spec, when the trigger feature is
    absent, or when it does not exceed the threshold.
    """
    if penalty is None:
        return 0.0

    value = record.get(penalty.trigger_feature)
    threshold = penalty.trigger_threshold
    if value is None or threshold is None or not math.isfinite(threshold):
        return 0.0
    if value <= threshold:
        return 0.0

    factor = penalty_factor(value, threshold)
    max_penalty = max(0.0, min(1.0, _finite_nonnegative(penalty.max_penalty)))
    return max_penalty * apply_curve(factor, penalty.curve)


def composite_score(
    family_values: Mapping[Family, float],
    family_weights: Mapping[Family, Optional[float]],
    record: CanonicalRecord,
    penalty: Optional[PenaltySpec] = None,
) -> float:
    """
    Weighted composite score in [0, 100].

    Args:
        family_values: Family values (clamped to [0, 1] here)
        family_weights: Raw family weights (renormalized here)
        record: Record carrying the penalty trigger feature
        penalty: Optional penalty spec

    Returns:
        Score in [0, 100], never NaN

    Example:
        medicao 0.4, others 0, equal weights, no penalty -> 13.33...
    """
    weights = normalize_family_weights(family_weights)

    score01 = 0.0
    for family in Family:
        value = family_values.get(family, 0.0)
        if value is None or not math.isfinite(value):
            value = 0.0
        score01 += weights[family] * max(0.0, min(1.0, value))

    score01 -= penalty_amount(record, penalty)

    score100 = score01 * 100.0
    if not math.isfinite(score100):
        return 0.0
    return max(0.0, min(100.0, score100))
