"""
Piecewise Evaluation and Family Aggregation Service Module

Turns one canonical record into three family values in [0, 1]:
cadastro, medicao and inadimplencia.

Two family sources exist behind the single FamilySource.evaluate() interface:

1. RichFamilySource - piecewise rules calibrated per feature. The family
   value is the unweighted mean of the rules whose feature is present.
2. CompactFamilySource - scalar per-feature weights. Each present feature is
   normalized against a fixed reference value into a badness in [0, 1],
   inverted for the potential variant, averaged with the family-internal
   weights and mapped into [pot_min, pot_max].

Missing-data semantics are shared: `missing` is True when the family has no
inputs, when any input feature is absent, or when nothing could be
evaluated (value is then 0). Callers use it to pick the
DADOS_INSUFICIENTES narrative.

The source variant is chosen once, when a policy is ingested
(services/policy_validation.py), never per record.
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from revenue_potential.models.enums import Family, ScoreVariant
from revenue_potential.models.schemas import CanonicalRecord, CoefficientSet, PiecewiseRule
from revenue_potential.services.ranges import bin_index


# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Compact Normalization Constants
# =============================================================================

# Raw value at which a feature counts as fully "bad" in compact scoring.
# These are fixed references, not calibrated breakpoints.
COMPACT_REFERENCES: Dict[str, float] = {
    "meter_age_years": 10.0,
    "anomaly_rate": 1.0,
    "consumption_cv": 2.0,
    "delinquency_days": 90.0,
    "open_invoices_count": 6.0,
    "open_amount_ratio": 1.0,
}


def clamp01(value: float) -> float:
    if value is None or not math.isfinite(value):
        return 0.0
    return max(0.0, min(1.0, value))


@dataclass(frozen=True)
class FamilyResult:
    """Family value in [0, 1] plus the missing-data flag."""
    value: float
    missing: bool


# =============================================================================
# Piecewise Evaluation
# =============================================================================

def evaluate_rule(rule: PiecewiseRule, record: CanonicalRecord) -> float:
    """
    Evaluate one piecewise rule against one record.

    Args:
        rule: Validated piecewise rule
        record: Canonical record

    Returns:
        clamp01(rule.values[bin]) for the bin containing the feature value;
        0 when the feature is absent or no bin matches
    """
    value = record.get(rule.feature)
    if value is None or not math.isfinite(value):
        return 0.0

    idx = bin_index(value, rule.breaks)
    if idx < 0 or idx >= len(rule.values):
        return 0.0
    return clamp01(rule.values[idx])


def aggregate_family(rules: Sequence[PiecewiseRule], record: CanonicalRecord) -> FamilyResult:
    """
    Unweighted mean of the rules whose feature is present.

    Example (medicao, meter age 12 years and anomaly rate 0.02):
        meter age bin 2 -> 0.7, anomaly bin 0 -> 0.1, value = 0.4

    Returns:
        FamilyResult; missing is True when rules is empty, any feature is
        absent, or no rule could be evaluated (value 0)
    """
    if not rules:
        return FamilyResult(value=0.0, missing=True)

    total = 0.0
    used = 0
    any_missing = False

    for rule in rules:
        if record.get(rule.feature) is None:
            any_missing = True
            continue
        total += evaluate_rule(rule, record)
        used += 1

    if used == 0:
        return FamilyResult(value=0.0, missing=True)
    return FamilyResult(value=clamp01(total / used), missing=any_missing)


# =============================================================================
# Family Sources
# =============================================================================

class FamilySource(ABC):
    """Computes one family value from a canonical record."""

    family: Family

    @abstractmethod
    def evaluate(self, record: CanonicalRecord) -> FamilyResult:
        raise NotImplementedError


class RichFamilySource(FamilySource):
    """Family source backed by calibrated piecewise rules."""

    def __init__(self, family: Family, rules: Sequence[PiecewiseRule]):
        self.family = family
        self.rules: List[PiecewiseRule] = list(rules)

    def evaluate(self, record: CanonicalRecord) -> FamilyResult:
        return aggregate_family(self.rules, record)

    def __repr__(self) -> str:
        return f"RichFamilySource({self.family.value}, rules={len(self.rules)})"


class CompactFamilySource(FamilySource):
    """
    Family source backed by scalar per-feature weights.

    Args:
        family: Family this source scores
        feature_weights: feature -> family-internal weight
        invert: True for the potential variant (worse raw values reduce
            potential), False for the risk variant
        bounds: (pot_min, pot_max) range the weighted mean is mapped into,
            or None to keep it in [0, 1]
        z_warn: Cadastro inconsistency rate where badness starts rising
        z_risk: Cadastro inconsistency rate where badness reaches 1
    """

    def __init__(
        self,
        family: Family,
        feature_weights: Dict[str, float],
        invert: bool = True,
        bounds: Optional[tuple] = None,
        z_warn: float = 0.10,
        z_risk: float = 0.30,
    ):
        self.family = family
        self.feature_weights = dict(feature_weights)
        self.invert = invert
        self.bounds = bounds
        self.z_warn = z_warn
        self.z_risk = z_risk

    def badness(self, feature: str, value: float) -> float:
        """Normalize a raw value into [0, 1], 1 being the worst."""
        if feature == "inconsistencias_rate":
            if self.z_risk <= self.z_warn:
                return 1.0 if value > self.z_warn else 0.0
            return clamp01((value - self.z_warn) / (self.z_risk - self.z_warn))

        reference = COMPACT_REFERENCES.get(feature)
        if not reference:
            return clamp01(value)
        return clamp01(value / reference)

    def evaluate(self, record: CanonicalRecord) -> FamilyResult:
        if not self.feature_weights:
            return FamilyResult(value=0.0, missing=True)

        weighted = 0.0
        weight_sum = 0.0
        terms: List[float] = []
        any_missing = False

        for feature, weight in self.feature_weights.items():
            raw = record.get(feature)
            if raw is None:
                any_missing = True
                continue
            term = self.badness(feature, raw)
            if self.invert:
                term = 1.0 - term
            terms.append(term)
            w = weight if weight is not None and math.isfinite(weight) and weight > 0 else 0.0
            weighted += w * term
            weight_sum += w

        if not terms:
            return FamilyResult(value=0.0, missing=True)

        mean = weighted / weight_sum if weight_sum > 0 else sum(terms) / len(terms)

        if self.bounds is not None:
            lo, hi = self.bounds
            mean = lo + (hi - lo) * mean

        return FamilyResult(value=clamp01(mean), missing=any_missing)

    def __repr__(self) -> str:
        return (
            f"CompactFamilySource({self.family.value}, weights={self.feature_weights}, "
            f"invert={self.invert})"
        )


def _potential_bounds(coefficients: CoefficientSet) -> tuple:
    """pot_min/pot_max, accepting percentages (values above 1 are divided by 100)."""
    lo, hi = coefficients.pot_min, coefficients.pot_max
    if lo > 1 or hi > 1:
        lo, hi = lo / 100.0, hi / 100.0
    return clamp01(lo), clamp01(hi)


def compact_sources(
    coefficients: CoefficientSet,
    variant: ScoreVariant = ScoreVariant.POTENTIAL,
) -> Dict[Family, FamilySource]:
    """
    Build the three compact family sources for a coefficient set.

    The potential variant inverts badness and maps into [pot_min, pot_max];
    the risk variant keeps raw badness in [0, 1].
    """
    invert = variant == ScoreVariant.POTENTIAL
    bounds = _potential_bounds(coefficients) if invert else None

    return {
        Family.CADASTRO: CompactFamilySource(
            Family.CADASTRO,
            {"inconsistencias_rate": 1.0},
            invert=invert,
            bounds=bounds,
            z_warn=coefficients.z_warn,
            z_risk=coefficients.z_risk,
        ),
        Family.MEDICAO: CompactFamilySource(
            Family.MEDICAO,
            {
                "meter_age_years": coefficients.w_idade,
                "anomaly_rate": coefficients.w_anomalias,
                "consumption_cv": coefficients.w_desvio,
            },
            invert=invert,
            bounds=bounds,
        ),
        Family.INADIMPLENCIA: CompactFamilySource(
            Family.INADIMPLENCIA,
            {
                "delinquency_days": coefficients.w_atraso,
                "open_invoices_count": coefficients.w_indice,
                "open_amount_ratio": coefficients.w_valor_aberto,
            },
            invert=invert,
            bounds=bounds,
        ),
    }


def rich_sources(mappings) -> Dict[Family, FamilySource]:
    """Build the three piecewise family sources from a rich policy's mappings."""
    return {family: RichFamilySource(family, mappings.for_family(family)) for family in Family}
