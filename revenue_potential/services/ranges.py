"""
Range Aggregator Service Module

Summarizes a population of canonical records into compact per-feature
histograms over fixed breakpoints. The summary is the payload sent to the
calibration service; it is never produced by it.

Binning:
    N strictly increasing breaks define N+1 bins
    (-inf, b1], (b1, b2], ..., (bN, +inf).
    bin_index() is the single implementation of this rule and is shared
    with the piecewise evaluator (services/families.py), so a value always
    lands in the same bin for both consumers.

Also provided:
- presence rates per feature (fraction of records with a finite value)
- raw min/max/count range summaries per family, used by GET /ranges
"""

import logging
import math
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from revenue_potential.models.schemas import CANONICAL_FEATURES, CanonicalRecord
from revenue_potential.services.normalizer import to_number


# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Default Breakpoints
# =============================================================================

# Few bins per feature keep the calibration payload small
DEFAULT_BREAKS: Dict[str, List[float]] = {
    "meter_age_years": [5, 10, 15],
    "anomaly_rate": [0.03, 0.07, 0.12],
    "consumption_cv": [0.10, 0.25, 0.40],
    "inconsistencias_rate": [0.10, 0.30, 0.50],
    "delinquency_days": [30, 90, 180],
    "open_invoices_count": [1, 3, 6],
    "open_amount_ratio": [0.10, 0.30, 0.60],
}


# =============================================================================
# Binning
# =============================================================================

def build_ranges_from_breaks(breaks: Sequence[float]) -> List[Tuple[Optional[float], Optional[float]]]:
    """
    Build the bin bounds for a breakpoint list.

    None stands for an unbounded end. Empty breaks yield a single
    (-inf, +inf) bin.

    Example:
        >>> build_ranges_from_breaks([5, 10])
        [(None, 5), (5, 10), (10, None)]
    """
    if not breaks:
        return [(None, None)]
    bounds: List[Tuple[Optional[float], Optional[float]]] = [(None, breaks[0])]
    for lo, hi in zip(breaks, breaks[1:]):
        bounds.append((lo, hi))
    bounds.append((breaks[-1], None))
    return bounds


def bin_index(value: float, breaks: Sequence[float]) -> int:
    """
    Index of the bin containing value.

    The index equals the number of breaks strictly below value, which is
    exactly the half-open (b[i-1], b[i]] rule.

    Args:
        value: Finite value
        breaks: Strictly increasing breakpoints

    Returns:
        Bin index in [0, len(breaks)]
    """
    return int(np.searchsorted(np.asarray(breaks, dtype=float), value, side="left"))


def histogram(values: Sequence[Optional[float]], breaks: Sequence[float]) -> List[Dict[str, Any]]:
    """
    Count finite values per bin.

    Non-finite and missing values are ignored.

    Returns:
        Ordered list of {"range": [lo, hi], "count": n}
    """
    bounds = build_ranges_from_breaks(breaks)
    finite = np.array(
        [v for v in values if v is not None and math.isfinite(v)],
        dtype=float,
    )

    if finite.size and breaks:
        indices = np.searchsorted(np.asarray(breaks, dtype=float), finite, side="left")
        counts = np.bincount(indices, minlength=len(bounds))
    else:
        counts = np.zeros(len(bounds), dtype=int)
        counts[0] = finite.size

    return [
        {"range": [lo, hi], "count": int(count)}
        for (lo, hi), count in zip(bounds, counts)
    ]


# =============================================================================
# Population Summary
# =============================================================================

def presence_rates(records: Sequence[CanonicalRecord]) -> Dict[str, float]:
    """Fraction of records with a finite value, per feature (0 when empty)."""
    total = len(records)
    if total == 0:
        return {name: 0.0 for name in CANONICAL_FEATURES}
    return {
        name: sum(1 for r in records if r.get(name) is not None) / total
        for name in CANONICAL_FEATURES
    }


def summarize_population(
    records: Sequence[CanonicalRecord],
    breaks_table: Optional[Mapping[str, Sequence[float]]] = None,
) -> Dict[str, Any]:
    """
    Histogram every feature of the breaks table over a population.

    Args:
        records: Normalized population
        breaks_table: feature -> breakpoints (defaults to DEFAULT_BREAKS)

    Returns:
        {"features": {feature: histogram}, "presence_rates": {feature: rate}}
    """
    table = breaks_table if breaks_table is not None else DEFAULT_BREAKS
    features = {
        feature: histogram([r.get(feature) for r in records], breaks)
        for feature, breaks in table.items()
    }
    return {"features": features, "presence_rates": presence_rates(records)}


def build_calibration_payload(period: str, records: Sequence[CanonicalRecord]) -> Dict[str, Any]:
    """
    Build the request body for the calibration service.

    Args:
        period: Period as YYYY-MM-DD
        records: Normalized population of the period

    Returns:
        {"period", "features", "stats": {"population", "presence_rates"}}
    """
    summary = summarize_population(records)
    logger.info(f"Calibration payload for {period}: population={len(records)}")
    return {
        "period": period,
        "features": summary["features"],
        "stats": {
            "population": len(records),
            "presence_rates": summary["presence_rates"],
        },
    }


# =============================================================================
# Raw Range Summaries
# =============================================================================

def compute_range(
    values: Sequence[Any],
    transform: Optional[Callable[[float], float]] = None,
) -> Dict[str, Any]:
    """
    Min, max and count of the finite values of a raw column.

    Args:
        values: Loosely typed values (strings are parsed)
        transform: Optional function applied to each parsed value

    Returns:
        {"min_value", "max_value", "count"}; min/max are None when empty
    """
    numbers = []
    for value in values:
        number = to_number(value)
        if number is None:
            continue
        if transform is not None:
            number = to_number(transform(number))
            if number is None:
                continue
        numbers.append(number)

    if not numbers:
        return {"min_value": None, "max_value": None, "count": 0}
    return {"min_value": min(numbers), "max_value": max(numbers), "count": len(numbers)}


def build_range_output(scope_id: str, rows: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Raw range summary per family for one sector or group.

    Meter age is reported in days (months x 30, rounded).
    """
    def column(name: str) -> List[Any]:
        return [row.get(name) for row in rows]

    return {
        "scope_id": scope_id,
        "cadastro": {
            "consumo_por_economia": compute_range(column("media_consumo_por_economia")),
        },
        "inadimplencia": {
            "tempo_medio_atraso": compute_range(column("media_tempo_atraso")),
            "valor_em_aberto": compute_range(column("valor_total_aberto")),
            "indice_inadimplencia": compute_range(column("indice_inadimplencia")),
        },
        "medicao": {
            "idade_hidrometro_dias": compute_range(
                column("idade_hidrometro_meses"), lambda months: round(months * 30)
            ),
            "taxa_anomalias": compute_range(column("taxa_anomalias")),
            "desvio_consumo": compute_range(column("coef_var_consumo")),
        },
    }
