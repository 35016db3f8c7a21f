"""
Feature Normalizer Service Module

Maps raw monthly aggregate rows (loosely typed, numeric-as-string values,
historical field names) to CanonicalRecord instances with explicit nulls.

Resolution order for each canonical metric:
1. Direct computation from the current aggregate columns
   (e.g. meter_age_years = idade_hidrometro_meses / 12)
2. Derived fallback (e.g. consumption_cv = std_consumo_m3 / media_consumo_m3,
   open_amount_ratio = valor_total_aberto / P95 of the population)
3. Legacy alias lookup: the first present, non-null alias wins
4. None

Missing data never raises. A zero or missing denominator yields None.

The module also computes field and family coverage over a normalized
population, which score runs report alongside their batch summary.
"""

import logging
import math
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from revenue_potential.core.exceptions import ValidationError
from revenue_potential.models.enums import Family
from revenue_potential.models.schemas import (
    CANONICAL_FEATURES,
    FAMILY_FEATURES,
    CanonicalRecord,
)
from revenue_potential.services.periods import month_start


# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Legacy Field Aliases
# =============================================================================

LEGACY_FIELD_ALIASES: Dict[str, List[str]] = {
    "meter_age_years": [
        "meter_age_years",
        "hidrometro_idade_anos",
        "idade_hidrometro",
        "meter_age",
        "hidrometro_age",
    ],
    "anomaly_rate": [
        "anomaly_rate",
        "anomalias_12m",
        "anomalias_rate",
        "anomaly_ratio",
        "taxa_anomalias",
    ],
    "consumption_cv": [
        "consumption_cv",
        "desvio_padrao_consumo",
        "cv_consumo",
        "consumption_variance",
        "coeficiente_variacao",
    ],
    "inconsistencias_rate": [
        "inconsistencias_rate",
        "inconsistencias_total",
        "taxa_inconsistencias",
        "inconsistency_rate",
        "regras_aplicadas",
    ],
    "delinquency_days": [
        "delinquency_days",
        "dias_atraso_medio",
        "days_delinquency",
        "atraso_dias",
        "dias_atraso",
    ],
    "open_invoices_count": [
        "open_invoices_count",
        "faturas_abertas",
        "invoices_open",
        "faturas_em_aberto",
        "open_invoices",
    ],
    "open_amount_ratio": [
        "open_amount_ratio",
        "valor_aberto_12m",
        "amount_open_ratio",
        "ratio_valor_aberto",
        "valor_aberto_ratio",
    ],
}

# Identifier columns, current name first
ACCOUNT_ID_FIELDS = ["account_id", "imovel_id"]
PERIOD_FIELDS = ["period", "periodo"]
SECTOR_FIELDS = ["sector", "setor"]
WINDOW_FIELDS = ["window_months", "janela_meses"]

OPEN_AMOUNT_FIELD = "valor_total_aberto"


# =============================================================================
# Numeric Helpers
# =============================================================================

def to_number(value: Any) -> Optional[float]:
    """
    Parse a loosely typed value into a finite float.

    Args:
        value: int, float, Decimal, numeric string or None

    Returns:
        Finite float, or None for missing, unparsable or non-finite input
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def safe_div(numerator: Optional[float], denominator: Optional[float]) -> Optional[float]:
    """Divide, returning None when either side is missing or the denominator is 0."""
    if numerator is None or denominator is None or denominator == 0:
        return None
    return numerator / denominator


def clamp01(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    return max(0.0, min(1.0, value))


def _first_present(raw: Mapping[str, Any], names: Sequence[str]) -> Any:
    for name in names:
        value = raw.get(name)
        if value is not None:
            return value
    return None


def legacy_lookup(raw: Mapping[str, Any], feature: str) -> Optional[float]:
    """
    Look a canonical feature up through its legacy aliases.

    The first alias with a present, non-null value wins; an unparsable
    winning value yields None rather than falling through to later aliases.
    """
    return to_number(_first_present(raw, LEGACY_FIELD_ALIASES.get(feature, [feature])))


# =============================================================================
# Population Statistics
# =============================================================================

def compute_open_amount_p95(rows: Sequence[Mapping[str, Any]]) -> Optional[float]:
    """
    95th percentile of valor_total_aberto over a population.

    Returns:
        The percentile (linear interpolation), or None when no row carries a
        finite open amount.
    """
    values = [to_number(row.get(OPEN_AMOUNT_FIELD)) for row in rows]
    finite = np.array([v for v in values if v is not None], dtype=float)
    if finite.size == 0:
        return None
    return float(np.percentile(finite, 95))


# =============================================================================
# Normalization
# =============================================================================

def _direct_features(raw: Mapping[str, Any], p95_open_amount: Optional[float]) -> Dict[str, Optional[float]]:
    """Compute canonical metrics from the current aggregate columns."""
    consumption_cv = to_number(raw.get("coef_var_consumo"))
    if consumption_cv is None:
        consumption_cv = safe_div(
            to_number(raw.get("std_consumo_m3")),
            to_number(raw.get("media_consumo_m3")),
        )

    open_amount_ratio = to_number(raw.get("indice_inadimplencia"))
    if open_amount_ratio is None and p95_open_amount is not None and p95_open_amount > 0:
        open_amount_ratio = clamp01(safe_div(to_number(raw.get(OPEN_AMOUNT_FIELD)), p95_open_amount))

    return {
        "meter_age_years": safe_div(to_number(raw.get("idade_hidrometro_meses")), 12),
        "anomaly_rate": to_number(raw.get("taxa_anomalias")),
        "consumption_cv": consumption_cv,
        # Not yet produced by the aggregation pipeline
        "inconsistencias_rate": None,
        "delinquency_days": to_number(raw.get("media_tempo_atraso")),
        "open_invoices_count": to_number(raw.get("qtd_contas_abertas")),
        "open_amount_ratio": open_amount_ratio,
    }


def normalize_record(
    raw: Mapping[str, Any],
    p95_open_amount: Optional[float] = None,
) -> CanonicalRecord:
    """
    Normalize one raw aggregate row into a CanonicalRecord.

    Args:
        raw: Aggregate row (dict or asyncpg Record converted to dict)
        p95_open_amount: Population P95 of valor_total_aberto, used to derive
            open_amount_ratio when indice_inadimplencia is absent

    Returns:
        CanonicalRecord with every metric finite or None

    Raises:
        ValidationError: If the row has no account id or no parsable period.
            Missing metrics never raise.
    """
    account_id = _first_present(raw, ACCOUNT_ID_FIELDS)
    if account_id is None or str(account_id).strip() == "":
        raise ValidationError("Aggregate row without account id", {"row": dict(raw)})

    period_value = _first_present(raw, PERIOD_FIELDS)
    if period_value is None:
        raise ValidationError(f"Aggregate row for {account_id} without period")
    period = month_start(period_value)

    sector = _first_present(raw, SECTOR_FIELDS)
    window = to_number(_first_present(raw, WINDOW_FIELDS))

    features = _direct_features(raw, p95_open_amount)
    for name in CANONICAL_FEATURES:
        if features[name] is None:
            features[name] = legacy_lookup(raw, name)

    return CanonicalRecord(
        account_id=str(account_id),
        period=period,
        sector=str(sector) if sector is not None else None,
        window_months=int(window) if window is not None else None,
        **features,
    )


def normalize_population(rows: Sequence[Mapping[str, Any]]) -> List[CanonicalRecord]:
    """
    Normalize a whole population, computing the open-amount P95 once.

    Rows that cannot be identified (no account id or period) are skipped
    with a warning; they cannot be persisted against a key anyway.
    """
    p95 = compute_open_amount_p95(rows)
    records: List[CanonicalRecord] = []
    skipped = 0

    for raw in rows:
        try:
            records.append(normalize_record(raw, p95))
        except ValidationError as e:
            skipped += 1
            logger.warning(f"Skipping unidentifiable aggregate row: {e.message}")

    logger.info(
        f"Normalized {len(records)} aggregate rows (skipped={skipped}, "
        f"p95_open_amount={p95})"
    )
    return records


# =============================================================================
# Coverage
# =============================================================================

def compute_coverage(records: Sequence[CanonicalRecord]) -> Dict[str, Any]:
    """
    Field and family coverage of a normalized population.

    Field coverage is the fraction of records with a finite value. Family
    coverage is the mean coverage of the family's fields.

    Returns:
        {"total": n, "fields": {feature: rate}, "families": {family: rate}}
    """
    total = len(records)
    if total == 0:
        return {
            "total": 0,
            "fields": {name: 0.0 for name in CANONICAL_FEATURES},
            "families": {family.value: 0.0 for family in Family},
        }

    frame = pd.DataFrame([r.features() for r in records], columns=CANONICAL_FEATURES)
    fields = {name: float(rate) for name, rate in frame.notna().mean().items()}
    families = {
        family.value: float(np.mean([fields[f] for f in names]))
        for family, names in FAMILY_FEATURES.items()
    }

    return {"total": total, "fields": fields, "families": families}


def thin_families(coverage: Dict[str, Any], min_coverage: float) -> List[str]:
    """Families whose coverage is below min_coverage."""
    return [
        family
        for family, rate in coverage.get("families", {}).items()
        if rate < min_coverage
    ]
