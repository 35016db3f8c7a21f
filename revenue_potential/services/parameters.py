"""
Parameter Resolver Service Module

Resolves the scalar coefficients of the compact scoring engine (family
weights, per-feature weights, cadastro z thresholds, potential bounds,
penalty and classification settings) from versioned parameters.

Versioned parameters are identified by a structured ParameterKey
(scope, scope_id, key, period_month, window_months). The textual encoding
exists only at the store boundary:

    sector scope: "{sector}__{key}::{YYYY-MM}::{W}m"   (parameters_by_sector)
    group scope:  "{key}::{YYYY-MM}::{W}m"             (parameters_by_group,
                                                        group_id column)

Resolution precedence, per key:
    sector value (exact period + window) -> group value (same period +
    window, via the sector's group) -> default constant

Writes replace the whole coefficient set of a (scope, scope_id, period,
window) inside one transaction: the previous active rows are soft-deleted
and the new ones inserted.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from revenue_potential.core.database import affected_rows, get_db_pool
from revenue_potential.core.exceptions import ValidationError
from revenue_potential.models.enums import ParameterScope, PenaltyCurve, ScoreVariant
from revenue_potential.models.schemas import CoefficientSet
from revenue_potential.services.periods import is_uuid, period_month, validate_sector
from revenue_potential.sql.parameter_queries import (
    DEACTIVATE_GROUP_PARAMETER_SET,
    DEACTIVATE_SECTOR_PARAMETER_SET,
    INSERT_GROUP_PARAMETER,
    INSERT_SECTOR_PARAMETER,
    SELECT_GROUP_FOR_SECTOR,
    SELECT_GROUP_PARAMETERS_BY_SUFFIX,
    SELECT_SECTOR_PARAMETERS_BY_NAME,
    get_list_parameters_query,
)


# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Keys and Defaults
# =============================================================================

COEFFICIENT_KEYS: List[str] = list(CoefficientSet.model_fields.keys())

TEXT_KEYS = {"pen_curve"}

# Names written by earlier versions of the compact policy adapter
LEGACY_KEY_ALIASES: Dict[str, str] = {
    "w_inad_atraso": "w_atraso",
    "w_inad_indice": "w_indice",
    "w_inad_valor_aberto": "w_valor_aberto",
    "w_med_idade": "w_idade",
    "w_med_anomalias": "w_anomalias",
    "w_med_desvio": "w_desvio",
    "z_warn_cad": "z_warn",
    "z_risk_cad": "z_risk",
}

# Keys a sector needs for scoring to skip calibration
ESSENTIAL_KEYS: List[str] = [
    "w_atraso", "w_indice", "w_valor_aberto",
    "w_idade", "w_anomalias", "w_desvio",
]

# Risk scoring weighs delinquency days more heavily by default
RISK_WEIGHT_DEFAULTS: Dict[str, float] = {
    "w_atraso": 0.5,
    "w_indice": 0.3,
    "w_valor_aberto": 0.2,
    "w_idade": 0.4,
    "w_anomalias": 0.3,
    "w_desvio": 0.3,
}

_NAME_PATTERN = re.compile(
    r"^(?:(?P<sector>.+?)__)?(?P<key>[A-Za-z0-9_]+)::(?P<month>\d{4}-\d{2})::(?P<window>\d+)m$"
)


def default_coefficients(variant: ScoreVariant = ScoreVariant.POTENTIAL) -> Dict[str, Any]:
    """Default value of every coefficient key for a variant."""
    defaults = CoefficientSet().model_dump()
    if variant == ScoreVariant.RISK:
        defaults.update(RISK_WEIGHT_DEFAULTS)
    return defaults


# =============================================================================
# Structured Key
# =============================================================================

@dataclass(frozen=True)
class ParameterKey:
    """
    Structured identity of one versioned parameter.

    Attributes:
        scope: sector or group
        scope_id: Sector code or group UUID
        key: Coefficient key (e.g. "w_idade")
        period_month: "YYYY-MM"
        window_months: Trailing window length in months
    """
    scope: ParameterScope
    scope_id: str
    key: str
    period_month: str
    window_months: int

    @property
    def suffix(self) -> str:
        return version_suffix(self.period_month, self.window_months)

    def to_name(self) -> str:
        """Encode into the single textual name column of the store."""
        base = f"{self.key}{self.suffix}"
        if self.scope == ParameterScope.SECTOR:
            return f"{self.scope_id}__{base}"
        return base

    @classmethod
    def from_name(
        cls,
        name: str,
        scope: ParameterScope,
        group_id: Optional[str] = None,
    ) -> Optional["ParameterKey"]:
        """
        Decode a stored name.

        Legacy key names are mapped to their current key.

        Returns:
            ParameterKey, or None when the name does not follow the scheme
            (or a sector name carries no sector prefix)
        """
        match = _NAME_PATTERN.match(name or "")
        if not match:
            return None

        sector = match.group("sector")
        if scope == ParameterScope.SECTOR:
            if not sector:
                return None
            scope_id = sector
        else:
            if sector:
                return None
            scope_id = group_id or ""

        key = LEGACY_KEY_ALIASES.get(match.group("key"), match.group("key"))
        return cls(
            scope=scope,
            scope_id=scope_id,
            key=key,
            period_month=match.group("month"),
            window_months=int(match.group("window")),
        )


def version_suffix(month: str, window_months: int) -> str:
    """The "::YYYY-MM::Wm" suffix shared by both scopes."""
    return f"::{month}::{int(window_months)}m"


def _stored_value(key: str, value_num: Any, value_text: Any) -> Any:
    if key in TEXT_KEYS:
        return value_text if value_text is not None else value_num
    if value_num is None:
        return None
    return float(value_num)


def decode_rows(
    rows: List[Mapping[str, Any]],
    scope: ParameterScope,
    month: str,
    window_months: int,
    scope_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Turn stored rows into a key -> value map for one exact version.

    Rows for another period or window, other sectors, unknown keys or null
    values are ignored. Current key names win over legacy aliases.
    """
    values: Dict[str, Any] = {}
    from_alias: Dict[str, bool] = {}

    for row in rows:
        parsed = ParameterKey.from_name(row["name"], scope)
        if parsed is None:
            continue
        if parsed.period_month != month or parsed.window_months != window_months:
            continue
        if scope == ParameterScope.SECTOR and scope_id is not None and parsed.scope_id != scope_id:
            continue
        if parsed.key not in COEFFICIENT_KEYS:
            continue

        value = _stored_value(parsed.key, row["value_num"], row["value_text"])
        if value is None:
            continue

        raw_key = _NAME_PATTERN.match(row["name"]).group("key")
        is_alias = raw_key != parsed.key
        if parsed.key in values and is_alias and not from_alias[parsed.key]:
            continue
        values[parsed.key] = value
        from_alias[parsed.key] = is_alias

    return values


# =============================================================================
# Merge
# =============================================================================

@dataclass
class ResolvedCoefficients:
    """Resolved coefficient set and the scope each key came from."""
    coefficients: CoefficientSet
    sources: Dict[str, str] = field(default_factory=dict)
    group_id: Optional[str] = None


def merge_coefficients(
    sector_values: Mapping[str, Any],
    group_values: Mapping[str, Any],
    defaults: Optional[Mapping[str, Any]] = None,
) -> ResolvedCoefficients:
    """
    Merge sector, group and default values key by key.

    Example:
        sector {"w_idade": 0.5}, group {"w_idade": 0.2, "w_desvio": 0.1}
        -> w_idade 0.5 (sector), w_desvio 0.1 (group), others default
    """
    base = dict(defaults) if defaults is not None else default_coefficients()
    merged: Dict[str, Any] = {}
    sources: Dict[str, str] = {}

    for key in COEFFICIENT_KEYS:
        if sector_values.get(key) is not None:
            merged[key] = sector_values[key]
            sources[key] = ParameterScope.SECTOR.value
        elif group_values.get(key) is not None:
            merged[key] = group_values[key]
            sources[key] = ParameterScope.GROUP.value
        else:
            merged[key] = base[key]
            sources[key] = "default"

    if merged.get("pen_curve") not in {c.value for c in PenaltyCurve}:
        if merged.get("pen_curve") is not None:
            logger.warning(f"Unknown pen_curve '{merged['pen_curve']}', using linear")
        merged["pen_curve"] = PenaltyCurve.LINEAR.value
        sources["pen_curve"] = "default"

    return ResolvedCoefficients(coefficients=CoefficientSet(**merged), sources=sources)


# =============================================================================
# Store Reads
# =============================================================================

def _sector_names(sector: str, month: str, window_months: int) -> List[str]:
    keys = COEFFICIENT_KEYS + list(LEGACY_KEY_ALIASES.keys())
    return [
        ParameterKey(ParameterScope.SECTOR, sector, key, month, window_months).to_name()
        for key in keys
    ]


async def fetch_sector_values(conn, sector: str, month: str, window_months: int) -> Dict[str, Any]:
    rows = await conn.fetch(SELECT_SECTOR_PARAMETERS_BY_NAME, _sector_names(sector, month, window_months))
    return decode_rows(rows, ParameterScope.SECTOR, month, window_months, scope_id=sector)


async def fetch_group_values(conn, group_id: str, month: str, window_months: int) -> Dict[str, Any]:
    rows = await conn.fetch(
        SELECT_GROUP_PARAMETERS_BY_SUFFIX,
        group_id,
        f"%{version_suffix(month, window_months)}",
    )
    return decode_rows(rows, ParameterScope.GROUP, month, window_months)


async def lookup_group_for_sector(conn, sector: str) -> Optional[str]:
    """Group the sector belongs to, or None."""
    group_id = await conn.fetchval(SELECT_GROUP_FOR_SECTOR, sector)
    return str(group_id) if group_id is not None else None


async def resolve_coefficients(
    sector: str,
    period: Union[str, date],
    window_months: int,
    group_id: Optional[str] = None,
    variant: ScoreVariant = ScoreVariant.POTENTIAL,
) -> ResolvedCoefficients:
    """
    Resolve the coefficient set for a sector, period and window.

    Args:
        sector: Sector code
        period: Period (any form accepted by month_start)
        window_months: Trailing window length
        group_id: Group to fall back to; looked up from sector_to_group
            when omitted
        variant: Selects the default constants

    Returns:
        ResolvedCoefficients with per-key sources
    """
    month = period_month(period)
    pool = await get_db_pool()

    async with pool.acquire() as conn:
        sector_values = await fetch_sector_values(conn, sector, month, window_months)
        if group_id is None:
            group_id = await lookup_group_for_sector(conn, sector)
        group_values = (
            await fetch_group_values(conn, group_id, month, window_months) if group_id else {}
        )

    resolved = merge_coefficients(sector_values, group_values, default_coefficients(variant))
    resolved.group_id = group_id

    logger.info(
        f"Resolved coefficients for sector={sector} {month}::{window_months}m "
        f"(sector_keys={len(sector_values)}, group={group_id}, group_keys={len(group_values)})"
    )
    return resolved


async def has_parameters(sector: str, period: Union[str, date], window_months: int) -> bool:
    """
    True when every essential key resolves from the sector or its group.

    Used to decide whether a potential score run needs calibration.
    """
    month = period_month(period)
    pool = await get_db_pool()

    async with pool.acquire() as conn:
        sector_values = await fetch_sector_values(conn, sector, month, window_months)
        if all(key in sector_values for key in ESSENTIAL_KEYS):
            return True
        group_id = await lookup_group_for_sector(conn, sector)
        group_values = (
            await fetch_group_values(conn, group_id, month, window_months) if group_id else {}
        )

    return all(key in sector_values or key in group_values for key in ESSENTIAL_KEYS)


# =============================================================================
# Store Writes
# =============================================================================

def coefficient_rows(values: Mapping[str, Any]) -> List[Tuple[str, Optional[float], Optional[str]]]:
    """(key, value_num, value_text) triples for known keys with a value."""
    rows = []
    for key, value in values.items():
        if key not in COEFFICIENT_KEYS or value is None:
            continue
        if key in TEXT_KEYS:
            text = value.value if isinstance(value, PenaltyCurve) else str(value)
            rows.append((key, None, text))
        else:
            rows.append((key, float(value), None))
    return rows


def validate_scope_id(scope: ParameterScope, scope_id: str) -> str:
    """
    Check that the scope id matches its scope.

    Raises:
        ValidationError: group scope without a UUID, or sector scope with a
            UUID or an invalid sector code
    """
    if scope == ParameterScope.GROUP:
        if not is_uuid(scope_id):
            raise ValidationError(f"Group scope requires a UUID, got '{scope_id}'")
        return str(scope_id)
    if is_uuid(scope_id):
        raise ValidationError(f"Sector scope got a group UUID '{scope_id}'")
    return validate_sector(scope_id)


async def save_coefficients(
    scope: ParameterScope,
    scope_id: str,
    period: Union[str, date],
    window_months: int,
    values: Mapping[str, Any],
) -> Tuple[int, int]:
    """
    Replace the coefficient set of (scope, scope_id, period, window).

    Previous active rows of that version are soft-deleted and the new rows
    inserted within one transaction, so readers never see a mix of old and
    new coefficients.

    Args:
        scope: sector or group
        scope_id: Sector code or group UUID
        period: Period of the set
        window_months: Window of the set
        values: key -> value (unknown keys and None values are skipped)

    Returns:
        (saved, deactivated) row counts

    Raises:
        ValidationError: Invalid scope id or nothing to save
    """
    scope_id = validate_scope_id(scope, scope_id)
    month = period_month(period)
    suffix_pattern = f"%{version_suffix(month, window_months)}"
    rows = coefficient_rows(values)
    if not rows:
        raise ValidationError("No known coefficient keys to save")

    pool = await get_db_pool()
    async with pool.acquire() as conn:
        async with conn.transaction():
            if scope == ParameterScope.SECTOR:
                status = await conn.execute(
                    DEACTIVATE_SECTOR_PARAMETER_SET, f"{scope_id}__", suffix_pattern
                )
                await conn.executemany(
                    INSERT_SECTOR_PARAMETER,
                    [
                        (ParameterKey(scope, scope_id, key, month, window_months).to_name(), num, text)
                        for key, num, text in rows
                    ],
                )
            else:
                status = await conn.execute(DEACTIVATE_GROUP_PARAMETER_SET, scope_id, suffix_pattern)
                await conn.executemany(
                    INSERT_GROUP_PARAMETER,
                    [
                        (scope_id, ParameterKey(scope, scope_id, key, month, window_months).to_name(), num, text)
                        for key, num, text in rows
                    ],
                )

    deactivated = affected_rows(status)
    logger.info(
        f"Saved {len(rows)} {scope.value} parameters for {scope_id} {month}::{window_months}m "
        f"(deactivated={deactivated})"
    )
    return len(rows), deactivated


# =============================================================================
# Listing
# =============================================================================

PARAMETER_BLOCKS: Dict[str, List[str]] = {
    "inadimplencia": ["w_atraso", "w_indice", "w_valor_aberto", "pen_trigger_ratio", "pen_max", "pen_curve"],
    "medicao": ["w_idade", "w_anomalias", "w_desvio"],
    "cadastro": ["z_warn", "z_risk"],
    "potencial": ["pot_min", "pot_max"],
    "familias": ["w_fam_cadastro", "w_fam_medicao", "w_fam_inad"],
    "classificacao": ["thr_baixo", "thr_medio", "thr_alto", "none_cut"],
}


async def list_parameters(
    scope_id: str,
    scope: Optional[ParameterScope] = None,
    month: Optional[str] = None,
    window_months: Optional[int] = None,
    active_only: bool = True,
) -> Dict[str, Any]:
    """
    List stored parameters of one sector or group.

    Args:
        scope_id: Sector code or group UUID
        scope: Scope; inferred from scope_id (UUID means group) when None
        month: Optional "YYYY-MM" filter
        window_months: Optional window filter
        active_only: Skip soft-deleted rows

    Returns:
        {"scope", "scope_id", "rows": [...], "versions": {"YYYY-MM::Wm":
        {block: {key: value}}}}; versions only include active rows
    """
    if scope is None:
        scope = ParameterScope.GROUP if is_uuid(scope_id) else ParameterScope.SECTOR
    scope_id = validate_scope_id(scope, scope_id)

    month_part = period_month(month) if month else "%"
    window_part = f"{int(window_months)}m" if window_months else "%m"
    suffix_pattern = f"%::{month_part}::{window_part}"

    group_scope = scope == ParameterScope.GROUP
    query = get_list_parameters_query(group_scope, active_only)
    first_arg = scope_id if group_scope else f"{scope_id}__"

    pool = await get_db_pool()
    async with pool.acquire() as conn:
        records = await conn.fetch(query, first_arg, suffix_pattern)

    rows: List[Dict[str, Any]] = []
    versions: Dict[str, Dict[str, Dict[str, Any]]] = {}

    for record in records:
        parsed = ParameterKey.from_name(record["name"], scope, scope_id if group_scope else None)
        if parsed is None or parsed.scope_id != scope_id:
            continue
        value = _stored_value(parsed.key, record["value_num"], record["value_text"])
        rows.append({
            "name": record["name"],
            "key": parsed.key,
            "period_month": parsed.period_month,
            "window_months": parsed.window_months,
            "value": value,
            "active": record["active"],
            "updated_at": record["updated_at"].isoformat() if record["updated_at"] else None,
        })

        if not record["active"]:
            continue
        version = versions.setdefault(f"{parsed.period_month}::{parsed.window_months}m", {})
        for block, keys in PARAMETER_BLOCKS.items():
            if parsed.key in keys:
                # Rows are ordered newest first; keep the first seen
                version.setdefault(block, {}).setdefault(parsed.key, value)

    return {"scope": scope.value, "scope_id": scope_id, "rows": rows, "versions": versions}
