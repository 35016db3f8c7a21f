"""
Score Run Orchestration Service

Runs one scoring pass for a (period, sector, window) and a variant:

1. Validate the period and sector
2. Fetch and normalize the sector's aggregates of the window; report
   field and family coverage
3. Resolve the policy
   - risk: coefficients resolved from sector, group and default values
   - potential: stored parameters when every essential key resolves;
     otherwise the cached calibration result, or a new calibration over
     the whole period population of the window. Cached policies are keyed
     by (period, sector, window). A compact calibration result is saved as
     sector parameters so later runs skip calibration.
4. Optionally delete the stale results of the scope (reprocess)
5. Score every record and persist the outputs

Validation failures raise ValidationError, missing aggregates NotFoundError,
store and calibration failures UpstreamError. Per-record failures never
abort the run; they are counted in the returned summary.
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

import asyncpg

from revenue_potential.core.config import Settings
from revenue_potential.core.exceptions import NotFoundError, UpstreamError
from revenue_potential.models.enums import ParameterScope, PolicySource, ScoreVariant
from revenue_potential.models.schemas import CanonicalRecord, ScoreRunResponse
from revenue_potential.services.calibration import CalibrationClient, PolicyCache
from revenue_potential.services.normalizer import (
    compute_coverage,
    normalize_population,
    thin_families,
)
from revenue_potential.services.parameters import (
    has_parameters,
    resolve_coefficients,
    save_coefficients,
)
from revenue_potential.services.periods import month_start, validate_sector
from revenue_potential.services.persistence import (
    delete_scores_for_scope,
    fetch_aggregates,
    persist_scores,
)
from revenue_potential.services.policy_validation import (
    ScoringPolicy,
    compact_to_parameter_values,
    policy_from_coefficients,
    validate_policy,
)
from revenue_potential.services.ranges import build_calibration_payload, build_range_output
from revenue_potential.services.scoring import score_batch


# Configure module logger
logger = logging.getLogger(__name__)


STORE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


# =============================================================================
# Policy Resolution
# =============================================================================

async def _calibrate(
    period: date,
    sector: str,
    window_months: int,
    settings: Settings,
    client: CalibrationClient,
) -> ScoringPolicy:
    """Calibrate a potential policy over the whole period population of one window."""
    population = normalize_population(await fetch_aggregates(period, window_months=window_months))
    payload = build_calibration_payload(period.isoformat(), population)

    raw_policy = await client.calibrate(payload)
    policy = validate_policy(
        raw_policy,
        ScoreVariant.POTENTIAL,
        default_validity_days=settings.default_policy_validity_days,
    )

    values = compact_to_parameter_values(policy)
    if values is not None:
        saved, _ = await save_coefficients(
            ParameterScope.SECTOR, sector, period, window_months, values
        )
        logger.info(f"Saved {saved} calibrated parameters for sector {sector}")
    return policy


async def resolve_policy(
    period: date,
    sector: str,
    window_months: int,
    variant: ScoreVariant,
    settings: Settings,
    client: CalibrationClient,
    cache: PolicyCache,
) -> Tuple[ScoringPolicy, PolicySource]:
    """
    Resolve the policy of a score run.

    Returns:
        (policy, source) where source tells whether it came from stored
        parameters, the policy cache or a fresh calibration

    Raises:
        ValidationError: Calibration returned an invalid policy
        UpstreamError: Calibration failed
    """
    validity_days = settings.default_policy_validity_days

    if variant == ScoreVariant.RISK:
        resolved = await resolve_coefficients(sector, period, window_months, variant=variant)
        policy = policy_from_coefficients(
            resolved.coefficients, variant, policy_id="RISK_PARAMS",
            validity_days=validity_days, period=period.isoformat(),
        )
        return policy, PolicySource.PARAMETERS

    if await has_parameters(sector, period, window_months):
        resolved = await resolve_coefficients(sector, period, window_months, variant=variant)
        policy = policy_from_coefficients(
            resolved.coefficients, variant, policy_id="EXISTING_PARAMS",
            validity_days=validity_days, period=period.isoformat(),
        )
        logger.info(f"Using stored parameters for sector {sector} ({resolved.sources})")
        return policy, PolicySource.PARAMETERS

    async def factory() -> ScoringPolicy:
        return await _calibrate(period, sector, window_months, settings, client)

    policy, from_cache = await cache.get_or_create(
        (period.isoformat(), sector, window_months), factory
    )
    return policy, PolicySource.CACHE if from_cache else PolicySource.CALIBRATION


# =============================================================================
# Score Run
# =============================================================================

async def _load_sector(
    period: date,
    sector: str,
    window_months: int,
) -> Tuple[List[Dict[str, Any]], List[CanonicalRecord]]:
    rows = await fetch_aggregates(period, sector, window_months)
    if not rows:
        raise NotFoundError(
            f"No aggregates for sector {sector} in {period.isoformat()} "
            f"(window {window_months}m)"
        )
    return rows, normalize_population(rows)


async def run_score(
    period: str,
    sector: str,
    window_months: int,
    variant: ScoreVariant,
    reprocess: bool,
    settings: Settings,
    client: CalibrationClient,
    cache: PolicyCache,
) -> ScoreRunResponse:
    """
    Score every account of a sector for a period and persist the results.

    Args:
        period: "YYYY-MM" or "YYYY-MM-DD"
        sector: Sector code
        window_months: Aggregation window used to version parameters
        variant: potential or risk
        reprocess: Delete the scope's stored results before writing
        settings: Application settings
        client: Calibration client
        cache: Policy cache

    Returns:
        ScoreRunResponse with totals, policy provenance and coverage

    Raises:
        ValidationError: Malformed period or sector, or an invalid policy
        NotFoundError: No aggregates for the sector
        UpstreamError: Store or calibration failure
    """
    sector = validate_sector(sector)
    period_date = month_start(period)

    try:
        _, records = await _load_sector(period_date, sector, window_months)

        coverage = compute_coverage(records)
        thin = thin_families(coverage, settings.min_family_coverage)
        coverage["thin_families"] = thin
        if thin:
            logger.warning(
                f"Low family coverage for sector {sector} {period_date}: {', '.join(thin)}"
            )

        policy, source = await resolve_policy(
            period_date, sector, window_months, variant, settings, client, cache
        )

        if reprocess:
            await delete_scores_for_scope(
                [record.account_id for record in records],
                period_date,
                variant,
                settings.delete_batch_size,
            )

        scored = score_batch(records, policy, variant)
        summary = await persist_scores(scored.outputs, variant, settings.persist_batch_size)
    except STORE_ERRORS as e:
        raise UpstreamError(f"Store failure during score run: {e}") from e

    logger.info(
        f"Score run {variant.value} {sector} {period_date}: total={summary.total}, "
        f"succeeded={summary.succeeded}, failed={summary.failed}, policy={policy.policy_id} "
        f"({source.value})"
    )
    return ScoreRunResponse(
        period=period_date.isoformat(),
        sector=sector,
        window_months=window_months,
        variant=variant,
        policy_id=policy.policy_id,
        policy_source=source,
        total=summary.total,
        succeeded=summary.succeeded,
        failed=summary.failed,
        insufficient_data=scored.insufficient_data,
        coverage=coverage,
    )


# =============================================================================
# Range Summary
# =============================================================================

async def summarize_sector(
    period: str,
    sector: str,
    settings: Settings,
    window_months: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Coverage, calibration payload and raw ranges of a sector for one window.

    No calibration call is made. The window defaults to
    settings.default_window_months.

    Raises:
        ValidationError: Malformed period or sector
        NotFoundError: No aggregates for the sector
        UpstreamError: Store failure
    """
    sector = validate_sector(sector)
    period_date = month_start(period)
    window = window_months or settings.default_window_months

    try:
        rows, records = await _load_sector(period_date, sector, window)
    except STORE_ERRORS as e:
        raise UpstreamError(f"Store failure reading aggregates: {e}") from e

    coverage = compute_coverage(records)
    coverage["thin_families"] = thin_families(coverage, settings.min_family_coverage)

    return {
        "period": period_date.isoformat(),
        "sector": sector,
        "window_months": window,
        "coverage": coverage,
        "calibration_payload": build_calibration_payload(period_date.isoformat(), records),
        "ranges": build_range_output(sector, rows),
    }
