"""
FastAPI router module for score runs.

Implements GET /score/{period}/{sector}: scores every account of a sector
for a period with either the potential or the risk variant and persists the
results.

Batch semantics: the response is 200 with {total, succeeded, failed} even
when individual records failed; only malformed requests (400), sectors
without aggregates (404) and upstream failures before scoring (502) are
errors.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from revenue_potential.api.common import http_error
from revenue_potential.core.dependencies import CalibrationClientDep, PolicyCacheDep, SettingsDep
from revenue_potential.core.exceptions import ScoringError
from revenue_potential.models.enums import ScoreVariant
from revenue_potential.models.schemas import ScoreRunResponse
from revenue_potential.services.score_run import run_score


# Configure logging
logger = logging.getLogger(__name__)


router = APIRouter()


@router.get("/{period}/{sector}", response_model=ScoreRunResponse)
async def score_sector(
    period: str,
    sector: str,
    settings: SettingsDep,
    client: CalibrationClientDep,
    cache: PolicyCacheDep,
    window_months: Optional[int] = Query(
        default=None, ge=1, le=120, description="Aggregation window; defaults to settings"
    ),
    variant: ScoreVariant = Query(default=ScoreVariant.POTENTIAL, description="potential or risk"),
    reprocess: bool = Query(default=False, description="Delete stored results before scoring"),
) -> ScoreRunResponse:
    """
    Score a sector for a period.

    Args:
        period: YYYY-MM or YYYY-MM-DD
        sector: Sector code
        window_months: Window used to version parameters
        variant: potential (scores table) or risk (risk_scores table)
        reprocess: Delete the scope's stored results first

    Returns:
        ScoreRunResponse with totals, policy provenance and coverage
    """
    window = window_months or settings.default_window_months
    try:
        return await run_score(period, sector, window, variant, reprocess, settings, client, cache)
    except ScoringError as e:
        logger.warning(f"Score run {period}/{sector} failed: {e.message}")
        raise http_error(e)
    except Exception as e:
        logger.exception(f"Error scoring sector {sector} for {period}")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to score sector: {str(e)}"
        )
