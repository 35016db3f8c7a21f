"""
FastAPI router module for population range summaries.

GET /ranges/{period}/{sector} returns what a calibration would be fed for a
sector (binned histograms and presence rates), its field and family
coverage, and raw min/max/count ranges per family. It never calls the
calibration service.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Query

from revenue_potential.api.common import http_error
from revenue_potential.core.dependencies import SettingsDep
from revenue_potential.core.exceptions import ScoringError
from revenue_potential.services.score_run import summarize_sector


# Configure logging
logger = logging.getLogger(__name__)


router = APIRouter()


@router.get("/{period}/{sector}")
async def get_ranges(
    period: str,
    sector: str,
    settings: SettingsDep,
    window_months: Optional[int] = Query(
        default=None, ge=1, le=120, description="Aggregation window; defaults to settings"
    ),
) -> Dict[str, Any]:
    """Range summary and coverage of a sector for a period and window."""
    try:
        return await summarize_sector(period, sector, settings, window_months)
    except ScoringError as e:
        raise http_error(e)
    except Exception as e:
        logger.exception(f"Error summarizing ranges for {sector} in {period}")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to summarize ranges: {str(e)}"
        )
