"""
FastAPI router module for the error audit listing.

GET /errors lists persisted result rows carrying an audit payload
(VALIDATION_FAILED, COMPUTATION_FAILED, UPSERT_INDIVIDUAL_FAILED), newest
first, optionally filtered by audit type.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Query

from revenue_potential.core.dependencies import SettingsDep
from revenue_potential.models.enums import AuditErrorType, ScoreVariant
from revenue_potential.services.persistence import fetch_error_rows


# Configure logging
logger = logging.getLogger(__name__)


router = APIRouter()


@router.get("")
async def list_errors(
    settings: SettingsDep,
    limit: int = Query(default=50, description="Page size (clamped to the configured maximum)"),
    offset: int = Query(default=0, description="Rows to skip"),
    error_type: Optional[AuditErrorType] = Query(default=None),
    variant: ScoreVariant = Query(default=ScoreVariant.POTENTIAL),
) -> Dict[str, Any]:
    """
    List rows with audit payloads.

    Returns:
        {"total", "limit", "offset", "rows"}
    """
    try:
        return await fetch_error_rows(
            limit=limit,
            offset=offset,
            error_type=error_type.value if error_type else None,
            variant=variant,
            max_limit=settings.error_list_max_limit,
        )
    except Exception as e:
        logger.exception("Error listing audit rows")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to list errors: {str(e)}"
        )
