"""
FastAPI router module for versioned scoring parameters.

Implements:
- POST /params: persist a manually supplied coefficient set for a sector or
  a group (replaces the whole set of that period and window)
- GET /params: list the stored parameters of a sector or group
- GET /params/resolved/{period}/{sector}: the effective coefficients after
  sector -> group -> default resolution
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, HTTPException, Query

from revenue_potential.api.common import http_error
from revenue_potential.core.dependencies import SettingsDep
from revenue_potential.core.exceptions import ScoringError
from revenue_potential.models.enums import ParameterScope, ScoreVariant
from revenue_potential.models.schemas import ParamsSaveRequest, ParamsSaveResponse
from revenue_potential.services.parameters import (
    list_parameters,
    resolve_coefficients,
    save_coefficients,
)
from revenue_potential.services.periods import month_start, period_month, validate_sector
from revenue_potential.services.policy_validation import validate_weights


# Configure logging
logger = logging.getLogger(__name__)


router = APIRouter()


def _request_values(request: ParamsSaveRequest) -> Dict[str, Any]:
    """Flatten the request blocks into coefficient key -> value."""
    values: Dict[str, Any] = {}
    for block in (request.inadimplencia, request.medicao, request.cadastro, request.potencial):
        values.update(block.model_dump())
    return values


@router.post("", response_model=ParamsSaveResponse)
async def save_params(request: ParamsSaveRequest = Body(...)) -> ParamsSaveResponse:
    """
    Validate and persist a manual coefficient set.

    Returns:
        ParamsSaveResponse with saved and deactivated row counts
    """
    try:
        validate_weights(request.model_dump(mode="json"))
        saved, deactivated = await save_coefficients(
            request.scope,
            request.scope_id,
            request.period,
            request.window_months,
            _request_values(request),
        )
        return ParamsSaveResponse(
            scope=request.scope,
            scope_id=request.scope_id,
            period_month=period_month(request.period),
            window_months=request.window_months,
            saved=saved,
            deactivated=deactivated,
        )
    except ScoringError as e:
        logger.warning(f"Rejected parameters for {request.scope.value} {request.scope_id}: {e.message}")
        raise http_error(e)
    except Exception as e:
        logger.exception(f"Error saving parameters for {request.scope_id}")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to save parameters: {str(e)}"
        )


@router.get("")
async def get_params(
    scope_id: str = Query(..., min_length=1, description="Sector code or group UUID"),
    scope: Optional[str] = Query(default="auto", description="auto, sector or group"),
    month: Optional[str] = Query(default=None, description="YYYY-MM filter"),
    window_months: Optional[int] = Query(default=None, ge=1, le=120),
    active_only: bool = Query(default=True),
) -> Dict[str, Any]:
    """
    List stored parameters of one sector or group.

    Returns:
        {"scope", "scope_id", "rows", "versions"}
    """
    if scope not in (None, "auto", ParameterScope.SECTOR.value, ParameterScope.GROUP.value):
        raise HTTPException(status_code=400, detail=f"Invalid scope '{scope}'")
    resolved_scope = None if scope in (None, "auto") else ParameterScope(scope)

    try:
        return await list_parameters(
            scope_id,
            scope=resolved_scope,
            month=month,
            window_months=window_months,
            active_only=active_only,
        )
    except ScoringError as e:
        raise http_error(e)
    except Exception as e:
        logger.exception(f"Error listing parameters for {scope_id}")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to list parameters: {str(e)}"
        )


@router.get("/resolved/{period}/{sector}")
async def get_resolved_params(
    period: str,
    sector: str,
    settings: SettingsDep,
    window_months: Optional[int] = Query(default=None, ge=1, le=120),
    variant: ScoreVariant = Query(default=ScoreVariant.POTENTIAL),
) -> Dict[str, Any]:
    """
    Effective coefficients of a sector for a period and window.

    Returns:
        {"period", "sector", "window_months", "group_id", "coefficients",
        "sources"}; sources tells for each key whether it came from the
        sector, the group or the defaults
    """
    window = window_months or settings.default_window_months
    try:
        sector = validate_sector(sector)
        period_date = month_start(period)
        resolved = await resolve_coefficients(sector, period_date, window, variant=variant)
    except ScoringError as e:
        raise http_error(e)
    except Exception as e:
        logger.exception(f"Error resolving parameters for {sector}")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to resolve parameters: {str(e)}"
        )

    return {
        "period": period_date.isoformat(),
        "sector": sector,
        "window_months": window,
        "group_id": resolved.group_id,
        "coefficients": resolved.coefficients.model_dump(mode="json"),
        "sources": resolved.sources,
    }
