"""
FastAPI router module for sector groups.

Implements POST /groups (create or reuse a group and map sectors to it) and
GET /groups/{group_id}/sectors.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, HTTPException

from revenue_potential.api.common import http_error
from revenue_potential.core.dependencies import DBSessionDep
from revenue_potential.core.exceptions import ScoringError
from revenue_potential.models.schemas import GroupCreateRequest, GroupResponse
from revenue_potential.services.groups import create_or_update_group, list_group_sectors


# Configure logging
logger = logging.getLogger(__name__)


router = APIRouter()


@router.post("", response_model=GroupResponse)
async def create_group(request: GroupCreateRequest = Body(...)) -> GroupResponse:
    """
    Create or update a sector group.

    A missing name yields the next "Grupo N". Sectors already mapped to
    another group move to this one.
    """
    try:
        return await create_or_update_group(request.name, request.sectors)
    except ScoringError as e:
        raise http_error(e)
    except Exception as e:
        logger.exception("Error creating sector group")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to create group: {str(e)}"
        )


@router.get("/{group_id}/sectors")
async def get_group_sectors(group_id: str, db: DBSessionDep) -> Dict[str, Any]:
    """Sectors mapped to a group."""
    try:
        sectors = await list_group_sectors(db, group_id)
    except ScoringError as e:
        raise http_error(e)
    except Exception as e:
        logger.exception(f"Error listing sectors of group {group_id}")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to list group sectors: {str(e)}"
        )
    return {"group_id": group_id, "sectors": sectors}
