"""
API package initialization.

This package contains the FastAPI router modules of the revenue potential
service:
- score: score runs per period and sector (potential and risk variants)
- params: versioned parameter writes, listing and resolution
- ranges: population range summaries and coverage
- errors: audit listing of failed rows
- groups: sector groups
"""

from fastapi import APIRouter

# Import router modules
from revenue_potential.api.score import router as score_router
from revenue_potential.api.params import router as params_router
from revenue_potential.api.ranges import router as ranges_router
from revenue_potential.api.errors import router as errors_router
from revenue_potential.api.groups import router as groups_router

# Create main API router
api_router = APIRouter()

# Include all sub-routers
api_router.include_router(score_router, prefix="/score", tags=["score"])
api_router.include_router(params_router, prefix="/params", tags=["params"])
api_router.include_router(ranges_router, prefix="/ranges", tags=["ranges"])
api_router.include_router(errors_router, prefix="/errors", tags=["errors"])
api_router.include_router(groups_router, prefix="/groups", tags=["groups"])

# Export all routers for selective imports
__all__ = [
    "api_router",
    "score_router",
    "params_router",
    "ranges_router",
    "errors_router",
    "groups_router",
]
