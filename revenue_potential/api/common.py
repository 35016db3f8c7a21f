"""
Shared error mapping for the API routers.

Engine errors map to HTTP statuses as follows:
    ValidationError -> 400
    NotFoundError   -> 404
    UpstreamError   -> 502
Anything else is logged by the router and returned as 500.
"""

from fastapi import HTTPException

from revenue_potential.core.exceptions import (
    NotFoundError,
    ScoringError,
    UpstreamError,
    ValidationError,
)


def http_error(error: ScoringError) -> HTTPException:
    """HTTPException for an engine error."""
    if isinstance(error, ValidationError):
        status_code = 400
    elif isinstance(error, NotFoundError):
        status_code = 404
    elif isinstance(error, UpstreamError):
        status_code = 502
    else:
        status_code = 500
    return HTTPException(status_code=status_code, detail=error.message)
