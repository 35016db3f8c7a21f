"""
FastAPI dependency injection module for the revenue potential service.

Provides reusable dependencies for configuration, database connections, the
calibration client and the process-wide policy cache, so endpoint handlers
stay free of infrastructure wiring and tests can override any of them via
app.dependency_overrides.

Key Dependencies Provided:
- get_settings_dependency / SettingsDep: the cached Settings singleton
- get_db_session / DBSessionDep: a pooled asyncpg connection per request
- get_calibration_client / CalibrationClientDep: client built from Settings
- get_policy_cache_dependency / PolicyCacheDep: the shared PolicyCache

Usage Examples:
    @router.get("/score/{period}/{sector}")
    async def score(
        period: str,
        sector: str,
        settings: SettingsDep,
        client: CalibrationClientDep,
        cache: PolicyCacheDep,
    ) -> ScoreRunResponse:
        ...

    # In tests
    app.dependency_overrides[get_calibration_client] = lambda: fake_client
"""

from typing import AsyncGenerator, Annotated

from fastapi import Depends
from asyncpg import Connection

from revenue_potential.core.config import Settings, get_settings
from revenue_potential.core.database import get_db_pool
from revenue_potential.services.calibration import CalibrationClient, PolicyCache, get_policy_cache


# =============================================================================
# Database Session Dependency
# =============================================================================

async def get_db_session() -> AsyncGenerator[Connection, None]:
    """
    Yield an async database connection from the pool.

    The connection is released back to the pool when the endpoint
    completes, whether it succeeded or raised.

    Yields:
        asyncpg.Connection: An active database connection from the pool.
    """
    pool = await get_db_pool()
    async with pool.acquire() as connection:
        yield connection


# =============================================================================
# Settings Dependency
# =============================================================================

def get_settings_dependency() -> Settings:
    """
    Return the Settings singleton instance.

    Thin wrapper around get_settings() so tests can override it:

        app.dependency_overrides[get_settings_dependency] = lambda: test_settings
    """
    return get_settings()


# =============================================================================
# Calibration Dependencies
# =============================================================================

def get_calibration_client(
    settings: Annotated[Settings, Depends(get_settings_dependency)],
) -> CalibrationClient:
    """Calibration client configured from Settings."""
    return CalibrationClient.from_settings(settings)


def get_policy_cache_dependency() -> PolicyCache:
    """The process-wide policy cache."""
    return get_policy_cache()


# =============================================================================
# Type Aliases for Dependency Injection
# =============================================================================

# Usage: async def endpoint(settings: SettingsDep)
SettingsDep = Annotated[Settings, Depends(get_settings_dependency)]

# Usage: async def endpoint(db: DBSessionDep)
DBSessionDep = Annotated[Connection, Depends(get_db_session)]

CalibrationClientDep = Annotated[CalibrationClient, Depends(get_calibration_client)]

PolicyCacheDep = Annotated[PolicyCache, Depends(get_policy_cache_dependency)]
