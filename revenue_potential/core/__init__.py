"""
Core infrastructure package for the revenue potential service.

Provides:
- Configuration management via pydantic-settings
- Async PostgreSQL database connectivity via asyncpg
- The engine's exception taxonomy
- FastAPI dependency injection utilities

This module re-exports key components from submodules for convenient
importing, so that

    from revenue_potential.core import get_settings, get_db_pool, SettingsDep

works instead of importing from each submodule.

Components Re-exported:
    Settings: Pydantic settings class with all configuration parameters
    get_settings: Function returning the cached Settings singleton
    init_db / close_db / get_db_pool: Pool lifecycle
    ScoringError and subclasses: Engine errors
    get_db_session / DBSessionDep: Pooled connection per request
    get_settings_dependency / SettingsDep: Settings injection
    CalibrationClientDep / PolicyCacheDep: Calibration injection
"""

# =============================================================================
# Re-exports from revenue_potential.core.config
# =============================================================================
from revenue_potential.core.config import Settings, get_settings

# =============================================================================
# Re-exports from revenue_potential.core.database
# =============================================================================
from revenue_potential.core.database import init_db, close_db, get_db_pool

# =============================================================================
# Re-exports from revenue_potential.core.exceptions
# =============================================================================
from revenue_potential.core.exceptions import (
    ScoringError,
    ValidationError,
    UpstreamError,
    NotFoundError,
    ComputationError,
)

# =============================================================================
# Re-exports from revenue_potential.core.dependencies
# =============================================================================
from revenue_potential.core.dependencies import (
    get_db_session,
    get_settings_dependency,
    get_calibration_client,
    get_policy_cache_dependency,
    SettingsDep,
    DBSessionDep,
    CalibrationClientDep,
    PolicyCacheDep,
)

__all__ = [
    # Configuration management (from config.py)
    'Settings',
    'get_settings',
    # Database pool lifecycle (from database.py)
    'init_db',
    'close_db',
    'get_db_pool',
    # Errors (from exceptions.py)
    'ScoringError',
    'ValidationError',
    'UpstreamError',
    'NotFoundError',
    'ComputationError',
    # FastAPI dependency injection (from dependencies.py)
    'get_db_session',
    'get_settings_dependency',
    'get_calibration_client',
    'get_policy_cache_dependency',
    'SettingsDep',
    'DBSessionDep',
    'CalibrationClientDep',
    'PolicyCacheDep',
]
