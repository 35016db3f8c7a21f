"""
SQL Query Module for the revenue potential service.

Provides parameterized SQL for:
- Versioned sector and group parameters, and sector groups (parameter_queries)
- Aggregate reads and score writes (score_queries)

Keeps data access text out of the services. All statements use asyncpg's
$1, $2, ... placeholders.

Example usage:
    from revenue_potential.sql import get_upsert_score_query
    from revenue_potential.models.enums import ScoreVariant

    sql = get_upsert_score_query(ScoreVariant.RISK)
"""

# =============================================================================
# PARAMETER QUERIES - Versioned coefficients and sector groups
# =============================================================================

from revenue_potential.sql.parameter_queries import (
    SELECT_SECTOR_PARAMETERS_BY_NAME,
    DEACTIVATE_SECTOR_PARAMETER_SET,
    INSERT_SECTOR_PARAMETER,
    SELECT_GROUP_PARAMETERS_BY_SUFFIX,
    DEACTIVATE_GROUP_PARAMETER_SET,
    INSERT_GROUP_PARAMETER,
    SELECT_GROUP_FOR_SECTOR,
    SELECT_SECTORS_FOR_GROUP,
    SELECT_GROUP_BY_NAME,
    SELECT_AUTO_GROUP_NAMES,
    INSERT_GROUP,
    UPSERT_SECTOR_GROUP,
    get_list_parameters_query,
)

# =============================================================================
# SCORE QUERIES - Aggregates in, scores out
# =============================================================================

from revenue_potential.sql.score_queries import (
    RESULT_TABLES,
    SCORE_COLUMNS,
    get_aggregates_query,
    result_table,
    get_upsert_score_query,
    get_delete_scores_query,
    get_error_rows_query,
)

__all__ = [
    # Parameter queries
    'SELECT_SECTOR_PARAMETERS_BY_NAME',
    'DEACTIVATE_SECTOR_PARAMETER_SET',
    'INSERT_SECTOR_PARAMETER',
    'SELECT_GROUP_PARAMETERS_BY_SUFFIX',
    'DEACTIVATE_GROUP_PARAMETER_SET',
    'INSERT_GROUP_PARAMETER',
    'SELECT_GROUP_FOR_SECTOR',
    'SELECT_SECTORS_FOR_GROUP',
    'SELECT_GROUP_BY_NAME',
    'SELECT_AUTO_GROUP_NAMES',
    'INSERT_GROUP',
    'UPSERT_SECTOR_GROUP',
    'get_list_parameters_query',
    # Score queries
    'RESULT_TABLES',
    'SCORE_COLUMNS',
    'get_aggregates_query',
    'result_table',
    'get_upsert_score_query',
    'get_delete_scores_query',
    'get_error_rows_query',
]
