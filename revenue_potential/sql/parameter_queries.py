"""
Parameter Queries Module.

Parameterized PostgreSQL statements for versioned scoring coefficients.

Tables:
    parameters_by_sector(name, value_num, value_text, active, updated_at)
        name = "{sector}__{key}::{YYYY-MM}::{W}m"
    parameters_by_group(group_id, name, value_num, value_text, active, updated_at)
        name = "{key}::{YYYY-MM}::{W}m"
    sector_to_group(sector, group_id)
    sector_groups(id, name, active)

Superseded rows are soft-deleted (active = false), never removed.

Note on LIKE: sector codes and keys contain underscores, which are LIKE
wildcards, so prefix matching uses starts_with() and only the
"::YYYY-MM::Wm" suffix (digits, dashes, colons, 'm') goes through LIKE.
"""


# =============================================================================
# SECTOR SCOPE
# =============================================================================

SELECT_SECTOR_PARAMETERS_BY_NAME = """
    SELECT name, value_num, value_text
    FROM parameters_by_sector
    WHERE name = ANY($1::text[])
      AND active = true
"""

DEACTIVATE_SECTOR_PARAMETER_SET = """
    UPDATE parameters_by_sector
    SET active = false, updated_at = NOW()
    WHERE starts_with(name, $1)
      AND name LIKE $2
      AND active = true
"""

INSERT_SECTOR_PARAMETER = """
    INSERT INTO parameters_by_sector (name, value_num, value_text, active, updated_at)
    VALUES ($1, $2, $3, true, NOW())
"""


# =============================================================================
# GROUP SCOPE
# =============================================================================

SELECT_GROUP_PARAMETERS_BY_SUFFIX = """
    SELECT name, value_num, value_text
    FROM parameters_by_group
    WHERE group_id = $1
      AND name LIKE $2
      AND active = true
"""

DEACTIVATE_GROUP_PARAMETER_SET = """
    UPDATE parameters_by_group
    SET active = false, updated_at = NOW()
    WHERE group_id = $1
      AND name LIKE $2
      AND active = true
"""

INSERT_GROUP_PARAMETER = """
    INSERT INTO parameters_by_group (group_id, name, value_num, value_text, active, updated_at)
    VALUES ($1, $2, $3, $4, true, NOW())
"""


# =============================================================================
# SECTOR GROUPS
# =============================================================================

SELECT_GROUP_FOR_SECTOR = """
    SELECT group_id
    FROM sector_to_group
    WHERE sector = $1
    LIMIT 1
"""

SELECT_SECTORS_FOR_GROUP = """
    SELECT sector
    FROM sector_to_group
    WHERE group_id = $1
    ORDER BY sector
"""

SELECT_GROUP_BY_NAME = """
    SELECT id, name
    FROM sector_groups
    WHERE name = $1
    LIMIT 1
"""

SELECT_AUTO_GROUP_NAMES = """
    SELECT name
    FROM sector_groups
    WHERE name LIKE 'Grupo %'
"""

INSERT_GROUP = """
    INSERT INTO sector_groups (id, name, active)
    VALUES ($1, $2, true)
"""

UPSERT_SECTOR_GROUP = """
    INSERT INTO sector_to_group (sector, group_id)
    VALUES ($1, $2)
    ON CONFLICT (sector) DO UPDATE SET group_id = EXCLUDED.group_id
"""


# =============================================================================
# LISTING
# =============================================================================

def get_list_parameters_query(group_scope: bool, active_only: bool) -> str:
    """
    Build the listing query for one scope.

    Sector scope: $1 = name prefix ("{sector}__"), $2 = LIKE suffix pattern.
    Group scope: $1 = group_id, $2 = LIKE suffix pattern.

    Args:
        group_scope: True to read parameters_by_group
        active_only: True to skip soft-deleted rows

    Returns:
        SQL string
    """
    active_clause = "AND active = true" if active_only else ""
    if group_scope:
        return f"""
            SELECT group_id, name, value_num, value_text, active, updated_at
            FROM parameters_by_group
            WHERE group_id = $1
              AND name LIKE $2
              {active_clause}
            ORDER BY name, updated_at DESC
        """
    return f"""
        SELECT name, value_num, value_text, active, updated_at
        FROM parameters_by_sector
        WHERE starts_with(name, $1)
          AND name LIKE $2
          {active_clause}
        ORDER BY name, updated_at DESC
    """
