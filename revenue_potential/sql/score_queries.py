"""
Score Queries Module.

Parameterized PostgreSQL statements for reading account aggregates and
writing scoring results.

Tables:
    aggregates(account_id, period, sector, window_months, <raw metric columns>)
        read-only input, one row per account and period
    scores / risk_scores(account_id, period, score_total, score_cadastro,
        score_medicao, score_inadimplencia, level, template_key, reason,
        suggested_action, short_justification, error, created_at, updated_at)
        unique on (account_id, period)

Result table names come from RESULT_TABLES only; they are never taken from
request input.
"""

from typing import Dict

from revenue_potential.models.enums import ScoreVariant


RESULT_TABLES: Dict[ScoreVariant, str] = {
    ScoreVariant.POTENTIAL: "scores",
    ScoreVariant.RISK: "risk_scores",
}

# Column order of the upsert parameters ($1..$12)
SCORE_COLUMNS = [
    "account_id",
    "period",
    "score_total",
    "score_cadastro",
    "score_medicao",
    "score_inadimplencia",
    "level",
    "template_key",
    "reason",
    "suggested_action",
    "short_justification",
    "error",
]


# =============================================================================
# AGGREGATES
# =============================================================================

def get_aggregates_query(by_sector: bool, by_window: bool) -> str:
    """
    Build the aggregate read for a period.

    Placeholders: $1 = period, then sector when by_sector, then
    window_months when by_window.
    """
    conditions = ["period = $1"]
    if by_sector:
        conditions.append("sector = $2")
    if by_window:
        conditions.append(f"window_months = ${len(conditions) + 1}")

    where = "\n      AND ".join(conditions)
    order = "\n    ORDER BY account_id" if by_sector else ""
    return f"""
    SELECT *
    FROM aggregates
    WHERE {where}{order}
"""


# =============================================================================
# RESULTS
# =============================================================================

def result_table(variant: ScoreVariant) -> str:
    """Result table of a scoring variant."""
    return RESULT_TABLES[variant]


def get_upsert_score_query(variant: ScoreVariant) -> str:
    """
    Upsert one scoring result keyed by (account_id, period).

    A conflicting row is overwritten, so writing the same key twice leaves
    one row holding the last write. created_at is kept from the first write.

    Args:
        variant: Selects scores or risk_scores

    Returns:
        SQL string taking the SCORE_COLUMNS values as $1..$12
    """
    table = result_table(variant)
    placeholders = ", ".join(f"${i}" for i in range(1, len(SCORE_COLUMNS) + 1))
    updates = ",\n            ".join(
        f"{column} = EXCLUDED.{column}" for column in SCORE_COLUMNS[2:]
    )
    return f"""
        INSERT INTO {table} ({", ".join(SCORE_COLUMNS)}, created_at, updated_at)
        VALUES ({placeholders}, NOW(), NOW())
        ON CONFLICT (account_id, period) DO UPDATE SET
            {updates},
            updated_at = NOW()
    """


def get_delete_scores_query(variant: ScoreVariant) -> str:
    """
    Delete results of a period for a batch of accounts.

    $1 = account ids (text[]), $2 = period (date)
    """
    table = result_table(variant)
    return f"""
        DELETE FROM {table}
        WHERE account_id::text = ANY($1::text[])
          AND period = $2
    """


def get_error_rows_query(variant: ScoreVariant, filter_by_type: bool) -> str:
    """
    Rows carrying an audit payload, newest first.

    $1 = limit, $2 = offset, $3 = error_type (only when filter_by_type)

    The type filter reads error_type from the JSON payload; rows whose error
    is not a JSON object never match it.
    """
    table = result_table(variant)
    type_clause = ""
    if filter_by_type:
        type_clause = """
          AND (CASE WHEN left(error, 1) = '{' THEN error::jsonb ->> 'error_type' END) = $3"""
    return f"""
        SELECT account_id::text AS account_id, period, score_total, level,
               template_key, error, created_at, updated_at
        FROM {table}
        WHERE error IS NOT NULL{type_clause}
        ORDER BY created_at DESC
        LIMIT $1 OFFSET $2
    """
