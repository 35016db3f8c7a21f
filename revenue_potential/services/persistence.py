"""
Score Persistence Service Module

Reads monthly account aggregates and writes scoring results.

Write path (persist_scores):
1. Rows with a malformed account id (not a UUID) or period are rewritten
   with null scores and a VALIDATION_FAILED audit payload
2. Valid rows are deduplicated on (account_id, period); the last one wins
3. Batches of `batch_size` rows are upserted in one transaction each
4. When a batch fails, its rows are retried one by one; a row that still
   fails is rewritten with an UPSERT_INDIVIDUAL_FAILED audit payload

Upserts are keyed by (account_id, period), so repeating a run overwrites
instead of duplicating.
"""

import json
import logging
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Tuple

import asyncpg

from revenue_potential.core.database import affected_rows, execute_query, get_db_pool
from revenue_potential.models.enums import AuditErrorType, ScoreVariant
from revenue_potential.models.schemas import BatchSummary, ScoreOutput
from revenue_potential.services.periods import is_uuid, is_valid_period, month_start
from revenue_potential.services.scoring import build_audit_error, failed_output
from revenue_potential.sql.score_queries import (
    get_aggregates_query,
    get_delete_scores_query,
    get_error_rows_query,
    get_upsert_score_query,
)


# Configure module logger
logger = logging.getLogger(__name__)


DEFAULT_BATCH_SIZE = 500

# Store failures that are retried per record instead of failing the run
STORE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError)


# =============================================================================
# Aggregates
# =============================================================================

async def fetch_aggregates(
    period: date,
    sector: Optional[str] = None,
    window_months: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """
    Fetch raw aggregate rows of a period.

    Args:
        period: First day of the month
        sector: Restrict to one sector; all sectors when None (the
            calibration population)
        window_months: Restrict to one aggregation window; every stored
            window when None

    Returns:
        Rows as plain dicts
    """
    args: List[Any] = [period]
    if sector is not None:
        args.append(sector)
    if window_months is not None:
        args.append(int(window_months))

    query = get_aggregates_query(by_sector=sector is not None, by_window=window_months is not None)
    records = await execute_query(query, *args)

    rows = [dict(record) for record in records]
    logger.info(
        f"Fetched {len(rows)} aggregates for period={period} sector={sector or '*'} "
        f"window={window_months or '*'}"
    )
    return rows


# =============================================================================
# Score Writes
# =============================================================================

def _chunks(items: Sequence[Any], size: int) -> List[Sequence[Any]]:
    size = max(1, int(size))
    return [items[i:i + size] for i in range(0, len(items), size)]


def score_row_args(output: ScoreOutput) -> Tuple[Any, ...]:
    """Upsert parameters of one output, in SCORE_COLUMNS order."""
    return (
        output.account_id,
        month_start(output.period),
        output.score_total,
        output.score_cadastro,
        output.score_medicao,
        output.score_inadimplencia,
        output.level,
        output.template_key.value if output.template_key is not None else None,
        output.reason,
        output.suggested_action,
        output.short_justification,
        output.error,
    )


def split_valid(outputs: Sequence[ScoreOutput]) -> Tuple[List[ScoreOutput], List[ScoreOutput]]:
    """
    Separate well-formed outputs from malformed ones.

    Returns:
        (valid, invalid); invalid outputs already carry null scores and a
        VALIDATION_FAILED audit payload
    """
    valid: List[ScoreOutput] = []
    invalid: List[ScoreOutput] = []

    for output in outputs:
        problems = []
        if not is_uuid(output.account_id):
            problems.append(f"Invalid account id: {output.account_id}")
        if not is_valid_period(output.period):
            problems.append(f"Invalid period: {output.period}")

        if problems:
            invalid.append(failed_output(
                AuditErrorType.VALIDATION_FAILED,
                output.account_id,
                output.period,
                output.sector,
                "; ".join(problems),
                {"account_id": output.account_id, "period": output.period},
            ))
        else:
            valid.append(output)

    return valid, invalid


def dedupe_last_wins(outputs: Sequence[ScoreOutput]) -> List[ScoreOutput]:
    """One output per (account_id, period), keeping the last occurrence."""
    unique: Dict[Tuple[str, str], ScoreOutput] = {}
    for output in outputs:
        unique[(output.account_id, str(month_start(output.period)))] = output
    return list(unique.values())


async def _upsert_one(conn, query: str, output: ScoreOutput) -> bool:
    """Upsert one output; on failure rewrite it with an audit payload."""
    try:
        await conn.execute(query, *score_row_args(output))
        return True
    except STORE_ERRORS as e:
        logger.error(f"Individual upsert failed for account {output.account_id}: {e}")
        audited = output.model_copy(update={
            "error": build_audit_error(
                AuditErrorType.UPSERT_INDIVIDUAL_FAILED,
                output.account_id,
                output.period,
                output.sector,
                e,
                {"account_id": output.account_id, "period": output.period},
            ),
        })

    try:
        await conn.execute(query, *score_row_args(audited))
    except STORE_ERRORS as e:
        logger.error(f"Audit row could not be written for account {output.account_id}: {e}")
    return False


async def _write_audit_rows(conn, query: str, outputs: Sequence[ScoreOutput]) -> None:
    for output in outputs:
        if not is_valid_period(output.period):
            logger.error(
                f"Skipping audit row for account {output.account_id}: "
                f"period '{output.period}' cannot be stored"
            )
            continue
        try:
            await conn.execute(query, *score_row_args(output))
        except STORE_ERRORS as e:
            logger.error(f"Audit row could not be written for account {output.account_id}: {e}")


async def persist_scores(
    outputs: Sequence[ScoreOutput],
    variant: ScoreVariant = ScoreVariant.POTENTIAL,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> BatchSummary:
    """
    Persist scoring outputs with validation, dedup and batch fallback.

    Args:
        outputs: Scoring outputs (failed ones carry an audit payload)
        variant: Selects the result table
        batch_size: Rows per batch transaction

    Returns:
        BatchSummary: total persisted keys; succeeded are rows written with
        scores; failed are rows carrying an audit payload
    """
    if not outputs:
        return BatchSummary()

    valid, invalid = split_valid(outputs)
    unique = dedupe_last_wins(valid)
    if len(unique) < len(valid):
        logger.info(f"Deduplicated {len(valid) - len(unique)} repeated (account_id, period) rows")

    query = get_upsert_score_query(variant)
    succeeded = 0

    pool = await get_db_pool()
    async with pool.acquire() as conn:
        for chunk in _chunks(unique, batch_size):
            try:
                async with conn.transaction():
                    await conn.executemany(query, [score_row_args(output) for output in chunk])
                succeeded += sum(1 for output in chunk if output.error is None)
            except STORE_ERRORS as e:
                logger.warning(
                    f"Batch upsert of {len(chunk)} rows failed ({e}); retrying individually"
                )
                for output in chunk:
                    if await _upsert_one(conn, query, output) and output.error is None:
                        succeeded += 1

        if invalid:
            logger.warning(f"Persisting {len(invalid)} invalid rows for audit")
            await _write_audit_rows(conn, query, invalid)

    total = len(unique) + len(invalid)
    summary = BatchSummary(total=total, succeeded=succeeded, failed=total - succeeded)

    logger.info(
        f"Persisted {variant.value} scores: total={summary.total}, "
        f"succeeded={summary.succeeded}, failed={summary.failed}"
    )
    return summary


# =============================================================================
# Reprocess
# =============================================================================

async def delete_scores_for_scope(
    account_ids: Sequence[str],
    period: date,
    variant: ScoreVariant = ScoreVariant.POTENTIAL,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> int:
    """
    Delete stored results of a period for the given accounts, in batches.

    Returns:
        Number of deleted rows
    """
    ids = sorted({str(account_id) for account_id in account_ids if account_id})
    if not ids:
        return 0

    query = get_delete_scores_query(variant)
    deleted = 0

    pool = await get_db_pool()
    async with pool.acquire() as conn:
        for chunk in _chunks(ids, batch_size):
            status = await conn.execute(query, list(chunk), period)
            deleted += affected_rows(status)

    logger.info(f"Deleted {deleted} {variant.value} rows for {len(ids)} accounts, period={period}")
    return deleted


# =============================================================================
# Error Listing
# =============================================================================

def _parse_payload(error: Optional[str]) -> Optional[Dict[str, Any]]:
    if not error:
        return None
    try:
        payload = json.loads(error)
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None


async def fetch_error_rows(
    limit: int = 50,
    offset: int = 0,
    error_type: Optional[str] = None,
    variant: ScoreVariant = ScoreVariant.POTENTIAL,
    max_limit: int = 500,
) -> Dict[str, Any]:
    """
    List persisted rows carrying an audit payload, newest first.

    Args:
        limit: Page size, clamped to [1, max_limit]
        offset: Rows to skip, at least 0
        error_type: Optional audit type filter (e.g. VALIDATION_FAILED)
        variant: Selects the result table
        max_limit: Upper bound for limit

    Returns:
        {"total", "limit", "offset", "rows"}; total counts rows in this page
    """
    limit = max(1, min(max_limit, int(limit)))
    offset = max(0, int(offset))

    query = get_error_rows_query(variant, filter_by_type=bool(error_type))
    args: List[Any] = [limit, offset]
    if error_type:
        args.append(error_type)

    records = await execute_query(query, *args)

    rows = []
    for record in records:
        row = dict(record)
        if isinstance(row.get("period"), date):
            row["period"] = row["period"].isoformat()
        for key in ("created_at", "updated_at"):
            if row.get(key) is not None:
                row[key] = row[key].isoformat()
        row["error_payload"] = _parse_payload(row.get("error"))
        rows.append(row)

    return {"total": len(rows), "limit": limit, "offset": offset, "rows": rows}
