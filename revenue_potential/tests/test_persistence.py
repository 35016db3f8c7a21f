"""
Score Persistence Test Module

Tests the write path of scoring results:
- VALIDATION_FAILED rewrite of malformed rows
- Last-wins deduplication on (account_id, period)
- Batch upserts with per-row fallback and UPSERT_INDIVIDUAL_FAILED audit
- Idempotent upsert statements for both result tables
- Reprocess deletes and the audit error listing
"""

import json
from datetime import date, datetime
from unittest.mock import AsyncMock, patch

import asyncpg
import pytest

from revenue_potential.models.enums import AuditErrorType, ScoreVariant, TemplateKey
from revenue_potential.models.schemas import BatchSummary, ScoreOutput
from revenue_potential.services.persistence import (
    dedupe_last_wins,
    delete_scores_for_scope,
    fetch_aggregates,
    fetch_error_rows,
    persist_scores,
    score_row_args,
    split_valid,
)
from revenue_potential.services.scoring import failed_output
from revenue_potential.sql.score_queries import (
    get_aggregates_query,
    get_delete_scores_query,
    get_error_rows_query,
    get_upsert_score_query,
)
from revenue_potential.tests.conftest import ACCOUNT_A, ACCOUNT_B, ACCOUNT_C, PERIOD


POOL_PATH = "revenue_potential.services.persistence.get_db_pool"
QUERY_PATH = "revenue_potential.services.persistence.execute_query"


def _output(account_id=ACCOUNT_A, period="2025-01-01", score=50.0, **extra):
    return ScoreOutput(
        account_id=account_id,
        period=period,
        sector="101",
        score_total=score,
        score_cadastro=10.0,
        score_medicao=20.0,
        score_inadimplencia=30.0,
        level="MEDIO",
        template_key=TemplateKey.BALANCEADO,
        reason="r",
        suggested_action="a",
        short_justification="j",
        **extra,
    )


# =============================================================================
# Queries
# =============================================================================

class TestScoreQueries:
    """Tests for the result table statements."""

    def test_upsert_is_keyed(self):
        query = get_upsert_score_query(ScoreVariant.POTENTIAL)
        assert "INSERT INTO scores" in query
        assert "ON CONFLICT (account_id, period) DO UPDATE" in query

    def test_risk_table(self):
        assert "risk_scores" in get_upsert_score_query(ScoreVariant.RISK)
        assert "risk_scores" in get_delete_scores_query(ScoreVariant.RISK)

    def test_error_query_filter(self):
        assert "$3" not in get_error_rows_query(ScoreVariant.POTENTIAL, filter_by_type=False)
        assert "$3" in get_error_rows_query(ScoreVariant.POTENTIAL, filter_by_type=True)

    def test_aggregate_query_placeholders(self):
        sector_window = get_aggregates_query(by_sector=True, by_window=True)
        assert "sector = $2" in sector_window
        assert "window_months = $3" in sector_window
        assert "ORDER BY account_id" in sector_window

        period_window = get_aggregates_query(by_sector=False, by_window=True)
        assert "window_months = $2" in period_window
        assert "sector" not in period_window

        unscoped = get_aggregates_query(by_sector=False, by_window=False)
        assert "window_months" not in unscoped


# =============================================================================
# Row Preparation
# =============================================================================

class TestRowPreparation:
    """Tests for validation, dedup and argument order."""

    def test_row_args_order(self):
        args = score_row_args(_output(period="2025-01"))
        assert args[0] == ACCOUNT_A
        assert args[1] == PERIOD
        assert args[2] == 50.0
        assert args[7] == "BALANCEADO"
        assert args[-1] is None
        assert len(args) == 12

    def test_split_valid(self):
        valid, invalid = split_valid([
            _output(),
            _output(account_id="not-a-uuid"),
            _output(account_id=ACCOUNT_B, period="2025-13-01"),
        ])

        assert [o.account_id for o in valid] == [ACCOUNT_A]
        assert len(invalid) == 2
        for output in invalid:
            assert output.score_total is None
            assert json.loads(output.error)["error_type"] == "VALIDATION_FAILED"
        assert "Invalid account id" in json.loads(invalid[0].error)["error_message"]

    def test_dedupe_last_wins(self):
        outputs = [
            _output(score=10.0),
            _output(account_id=ACCOUNT_B),
            _output(period="2025-01", score=90.0),
        ]
        unique = dedupe_last_wins(outputs)

        assert len(unique) == 2
        by_account = {o.account_id: o for o in unique}
        assert by_account[ACCOUNT_A].score_total == 90.0


# =============================================================================
# Persist
# =============================================================================

class TestPersistScores:
    """Tests for persist_scores()."""

    @pytest.mark.asyncio
    async def test_empty(self):
        assert await persist_scores([]) == BatchSummary()

    @pytest.mark.asyncio
    async def test_batch_upsert(self, mock_db_pool, mock_db_conn):
        outputs = [_output(score=10.0), _output(account_id=ACCOUNT_B), _output(score=90.0)]

        with patch(POOL_PATH, new=AsyncMock(return_value=mock_db_pool)):
            summary = await persist_scores(outputs)

        assert summary == BatchSummary(total=2, succeeded=2, failed=0)
        mock_db_conn.executemany.assert_awaited_once()
        query, rows = mock_db_conn.executemany.call_args.args
        assert "INSERT INTO scores" in query
        assert len(rows) == 2
        assert {row[0]: row[2] for row in rows}[ACCOUNT_A] == 90.0

    @pytest.mark.asyncio
    async def test_batches_split(self, mock_db_pool, mock_db_conn):
        outputs = [_output(account_id=a) for a in (ACCOUNT_A, ACCOUNT_B, ACCOUNT_C)]

        with patch(POOL_PATH, new=AsyncMock(return_value=mock_db_pool)):
            summary = await persist_scores(outputs, ScoreVariant.RISK, batch_size=2)

        assert summary.succeeded == 3
        assert mock_db_conn.executemany.await_count == 2
        assert mock_db_conn.transaction.call_count == 2
        assert "risk_scores" in mock_db_conn.executemany.call_args.args[0]

    @pytest.mark.asyncio
    async def test_batch_failure_falls_back_to_rows(self, mock_db_pool, mock_db_conn):
        mock_db_conn.executemany = AsyncMock(side_effect=asyncpg.InterfaceError("connection reset"))

        with patch(POOL_PATH, new=AsyncMock(return_value=mock_db_pool)):
            summary = await persist_scores([_output(), _output(account_id=ACCOUNT_B)])

        assert summary == BatchSummary(total=2, succeeded=2, failed=0)
        assert mock_db_conn.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_individual_failure_is_audited(self, mock_db_pool, mock_db_conn):
        mock_db_conn.executemany = AsyncMock(side_effect=asyncpg.InterfaceError("batch failed"))
        mock_db_conn.execute = AsyncMock(side_effect=[
            asyncpg.InterfaceError("row failed"),
            "INSERT 0 1",
            "INSERT 0 1",
        ])

        with patch(POOL_PATH, new=AsyncMock(return_value=mock_db_pool)):
            summary = await persist_scores([_output(), _output(account_id=ACCOUNT_B)])

        assert summary == BatchSummary(total=2, succeeded=1, failed=1)

        audit_args = mock_db_conn.execute.call_args_list[1].args
        assert audit_args[1] == ACCOUNT_A
        payload = json.loads(audit_args[-1])
        assert payload["error_type"] == AuditErrorType.UPSERT_INDIVIDUAL_FAILED.value
        assert "row failed" in payload["error_message"]

    @pytest.mark.asyncio
    async def test_invalid_rows_written_for_audit(self, mock_db_pool, mock_db_conn):
        outputs = [_output(), _output(account_id="imovel-42"), _output(account_id=ACCOUNT_B, period="bad")]

        with patch(POOL_PATH, new=AsyncMock(return_value=mock_db_pool)):
            summary = await persist_scores(outputs)

        assert summary == BatchSummary(total=3, succeeded=1, failed=2)
        # the unstorable period is only logged
        mock_db_conn.execute.assert_awaited_once()
        args = mock_db_conn.execute.call_args.args
        assert args[1] == "imovel-42"
        assert args[3] is None
        assert json.loads(args[-1])["error_type"] == "VALIDATION_FAILED"

    @pytest.mark.asyncio
    async def test_computation_failures_count_as_failed(self, mock_db_pool, mock_db_conn):
        failed = failed_output(AuditErrorType.COMPUTATION_FAILED, ACCOUNT_B, PERIOD, "101", "boom")

        with patch(POOL_PATH, new=AsyncMock(return_value=mock_db_pool)):
            summary = await persist_scores([_output(), failed])

        assert summary == BatchSummary(total=2, succeeded=1, failed=1)
        rows = mock_db_conn.executemany.call_args.args[1]
        assert len(rows) == 2

    @pytest.mark.asyncio
    async def test_repeated_runs_issue_identical_upserts(self, mock_db_pool, mock_db_conn):
        outputs = [_output(), _output(account_id=ACCOUNT_B)]

        with patch(POOL_PATH, new=AsyncMock(return_value=mock_db_pool)):
            await persist_scores(outputs)
            await persist_scores(outputs)

        first, second = mock_db_conn.executemany.call_args_list
        assert first.args == second.args


# =============================================================================
# Reprocess
# =============================================================================

class TestDeleteScores:
    """Tests for delete_scores_for_scope()."""

    @pytest.mark.asyncio
    async def test_batched_delete(self, mock_db_pool, mock_db_conn):
        mock_db_conn.execute = AsyncMock(return_value="DELETE 2")

        with patch(POOL_PATH, new=AsyncMock(return_value=mock_db_pool)):
            deleted = await delete_scores_for_scope(
                [ACCOUNT_A, ACCOUNT_B, ACCOUNT_C, ACCOUNT_A], PERIOD, batch_size=2
            )

        assert deleted == 4
        assert mock_db_conn.execute.await_count == 2
        first_args = mock_db_conn.execute.call_args_list[0].args
        assert first_args[1] == sorted([ACCOUNT_A, ACCOUNT_B, ACCOUNT_C])[:2]
        assert first_args[2] == PERIOD

    @pytest.mark.asyncio
    async def test_nothing_to_delete(self):
        pool_factory = AsyncMock()
        with patch(POOL_PATH, new=pool_factory):
            assert await delete_scores_for_scope([], PERIOD) == 0
        pool_factory.assert_not_awaited()


# =============================================================================
# Reads
# =============================================================================

class TestReads:
    """Tests for fetch_aggregates() and fetch_error_rows()."""

    @pytest.mark.asyncio
    async def test_fetch_aggregates_for_sector(self):
        query = AsyncMock(return_value=[{"account_id": ACCOUNT_A, "period": PERIOD}])
        with patch(QUERY_PATH, new=query):
            rows = await fetch_aggregates(PERIOD, "101")

        assert rows == [{"account_id": ACCOUNT_A, "period": PERIOD}]
        query.assert_awaited_once_with(
            get_aggregates_query(by_sector=True, by_window=False), PERIOD, "101"
        )

    @pytest.mark.asyncio
    async def test_fetch_aggregates_for_sector_and_window(self):
        query = AsyncMock(return_value=[])
        with patch(QUERY_PATH, new=query):
            await fetch_aggregates(PERIOD, "101", 6)

        sql, *args = query.await_args.args
        assert "window_months = $3" in sql
        assert args == [PERIOD, "101", 6]

    @pytest.mark.asyncio
    async def test_fetch_aggregates_for_period_window(self):
        query = AsyncMock(return_value=[])
        with patch(QUERY_PATH, new=query):
            await fetch_aggregates(PERIOD, window_months=12)

        sql, *args = query.await_args.args
        assert "window_months = $2" in sql
        assert args == [PERIOD, 12]

    @pytest.mark.asyncio
    async def test_fetch_aggregates_for_period(self):
        query = AsyncMock(return_value=[])
        with patch(QUERY_PATH, new=query):
            assert await fetch_aggregates(PERIOD) == []
        query.assert_awaited_once_with(get_aggregates_query(by_sector=False, by_window=False), PERIOD)

    @pytest.mark.asyncio
    async def test_error_rows(self):
        error = failed_output(AuditErrorType.VALIDATION_FAILED, "x", PERIOD, "101", "bad").error
        query = AsyncMock(return_value=[{
            "account_id": "x",
            "period": date(2025, 1, 1),
            "error": error,
            "created_at": datetime(2025, 2, 1, 8, 30),
            "updated_at": None,
        }])

        with patch(QUERY_PATH, new=query):
            result = await fetch_error_rows(limit=5000, offset=-3, error_type="VALIDATION_FAILED")

        assert result["limit"] == 500
        assert result["offset"] == 0
        assert result["total"] == 1
        row = result["rows"][0]
        assert row["period"] == "2025-01-01"
        assert row["created_at"] == "2025-02-01T08:30:00"
        assert row["error_payload"]["error_type"] == "VALIDATION_FAILED"
        assert query.call_args.args[1:] == (500, 0, "VALIDATION_FAILED")

    @pytest.mark.asyncio
    async def test_unparsable_payload(self):
        query = AsyncMock(return_value=[{"account_id": "x", "period": None, "error": "plain text"}])
        with patch(QUERY_PATH, new=query):
            result = await fetch_error_rows(variant=ScoreVariant.RISK)

        assert result["rows"][0]["error_payload"] is None
        assert "risk_scores" in query.call_args.args[0]
        assert query.call_args.args[1:] == (50, 0)
