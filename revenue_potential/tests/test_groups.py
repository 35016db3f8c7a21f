"""
Sector Group Test Module

Tests for auto-naming, sector normalization and the group create/update
transaction against a mocked asyncpg pool.
"""

from unittest.mock import AsyncMock, patch

import pytest

from revenue_potential.core.exceptions import ValidationError
from revenue_potential.services.groups import (
    create_or_update_group,
    list_group_sectors,
    next_group_name,
    normalize_sectors,
)
from revenue_potential.sql.parameter_queries import (
    INSERT_GROUP,
    SELECT_AUTO_GROUP_NAMES,
    SELECT_GROUP_BY_NAME,
    SELECT_SECTORS_FOR_GROUP,
    UPSERT_SECTOR_GROUP,
)
from revenue_potential.tests.conftest import GROUP_ID


class TestNextGroupName:
    """Tests for next_group_name()."""

    def test_one_past_highest_index(self):
        assert next_group_name(["Grupo 1", "Grupo 3", "Leste"]) == "Grupo 4"

    def test_case_insensitive(self):
        assert next_group_name(["grupo 7", " GRUPO 2 "]) == "Grupo 8"

    def test_first_group(self):
        assert next_group_name([]) == "Grupo 1"
        assert next_group_name(["Norte", "Grupo X", "Grupo 2b"]) == "Grupo 1"


class TestNormalizeSectors:
    """Tests for normalize_sectors()."""

    def test_trims_and_dedupes_in_order(self):
        assert normalize_sectors([" 102", "101", "102 ", ""]) == ["102", "101"]

    def test_rejects_encoding_separators(self):
        with pytest.raises(ValidationError):
            normalize_sectors(["10__1"])

    def test_empty(self):
        with pytest.raises(ValidationError, match="at least one"):
            normalize_sectors(["  ", ""])


class TestCreateOrUpdateGroup:
    """Tests for create_or_update_group()."""

    @pytest.mark.asyncio
    async def test_auto_named_group_is_created(self, mock_db_pool, mock_db_conn):
        mock_db_conn.fetch.return_value = [{"name": "Grupo 2"}, {"name": "grupo 1"}]

        with patch(
            "revenue_potential.services.groups.get_db_pool",
            new=AsyncMock(return_value=mock_db_pool),
        ):
            result = await create_or_update_group(None, ["101", "102", "101"])

        assert result.name == "Grupo 3"
        assert result.created is True
        assert result.sectors == ["101", "102"]

        mock_db_conn.fetch.assert_awaited_once_with(SELECT_AUTO_GROUP_NAMES)
        mock_db_conn.fetchrow.assert_awaited_once_with(SELECT_GROUP_BY_NAME, "Grupo 3")
        mock_db_conn.execute.assert_awaited_once_with(INSERT_GROUP, result.group_id, "Grupo 3")
        mock_db_conn.executemany.assert_awaited_once_with(
            UPSERT_SECTOR_GROUP, [("101", result.group_id), ("102", result.group_id)]
        )
        mock_db_conn.transaction.assert_called_once()

    @pytest.mark.asyncio
    async def test_existing_name_is_reused(self, mock_db_pool, mock_db_conn):
        mock_db_conn.fetchrow.return_value = {"id": GROUP_ID, "name": "Leste"}

        with patch(
            "revenue_potential.services.groups.get_db_pool",
            new=AsyncMock(return_value=mock_db_pool),
        ):
            result = await create_or_update_group("  Leste ", ["201"])

        assert result.group_id == GROUP_ID
        assert result.name == "Leste"
        assert result.created is False
        mock_db_conn.fetch.assert_not_awaited()
        mock_db_conn.execute.assert_not_awaited()
        mock_db_conn.executemany.assert_awaited_once_with(UPSERT_SECTOR_GROUP, [("201", GROUP_ID)])

    @pytest.mark.asyncio
    async def test_invalid_sectors_never_touch_the_store(self, mock_db_pool):
        pool_factory = AsyncMock(return_value=mock_db_pool)

        with patch("revenue_potential.services.groups.get_db_pool", new=pool_factory):
            with pytest.raises(ValidationError):
                await create_or_update_group("Leste", [])

        pool_factory.assert_not_awaited()


class TestListGroupSectors:
    """Tests for list_group_sectors()."""

    @pytest.mark.asyncio
    async def test_lists_sectors(self, mock_db_conn):
        mock_db_conn.fetch.return_value = [{"sector": "101"}, {"sector": "102"}]

        assert await list_group_sectors(mock_db_conn, GROUP_ID) == ["101", "102"]
        mock_db_conn.fetch.assert_awaited_once_with(SELECT_SECTORS_FOR_GROUP, GROUP_ID)

    @pytest.mark.asyncio
    async def test_invalid_group_id(self, mock_db_conn):
        with pytest.raises(ValidationError, match="Invalid group id"):
            await list_group_sectors(mock_db_conn, "grupo-1")
        mock_db_conn.fetch.assert_not_awaited()
