"""
Sector Group Service Module

Sector groups let several sectors share group-scoped parameters. A group is
created on demand (or reused when the name exists) and sectors are mapped to
it; a sector belongs to at most one group, so mapping it again moves it.

Groups created without a name are auto-named "Grupo N", N being one more
than the highest existing auto-generated index.
"""

import logging
import re
import uuid
from typing import List, Optional, Sequence

from revenue_potential.core.database import get_db_pool
from revenue_potential.core.exceptions import ValidationError
from revenue_potential.models.schemas import GroupResponse
from revenue_potential.services.periods import is_uuid, validate_sector
from revenue_potential.sql.parameter_queries import (
    INSERT_GROUP,
    SELECT_AUTO_GROUP_NAMES,
    SELECT_GROUP_BY_NAME,
    SELECT_SECTORS_FOR_GROUP,
    UPSERT_SECTOR_GROUP,
)


# Configure module logger
logger = logging.getLogger(__name__)


AUTO_NAME_PREFIX = "Grupo"
_AUTO_NAME_PATTERN = re.compile(r"^Grupo\s+(\d+)$", re.IGNORECASE)


def next_group_name(existing: Sequence[str]) -> str:
    """
    Next auto-generated group name.

    Example:
        >>> next_group_name(["Grupo 1", "Grupo 3", "Leste"])
        'Grupo 4'
    """
    indices = []
    for name in existing:
        match = _AUTO_NAME_PATTERN.match(str(name or "").strip())
        if match:
            indices.append(int(match.group(1)))
    return f"{AUTO_NAME_PREFIX} {max(indices) + 1 if indices else 1}"


def normalize_sectors(sectors: Sequence[str]) -> List[str]:
    """Trimmed, validated, de-duplicated sector codes in input order."""
    seen = set()
    result = []
    for sector in sectors:
        code = str(sector).strip()
        if not code or code in seen:
            continue
        result.append(validate_sector(code))
        seen.add(code)
    if not result:
        raise ValidationError("sectors must contain at least one sector code")
    return result


async def create_or_update_group(name: Optional[str], sectors: Sequence[str]) -> GroupResponse:
    """
    Create (or reuse) a group and map sectors to it.

    Args:
        name: Group name; auto-generated when empty
        sectors: Sector codes to associate

    Returns:
        GroupResponse with created=False when a group with that name existed

    Raises:
        ValidationError: No usable sector codes
    """
    codes = normalize_sectors(sectors)
    requested = (name or "").strip()

    pool = await get_db_pool()
    async with pool.acquire() as conn:
        async with conn.transaction():
            if requested:
                group_name = requested
            else:
                rows = await conn.fetch(SELECT_AUTO_GROUP_NAMES)
                group_name = next_group_name([row["name"] for row in rows])

            existing = await conn.fetchrow(SELECT_GROUP_BY_NAME, group_name)
            if existing is not None:
                group_id = str(existing["id"])
                created = False
            else:
                group_id = str(uuid.uuid4())
                await conn.execute(INSERT_GROUP, group_id, group_name)
                created = True

            await conn.executemany(UPSERT_SECTOR_GROUP, [(code, group_id) for code in codes])

    logger.info(
        f"{'Created' if created else 'Updated'} group '{group_name}' ({group_id}) "
        f"with {len(codes)} sectors"
    )
    return GroupResponse(group_id=group_id, name=group_name, sectors=codes, created=created)


async def list_group_sectors(conn, group_id: str) -> List[str]:
    """Sector codes mapped to a group, read on the given connection."""
    if not is_uuid(group_id):
        raise ValidationError(f"Invalid group id '{group_id}'")
    rows = await conn.fetch(SELECT_SECTORS_FOR_GROUP, group_id)
    return [row["sector"] for row in rows]
