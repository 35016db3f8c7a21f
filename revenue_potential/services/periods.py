"""
Period and identifier helpers.

Periods are monthly. They are accepted as "YYYY-MM", "YYYY-MM-DD" or a date
and always resolved to the first day of the month. Parameter names use the
"YYYY-MM" form.
"""

import re
import uuid
from datetime import date, datetime
from typing import Union

from revenue_potential.core.exceptions import ValidationError


_PERIOD_PATTERN = re.compile(r"^(\d{4})-(\d{2})(?:-(\d{2}))?$")
_SECTOR_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]{1,64}$")


def month_start(value: Union[str, date, datetime]) -> date:
    """
    Resolve a period to the first day of its month.

    Args:
        value: "YYYY-MM", "YYYY-MM-DD", a date or a datetime.

    Returns:
        date: First day of the month.

    Raises:
        ValidationError: If the value is not a recognizable period.
    """
    if isinstance(value, datetime):
        return date(value.year, value.month, 1)
    if isinstance(value, date):
        return date(value.year, value.month, 1)

    text = str(value).strip() if value is not None else ""
    match = _PERIOD_PATTERN.match(text)
    if not match:
        raise ValidationError(f"Invalid period '{value}': expected YYYY-MM or YYYY-MM-DD")

    year, month = int(match.group(1)), int(match.group(2))
    day = int(match.group(3)) if match.group(3) else 1
    try:
        date(year, month, day)
    except ValueError as e:
        raise ValidationError(f"Invalid period '{value}': {e}") from e
    return date(year, month, 1)


def period_month(value: Union[str, date, datetime]) -> str:
    """Return the "YYYY-MM" form of a period."""
    return month_start(value).strftime("%Y-%m")


def is_valid_period(value: Union[str, date, datetime, None]) -> bool:
    if value is None:
        return False
    try:
        month_start(value)
    except ValidationError:
        return False
    return True


def is_uuid(value: object) -> bool:
    """True when the value parses as a UUID (any version)."""
    if value is None:
        return False
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


def validate_sector(sector: str) -> str:
    """
    Validate a sector code.

    Raises:
        ValidationError: If the code is empty or carries separator characters
            that would break parameter name encoding.
    """
    text = (sector or "").strip()
    if not text or "__" in text or "::" in text or not _SECTOR_PATTERN.match(text):
        raise ValidationError(f"Invalid sector '{sector}'")
    return text
