"""Staff directory models and Staff-sheet parsing."""

import logging
import math
import re
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from ..constants import (
    AVAILABLE_ROLES,
    DEFAULT_ROLE,
    DEFAULT_YEAR,
    EMAIL_PATTERN,
    MAX_TEXT_LENGTH,
    PROBATIONARY_YEAR,
    StaffColumn,
)

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(EMAIL_PATTERN)
_SUMMATIVE_TRUE = {"yes", "y", "true", "x", "1"}


class StaffRecord(BaseModel):
    """One row of the Staff sheet."""

    name: str = ""
    email: str
    role: str = DEFAULT_ROLE
    year: int = DEFAULT_YEAR
    building: str = ""
    is_summative_year: bool = False
    row_number: int | None = Field(default=None, description="1-based sheet row")


class StaffDirectory(BaseModel):
    """Every valid staff record plus the metadata used for change detection."""

    users: list[StaffRecord] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    row_count: int = 0
    data_hash: str | None = None

    def find(self, email: str) -> StaffRecord | None:
        """Find a record by email, case-insensitively."""
        wanted = normalize_email(email)
        for record in self.users:
            if record.email == wanted:
                return record
        return None


def normalize_email(email: Any) -> str:
    return str(email or "").strip().lower()


def is_valid_email(email: Any) -> bool:
    """Check the syntax of an email address."""
    if not email or not isinstance(email, str):
        return False
    return bool(_EMAIL_RE.match(email.strip()))


def sanitize_text(value: Any, max_length: int = MAX_TEXT_LENGTH) -> str:
    """Collapse a cell to a trimmed, length-limited string."""
    if value is None:
        return ""
    return " ".join(str(value).split())[:max_length]


def parse_year_value(value: Any) -> int:
    """Parse an observation year cell.

    ``1``-``3`` (or ``"Year 2"``) give that year, ``P`` / ``probationary``
    give the probationary year 0. Anything else falls back to year 1.
    """
    if isinstance(value, bool):
        return DEFAULT_YEAR
    if isinstance(value, float) and not math.isfinite(value):
        return DEFAULT_YEAR
    if isinstance(value, (int, float)):
        year = int(value)
        return year if year in (1, 2, 3) else DEFAULT_YEAR

    text = sanitize_text(value).lower()
    if not text:
        return DEFAULT_YEAR
    if text.startswith("p"):
        return PROBATIONARY_YEAR

    digits = re.search(r"\d+", text)
    if digits:
        year = int(digits.group())
        if year in (1, 2, 3):
            return year
    return DEFAULT_YEAR


def parse_summative_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return sanitize_text(value).lower() in _SUMMATIVE_TRUE


def _cell(row: list[Any], column: StaffColumn) -> Any:
    return row[column] if len(row) > column else None


def parse_staff_row(row: list[Any], row_number: int | None = None) -> StaffRecord | None:
    """Parse one Staff row.

    Returns:
        StaffRecord, or None when the email is missing or invalid
    """
    email = normalize_email(_cell(row, StaffColumn.EMAIL))
    if not is_valid_email(email):
        if email:
            logger.debug(f"Skipping staff row {row_number}: invalid email")
        return None

    role = sanitize_text(_cell(row, StaffColumn.ROLE))
    if role not in AVAILABLE_ROLES:
        if role:
            logger.warning(f"Unknown role '{role}' in staff row {row_number}, using {DEFAULT_ROLE}")
        role = DEFAULT_ROLE

    return StaffRecord(
        name=sanitize_text(_cell(row, StaffColumn.NAME)),
        email=email,
        role=role,
        year=parse_year_value(_cell(row, StaffColumn.YEAR)),
        building=sanitize_text(_cell(row, StaffColumn.BUILDING)),
        is_summative_year=parse_summative_flag(_cell(row, StaffColumn.SUMMATIVE_YEAR)),
        row_number=row_number,
    )


def build_staff_directory(
    rows: list[list[Any]], data_hash: str | None = None, has_header: bool = True
) -> StaffDirectory:
    """Build a StaffDirectory from raw Staff rows.

    Args:
        rows: Sheet rows including the header row when ``has_header``
        data_hash: Content hash of ``rows`` for later change detection
        has_header: Skip the first row

    Returns:
        StaffDirectory holding only rows with a valid email
    """
    start = 1 if has_header else 0
    users = []
    for index, row in enumerate(rows[start:], start=start + 1):
        record = parse_staff_row(row, row_number=index)
        if record is not None:
            users.append(record)

    data_rows = len(rows) - start if len(rows) > start else 0
    logger.debug(f"Parsed {len(users)} staff records from {data_rows} rows")
    return StaffDirectory(users=users, row_count=len(users), data_hash=data_hash)
