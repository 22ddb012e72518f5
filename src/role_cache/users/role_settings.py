"""Settings-sheet parsing: which subdomains each role sees in each year.

The Settings sheet lists each role in column A. The role row and the three
rows below it describe domains 1-4; columns B, C and D hold the comma
separated subdomains for years 1, 2 and 3. Blank rows between roles are
skipped.
"""

import logging
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any

from pydantic import BaseModel, Field

from ..constants import AVAILABLE_ROLES, PROBATIONARY_YEAR
from .staff import sanitize_text

logger = logging.getLogger(__name__)

DOMAIN_COUNT = 4


class SettingsColumn(IntEnum):
    ROLE = 0
    YEAR_1 = 1
    YEAR_2 = 2
    YEAR_3 = 3


class RoleYearMapping(BaseModel):
    """Raw per-domain cells for one role."""

    year1: list[str]
    year2: list[str]
    year3: list[str]
    start_row: int


class SettingsData(BaseModel):
    role_year_mappings: dict[str, RoleYearMapping] = Field(default_factory=dict)
    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def roles_configured(self) -> int:
        return len(self.role_year_mappings)


def _cell(row: list[Any], column: int) -> str:
    return sanitize_text(row[column]) if len(row) > column else ""


def parse_settings_rows(rows: list[list[Any]]) -> SettingsData:
    """Parse Settings rows (header included) into role/year mappings."""
    data_rows = rows[1:]
    mappings: dict[str, RoleYearMapping] = {}

    i = 0
    while i < len(data_rows):
        role = _cell(data_rows[i], SettingsColumn.ROLE)
        if not role:
            i += 1
            continue

        if role not in AVAILABLE_ROLES:
            logger.warning(f"Unknown role in Settings row {i + 2}: {role}")
            i += 1
            continue

        if i + DOMAIN_COUNT - 1 >= len(data_rows):
            logger.warning(f"Incomplete Settings block for {role} at row {i + 2}")
            i += 1
            continue

        block = data_rows[i : i + DOMAIN_COUNT]
        mappings[role] = RoleYearMapping(
            year1=[_cell(row, SettingsColumn.YEAR_1) for row in block],
            year2=[_cell(row, SettingsColumn.YEAR_2) for row in block],
            year3=[_cell(row, SettingsColumn.YEAR_3) for row in block],
            start_row=i + 2,
        )
        i += DOMAIN_COUNT

    logger.debug(f"Settings parsed for {len(mappings)} roles")
    return SettingsData(role_year_mappings=mappings)


def parse_subdomain_list(cell: str) -> list[str]:
    """Split a comma separated subdomain cell (``"1a, 1c"``)."""
    return [item.strip() for item in cell.split(",") if item.strip()]


def build_domain_mappings(settings_data: SettingsData) -> dict[str, dict[str, list[list[str]]]]:
    """Expand every cell into subdomain lists: ``{role: {"year1": [[...] x4]}}``."""
    return {
        role: {
            "year1": [parse_subdomain_list(cell) for cell in mapping.year1],
            "year2": [parse_subdomain_list(cell) for cell in mapping.year2],
            "year3": [parse_subdomain_list(cell) for cell in mapping.year3],
        }
        for role, mapping in settings_data.role_year_mappings.items()
    }


def assigned_subdomains(
    domain_mappings: dict[str, dict[str, list[list[str]]]], role: str, year: int
) -> dict[str, list[str]]:
    """Subdomains assigned to ``role`` in ``year``, keyed ``domain1``..``domain4``.

    Probationary users get the year 1 assignment. Unknown roles or years give
    empty lists.
    """
    empty = {f"domain{n}": [] for n in range(1, DOMAIN_COUNT + 1)}
    year_key = "year1" if year == PROBATIONARY_YEAR else f"year{year}"
    domains = domain_mappings.get(role, {}).get(year_key)
    if not domains or len(domains) < DOMAIN_COUNT:
        return empty
    return {f"domain{n}": list(domains[n - 1]) for n in range(1, DOMAIN_COUNT + 1)}
