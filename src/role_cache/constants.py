"""Constants shared by the cache and user layers.

Role names, observation years and sheet layout mirror the evaluation
workbook the row source snapshots are exported from.
"""

from enum import IntEnum

# =============================================================================
# DATA SOURCES
# =============================================================================

STAFF_SOURCE = "Staff"
SETTINGS_SOURCE = "Settings"


class StaffColumn(IntEnum):
    """Zero-based column positions in the Staff sheet."""

    NAME = 0
    EMAIL = 1
    ROLE = 2
    YEAR = 3
    BUILDING = 4
    SUMMATIVE_YEAR = 5


# =============================================================================
# ROLES
# =============================================================================

DEFAULT_ROLE = "Teacher"

AVAILABLE_ROLES: tuple[str, ...] = (
    "Teacher",
    "Nurse",
    "Therapeutic Specialist",
    "Library/Media Specialist",
    "Counselor",
    "School Psychologist",
    "Instructional Specialist",
    "Early Childhood",
    "Parent Educator",
    "Social Worker",
    "Sp.Ed.",
    "Peer Evaluator",
    "Administrator",
    "Full Access",
)

# Roles with access beyond their own rubric, mapped to their access type
SPECIAL_ROLES: dict[str, str] = {
    "Administrator": "administrator",
    "Peer Evaluator": "peer_evaluator",
    "Full Access": "full_access",
}

# Only peer evaluators are flagged as evaluators; administrators are not
EVALUATOR_ROLES: frozenset[str] = frozenset({"Peer Evaluator"})

VIEW_MODE_FULL = "full"
VIEW_MODE_ASSIGNED = "assigned"

# =============================================================================
# OBSERVATION YEARS
# =============================================================================

PROBATIONARY_YEAR = 0
OBSERVATION_YEARS: tuple[int, ...] = (1, 2, 3, PROBATIONARY_YEAR)
DEFAULT_YEAR = 1

# =============================================================================
# VALIDATION
# =============================================================================

EMAIL_PATTERN = (
    r"^[a-zA-Z0-9]+(?:[._%+-][a-zA-Z0-9]+)*"
    r"@(?:[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?\.)+[a-zA-Z]{2,}$"
)

MAX_TEXT_LENGTH = 255
