"""Unit tests for staff parsing and role settings parsing."""

import pytest

from src.role_cache.users.role_settings import (
    assigned_subdomains,
    build_domain_mappings,
    parse_settings_rows,
    parse_subdomain_list,
)
from src.role_cache.users.staff import (
    build_staff_directory,
    is_valid_email,
    parse_staff_row,
    parse_year_value,
    sanitize_text,
)


@pytest.mark.unit
class TestEmailValidation:
    @pytest.mark.parametrize(
        "email",
        ["ada@school.org", "first.last@district.k12.mo.us", "a+tag@x.io", "A1@B2.COM"],
    )
    def test_valid(self, email):
        assert is_valid_email(email) is True

    @pytest.mark.parametrize(
        "email",
        ["", None, "no-at-sign", "two@@school.org", ".lead@school.org", "a@school", "a@-x.org", 42],
    )
    def test_invalid(self, email):
        assert is_valid_email(email) is False


@pytest.mark.unit
class TestParseYearValue:
    @pytest.mark.parametrize(
        "value, expected",
        [
            (1, 1),
            (3, 3),
            (2.0, 2),
            ("2", 2),
            ("Year 3", 3),
            ("P", 0),
            ("probationary", 0),
            ("Probationary 1", 0),
            ("", 1),
            (None, 1),
            (7, 1),
            ("seven", 1),
            (True, 1),
            (float("nan"), 1),
            (float("inf"), 1),
            (float("-inf"), 1),
        ],
    )
    def test_values(self, value, expected):
        assert parse_year_value(value) == expected


@pytest.mark.unit
class TestStaffRows:
    def test_sanitize_text(self):
        assert sanitize_text("  Ada   Lovelace \n") == "Ada Lovelace"
        assert sanitize_text(None) == ""
        assert len(sanitize_text("x" * 400)) == 255

    def test_non_finite_year_cell(self):
        record = parse_staff_row(["Ada", "ada@school.org", "Nurse", float("nan"), "North", ""], row_number=2)

        assert record.year == 1

    def test_parse_row(self):
        record = parse_staff_row(["Ada", " ADA@School.org ", "Nurse", "2", "North", "Yes"], row_number=2)

        assert record.email == "ada@school.org"
        assert record.role == "Nurse"
        assert record.year == 2
        assert record.is_summative_year is True
        assert record.row_number == 2

    def test_unknown_role_defaults_to_teacher(self):
        record = parse_staff_row(["Ada", "ada@school.org", "Astronaut", 1])

        assert record.role == "Teacher"

    def test_short_row(self):
        record = parse_staff_row(["Ada", "ada@school.org"])

        assert record.role == "Teacher"
        assert record.year == 1
        assert record.building == ""

    def test_invalid_email_skipped(self):
        assert parse_staff_row(["Bad", "nope", "Teacher", 1]) is None

    def test_build_directory(self, sample_staff_rows):
        directory = build_staff_directory(sample_staff_rows, data_hash="h")

        assert directory.row_count == 3
        assert directory.data_hash == "h"
        assert directory.find("alan@school.org").year == 0
        assert directory.find("grace@school.org").role == "Administrator"
        assert directory.find("nobody@school.org") is None

    def test_header_only(self, sample_staff_rows):
        assert build_staff_directory(sample_staff_rows[:1]).row_count == 0


@pytest.mark.unit
class TestRoleSettings:
    def test_parse_blocks(self, sample_settings_rows):
        settings_data = parse_settings_rows(sample_settings_rows)

        assert settings_data.roles_configured == 2
        teacher = settings_data.role_year_mappings["Teacher"]
        assert teacher.year1 == ["1a, 1b", "2a", "3a", "4a"]
        assert teacher.year3 == ["1d, 1e", "2c", "3d", "4c, 4d"]
        assert teacher.start_row == 2
        assert settings_data.role_year_mappings["Nurse"].start_row == 7

    def test_unknown_role_and_incomplete_block_skipped(self):
        rows = [
            ["Role", "Y1", "Y2", "Y3"],
            ["Astronaut", "1a", "1b", "1c"],
            ["Counselor", "1a", "1b", "1c"],
            ["", "2a", "2b", "2c"],
        ]

        assert parse_settings_rows(rows).roles_configured == 0

    def test_parse_subdomain_list(self):
        assert parse_subdomain_list(" 1a, ,1b ,") == ["1a", "1b"]
        assert parse_subdomain_list("") == []

    def test_assigned_subdomains(self, sample_settings_rows):
        mappings = build_domain_mappings(parse_settings_rows(sample_settings_rows))

        year2 = assigned_subdomains(mappings, "Teacher", 2)
        assert year2 == {"domain1": ["1c"], "domain2": ["2b"], "domain3": ["3b", "3c"], "domain4": ["4b"]}

    def test_probationary_gets_year_one(self, sample_settings_rows):
        mappings = build_domain_mappings(parse_settings_rows(sample_settings_rows))

        assert assigned_subdomains(mappings, "Teacher", 0)["domain1"] == ["1a", "1b"]

    def test_unknown_role_gets_empty_lists(self):
        assert assigned_subdomains({}, "Nurse", 1) == {
            "domain1": [],
            "domain2": [],
            "domain3": [],
            "domain4": [],
        }
