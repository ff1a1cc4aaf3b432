"""Role label normalization and hierarchy levels."""

import pytest

from taskflow.services.identity import (
    ROLE_HIERARCHY,
    TOP_ROLE,
    is_admin_role,
    is_top_role,
    level_of,
    normalize_role,
)


@pytest.mark.parametrize("label", ["super_admin", "SuperAdmin", "SUPER-ADMIN", "  super admin  "])
def test_top_role_variants_normalize(label):
    assert normalize_role(label) == TOP_ROLE
    assert is_top_role(label) is True


@pytest.mark.parametrize("label,expected", [
    ("project manager", "Project Manager"),
    ("PROJECT_MANAGER", "Project Manager"),
    ("team_lead", "Team Lead"),
    ("TeamLead", "Team Lead"),
    ("dev", "Developer"),
    ("QA", "Tester"),
])
def test_aliases_map_to_canonical(label, expected):
    assert normalize_role(label) == expected


def test_unknown_label_passes_through():
    assert normalize_role("Designer") == "Designer"
    assert level_of("Designer") == 0


def test_non_string_input_is_returned_unchanged():
    assert normalize_role(None) is None
    assert normalize_role("") == ""
    assert level_of(None) == 0


def test_levels_are_strictly_ordered():
    ordered = sorted(ROLE_HIERARCHY, key=ROLE_HIERARCHY.get, reverse=True)
    assert ordered[0] == TOP_ROLE
    assert level_of("superadmin") > level_of("pm") > level_of("tech lead") > level_of("developer")


def test_admin_roles():
    assert is_admin_role("SuperAdmin") is True
    assert is_admin_role("Project Manager") is True
    assert is_admin_role("Team Lead") is False
    assert is_admin_role("unknown") is False
