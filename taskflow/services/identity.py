"""
Identity Resolver — canonical role keys and hierarchy levels.

Role labels arrive with years of inconsistent casing and naming
("super_admin", "SuperAdmin", "project manager", "TEAM_LEAD", ...).
Everything that compares roles goes through ``normalize_role`` first.

Both functions are total: unknown labels pass through unchanged and rank 0.
Levels are only ever compared relative to each other (strict less-than),
never used as a permission source on their own.
"""

import re

TOP_ROLE = "SUPER_ADMIN"

# Canonical role keys, highest first
ROLE_HIERARCHY: dict[str, int] = {
    "SUPER_ADMIN": 100,
    "Project Manager": 80,
    "Team Lead": 60,
    "Developer": 40,
    "Tester": 30,
    "Agent": 20,
}

# Lookup keys are lowercased with '_', '-' and runs of whitespace collapsed
ROLE_ALIASES: dict[str, str] = {
    "super admin": "SUPER_ADMIN",
    "superadmin": "SUPER_ADMIN",
    "project manager": "Project Manager",
    "projectmanager": "Project Manager",
    "pm": "Project Manager",
    "team lead": "Team Lead",
    "teamlead": "Team Lead",
    "tech lead": "Team Lead",
    "developer": "Developer",
    "dev": "Developer",
    "tester": "Tester",
    "qa": "Tester",
    "agent": "Agent",
}

_SEPARATORS = re.compile(r"[\s_\-]+")


def _alias_key(label: str) -> str:
    return _SEPARATORS.sub(" ", label.strip()).lower()


def normalize_role(label):
    """Map a raw role label to its canonical key.

    Unmapped (or non-string) input is returned unchanged.
    """
    if not isinstance(label, str) or not label.strip():
        return label
    return ROLE_ALIASES.get(_alias_key(label), label)


def level_of(label) -> int:
    """Hierarchy level of a role label: canonical key, then raw label, then 0."""
    canonical = normalize_role(label)
    if canonical in ROLE_HIERARCHY:
        return ROLE_HIERARCHY[canonical]
    if isinstance(label, str) and label in ROLE_HIERARCHY:
        return ROLE_HIERARCHY[label]
    return 0


def is_top_role(label) -> bool:
    return normalize_role(label) == TOP_ROLE


def is_admin_role(label) -> bool:
    """Administrative roles: the top role and anything ranked at Project Manager or above."""
    return level_of(label) >= ROLE_HIERARCHY["Project Manager"]
