"""
Workflow Settings Service — typed view over the mutable configuration blob.

The persisted blob (``WorkflowSettings.data``) is loosely typed JSON edited
from the admin UI.  It is parsed exactly once per load into frozen
dataclasses; business code never touches the raw dict.

Missing-key contract:
  - capability keys default to False
  - viewScope defaults to "assigned_only"
  - malformed automation rules are dropped (with a warning) at load time

Caching:
  blob → SettingsCache (app.extensions["settings_cache"], TTL + explicit
  invalidation on write) → parsed object memoized on ``flask.g`` for the
  rest of the request.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field

from flask import current_app, g
from sqlalchemy.exc import IntegrityError

from taskflow.core.exceptions import ForbiddenError, ValidationError
from taskflow.models import db
from taskflow.models.settings import DEFAULT_SETTINGS_KEY, WorkflowSettings
from taskflow.services.identity import is_top_role

logger = logging.getLogger(__name__)

_CACHE_KEY = f"settings:{DEFAULT_SETTINGS_KEY}"
_G_KEY = "_taskflow_settings"

# Capability name → key used in the stored blob
CAPABILITY_KEYS: dict[str, str] = {
    "create": "canCreate",
    "edit": "canEdit",
    "delete": "canDelete",
    "comment": "canComment",
    "assign": "canAssign",
    "changeStatus": "canChangeStatus",
    "archive": "canArchive",
    "viewReports": "canViewReports",
    "manageProjects": "canManageProjects",
    "export": "canExport",
    "accessSettings": "canAccessSettings",
    "manageTaskSettings": "canManageTaskSettings",
    "viewAll": "canViewAll",
}
CAPABILITIES = frozenset(CAPABILITY_KEYS)

VIEW_SCOPE_ALL = "all"
VIEW_SCOPE_PROJECT = "project"
VIEW_SCOPE_ASSIGNED = "assigned_only"
VIEW_SCOPES = (VIEW_SCOPE_ALL, VIEW_SCOPE_PROJECT, VIEW_SCOPE_ASSIGNED)

RULE_UNITS = ("hours", "days")
RULE_ACTIONS = ("assign",)


# ═════════════════════════════════════════════════════════════════════════════
# Typed settings
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class PermissionProfile:
    """Capability set plus view scope for one canonical role."""

    capabilities: frozenset = frozenset()
    view_scope: str = VIEW_SCOPE_ASSIGNED

    def allows(self, capability: str) -> bool:
        return capability in self.capabilities

    @classmethod
    def full(cls) -> "PermissionProfile":
        return cls(capabilities=CAPABILITIES, view_scope=VIEW_SCOPE_ALL)

    @classmethod
    def restrictive(cls) -> "PermissionProfile":
        return cls()

    @classmethod
    def from_dict(cls, raw) -> "PermissionProfile":
        if not isinstance(raw, dict):
            return cls.restrictive()
        granted = set()
        for capability, blob_key in CAPABILITY_KEYS.items():
            # Only a literal True grants; "true", 1, missing all deny
            if raw.get(blob_key, raw.get(capability)) is True:
                granted.add(capability)
        view_scope = raw.get("viewScope")
        if view_scope not in VIEW_SCOPES:
            view_scope = VIEW_SCOPE_ASSIGNED
        return cls(capabilities=frozenset(granted), view_scope=view_scope)

    def to_dict(self) -> dict:
        d = {blob_key: cap in self.capabilities for cap, blob_key in CAPABILITY_KEYS.items()}
        d["viewScope"] = self.view_scope
        return d


@dataclass(frozen=True)
class TimeBasedScoring:
    enabled: bool = True
    early_completion_bonus: float = 20
    on_time_bonus: float = 10
    late_completion_penalty: float = 15
    max_bonus_percent: float = 50
    max_penalty_percent: float = 30


@dataclass(frozen=True)
class LeaderboardSettings:
    base_xp: float = 10
    task_type_scores: dict = field(default_factory=dict)
    priority_scores: dict = field(default_factory=dict)
    default_type_score: float = 5
    default_priority_score: float = 0
    time_based: TimeBasedScoring = field(default_factory=TimeBasedScoring)

    def type_score(self, task_type) -> float:
        return self.task_type_scores.get(task_type, self.default_type_score)

    def priority_score(self, priority) -> float:
        return self.priority_scores.get(priority, self.default_priority_score)


@dataclass(frozen=True)
class AutomationRule:
    threshold: float
    unit: str
    scope: str
    target_id: str
    action: str = "assign"

    @classmethod
    def from_dict(cls, raw) -> "AutomationRule | None":
        """Parse one rule; None when the entry is unusable."""
        if not isinstance(raw, dict):
            return None
        try:
            threshold = float(raw.get("threshold"))
        except (TypeError, ValueError):
            return None
        unit = raw.get("unit", "hours")
        action = raw.get("action", "assign")
        target_id = raw.get("targetId")
        if threshold <= 0 or unit not in RULE_UNITS or action not in RULE_ACTIONS or not target_id:
            return None
        scope = raw.get("scope") or "all"
        return cls(threshold=threshold, unit=unit, scope=str(scope), target_id=str(target_id), action=action)

    def to_dict(self) -> dict:
        return {
            "threshold": self.threshold,
            "unit": self.unit,
            "scope": self.scope,
            "targetId": self.target_id,
            "action": self.action,
        }


@dataclass(frozen=True)
class SettingsSnapshot:
    permissions: dict = field(default_factory=dict)
    auto_testing_subtask: bool = False
    auto_testing_assignee_id: str | None = None
    leaderboard: LeaderboardSettings = field(default_factory=LeaderboardSettings)
    automation_rules: tuple = ()
    timezone: str = "UTC"
    raw: dict = field(default_factory=dict, compare=False, repr=False)

    def profile_for(self, role) -> PermissionProfile | None:
        return self.permissions.get(role) if isinstance(role, str) else None


# ═════════════════════════════════════════════════════════════════════════════
# Defaults
# ═════════════════════════════════════════════════════════════════════════════

DEFAULT_TASK_TYPE_SCORES = {
    "BUG": 15,
    "FEATURE": 20,
    "ENHANCEMENT": 10,
    "HOTFIX": 25,
    "REFACTOR": 15,
    "SECURITY": 30,
    "DOCUMENTATION": 5,
    "TESTING": 8,
    "PERFORMANCE": 20,
    "MAINTENANCE": 5,
}

DEFAULT_PRIORITY_SCORES = {
    "CRITICAL": 20,
    "URGENT": 20,
    "HIGH": 15,
    "MEDIUM": 5,
    "LOW": 0,
}


def _profile(*capabilities, view_scope=VIEW_SCOPE_ASSIGNED) -> dict:
    return PermissionProfile(frozenset(capabilities), view_scope).to_dict()


DEFAULT_SETTINGS: dict = {
    "permissions": {
        "Project Manager": _profile(
            "create", "edit", "delete", "comment", "assign", "changeStatus", "archive",
            "viewReports", "manageProjects", "export", "manageTaskSettings", "viewAll",
            view_scope=VIEW_SCOPE_ALL,
        ),
        "Team Lead": _profile(
            "create", "edit", "comment", "assign", "changeStatus", "viewReports", "export",
            view_scope=VIEW_SCOPE_PROJECT,
        ),
        "Developer": _profile("edit", "comment", "changeStatus"),
        "Tester": _profile("comment", "changeStatus"),
    },
    "autoTestingSubtask": False,
    "autoTestingAssigneeId": None,
    "leaderboardSettings": {
        "baseXP": 10,
        "taskTypeScores": DEFAULT_TASK_TYPE_SCORES,
        "priorityScores": DEFAULT_PRIORITY_SCORES,
        "timeBasedScoring": {
            "enabled": True,
            "earlyCompletionBonus": 20,
            "onTimeBonus": 10,
            "lateCompletionPenalty": 15,
            "maxBonusPercent": 50,
            "maxPenaltyPercent": 30,
        },
    },
    "automationSettings": {"rules": []},
    "timezone": "UTC",
}


# ═════════════════════════════════════════════════════════════════════════════
# Parsing
# ═════════════════════════════════════════════════════════════════════════════

def _number(raw, default):
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return default
    return raw


def _score_table(raw) -> dict:
    if not isinstance(raw, dict):
        return {}
    return {k: v for k, v in raw.items() if isinstance(v, (int, float)) and not isinstance(v, bool)}


def _parse_leaderboard(raw) -> LeaderboardSettings:
    if not isinstance(raw, dict):
        return LeaderboardSettings(
            task_type_scores=dict(DEFAULT_TASK_TYPE_SCORES),
            priority_scores=dict(DEFAULT_PRIORITY_SCORES),
        )
    tbs = raw.get("timeBasedScoring") or {}
    defaults = TimeBasedScoring()
    time_based = TimeBasedScoring(
        enabled=tbs.get("enabled") is True,
        early_completion_bonus=_number(tbs.get("earlyCompletionBonus"), defaults.early_completion_bonus),
        on_time_bonus=_number(tbs.get("onTimeBonus"), defaults.on_time_bonus),
        late_completion_penalty=_number(tbs.get("lateCompletionPenalty"), defaults.late_completion_penalty),
        max_bonus_percent=_number(tbs.get("maxBonusPercent"), defaults.max_bonus_percent),
        max_penalty_percent=_number(tbs.get("maxPenaltyPercent"), defaults.max_penalty_percent),
    ) if isinstance(tbs, dict) else TimeBasedScoring(enabled=False)
    type_scores = raw.get("taskTypeScores")
    priority_scores = raw.get("priorityScores")
    return LeaderboardSettings(
        base_xp=_number(raw.get("baseXP"), 10),
        task_type_scores=_score_table(type_scores) if type_scores is not None else dict(DEFAULT_TASK_TYPE_SCORES),
        priority_scores=(
            _score_table(priority_scores) if priority_scores is not None else dict(DEFAULT_PRIORITY_SCORES)
        ),
        time_based=time_based,
    )


def _parse_rules(raw) -> tuple:
    rules_raw = raw.get("rules") if isinstance(raw, dict) else None
    if not isinstance(rules_raw, list):
        return ()
    rules = []
    for idx, entry in enumerate(rules_raw):
        rule = AutomationRule.from_dict(entry)
        if rule is None:
            logger.warning("Ignoring malformed automation rule #%d: %r", idx, entry)
            continue
        rules.append(rule)
    return tuple(rules)


def parse_settings(blob: dict) -> SettingsSnapshot:
    """Build the typed settings object from a raw blob."""
    blob = blob if isinstance(blob, dict) else {}
    permissions_raw = blob.get("permissions")
    permissions = {}
    if isinstance(permissions_raw, dict):
        for role, raw_profile in permissions_raw.items():
            permissions[role] = PermissionProfile.from_dict(raw_profile)

    assignee = blob.get("autoTestingAssigneeId")
    return SettingsSnapshot(
        permissions=permissions,
        auto_testing_subtask=blob.get("autoTestingSubtask") is True,
        auto_testing_assignee_id=str(assignee) if assignee else None,
        leaderboard=_parse_leaderboard(blob.get("leaderboardSettings")),
        automation_rules=_parse_rules(blob.get("automationSettings")),
        timezone=blob.get("timezone") or "UTC",
        raw=blob,
    )


# ═════════════════════════════════════════════════════════════════════════════
# Storage
# ═════════════════════════════════════════════════════════════════════════════

def _cache():
    return current_app.extensions["settings_cache"]


def _get_or_create_row() -> WorkflowSettings:
    row = WorkflowSettings.query.filter_by(key=DEFAULT_SETTINGS_KEY).first()
    if row is not None:
        return row
    try:
        with db.session.begin_nested():
            row = WorkflowSettings(key=DEFAULT_SETTINGS_KEY, data=copy.deepcopy(DEFAULT_SETTINGS))
            db.session.add(row)
        logger.info("Workflow settings initialised with system defaults")
        return row
    except IntegrityError:
        # Another request created it first
        return WorkflowSettings.query.filter_by(key=DEFAULT_SETTINGS_KEY).one()


def load_settings_blob() -> dict:
    """Raw blob through the shared cache."""
    return _cache().get_or_load(_CACHE_KEY, lambda: copy.deepcopy(_get_or_create_row().data or {}))


def get_settings() -> SettingsSnapshot:
    """Parsed settings, memoized for the current request."""
    cached = g.get(_G_KEY)
    if cached is not None:
        return cached
    settings = parse_settings(load_settings_blob())
    setattr(g, _G_KEY, settings)
    return settings


def clear_request_settings() -> None:
    """Drop the parsed settings memoized for this request."""
    g.pop(_G_KEY, None)


def invalidate_settings_cache() -> None:
    _cache().invalidate(_CACHE_KEY)
    clear_request_settings()


def _validate_patch(patch: dict) -> None:
    errors = {}
    if "permissions" in patch:
        perms = patch["permissions"]
        if not isinstance(perms, dict) or not all(isinstance(v, dict) for v in perms.values()):
            errors["permissions"] = "must map role names to permission objects"
        else:
            for role, profile in perms.items():
                scope = profile.get("viewScope")
                if scope is not None and scope not in VIEW_SCOPES:
                    errors[f"permissions.{role}.viewScope"] = f"must be one of {list(VIEW_SCOPES)}"
    if "automationSettings" in patch:
        auto = patch["automationSettings"]
        if not isinstance(auto, dict) or not isinstance(auto.get("rules", []), list):
            errors["automationSettings"] = "must be an object with a 'rules' list"
        else:
            for idx, rule in enumerate(auto.get("rules", [])):
                if AutomationRule.from_dict(rule) is None:
                    errors[f"automationSettings.rules[{idx}]"] = "invalid rule"
    if "leaderboardSettings" in patch and not isinstance(patch["leaderboardSettings"], dict):
        errors["leaderboardSettings"] = "must be an object"
    if errors:
        raise ValidationError("Invalid settings", details=errors)


def update_settings(actor, patch: dict) -> dict:
    """Shallow-merge *patch* into the stored blob and audit the change.

    Only the top role may touch ``permissions``; for anyone else the key is
    stripped, and a patch that contained nothing else is Forbidden.

    Returns:
        The stored blob after the update.
    """
    from taskflow.services.activity_log import write_audit

    if not isinstance(patch, dict):
        raise ValidationError("Settings payload must be an object")
    update_data = dict(patch)
    had_permissions = "permissions" in update_data

    if had_permissions and not is_top_role(actor.role):
        logger.warning(
            "Actor %s (%s) attempted to modify permissions without top role",
            actor.id, actor.role, extra={"actor_id": actor.id, "event_type": "settings.permissions_denied"},
        )
        update_data.pop("permissions")
        if not update_data:
            raise ForbiddenError("permissions", "Only the top administrative role may edit permissions")

    _validate_patch(update_data)

    row = _get_or_create_row()
    merged = copy.deepcopy(row.data or {})
    merged.update(update_data)
    row.data = merged
    db.session.commit()
    invalidate_settings_cache()

    write_audit(
        action="SETTINGS_UPDATED",
        actor_id=actor.id,
        target_id=DEFAULT_SETTINGS_KEY,
        details={
            "updated_by": actor.email,
            "fields_updated": sorted(update_data),
            "had_permissions_field": had_permissions,
        },
    )
    db.session.commit()
    return merged
