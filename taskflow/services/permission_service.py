"""
Access Policy Resolver — capability checks, view-scope predicates and the
privilege-escalation guard.

Evaluation is deterministic and deny-by-default:
  - the top role gets a fixed all-true profile with view scope "all"
    (never read from configuration, so a bad edit cannot lock it out)
  - every other role is looked up by canonical key, then by raw label,
    then falls back to the restrictive profile
  - a missing participant narrows visibility to "match nothing"

Nothing here raises for unknown roles, absent profiles or absent
participants.  The only I/O is the settings load and the participant /
project-set lookups.
"""

import logging
from dataclasses import dataclass

import sqlalchemy as sa

from taskflow.core.exceptions import ConfigurationMissingError, ForbiddenError, UnauthenticatedError
from taskflow.models import db
from taskflow.models.workflow import Task
from taskflow.services.identity import TOP_ROLE, is_top_role, level_of, normalize_role
from taskflow.services.participant_service import participant_for_actor
from taskflow.services.settings_service import (
    VIEW_SCOPE_ALL,
    VIEW_SCOPE_ASSIGNED,
    VIEW_SCOPE_PROJECT,
    PermissionProfile,
    get_settings,
)

logger = logging.getLogger(__name__)


def require_actor(actor):
    """Return *actor* or raise UnauthenticatedError."""
    if actor is None or not getattr(actor, "is_active", False):
        raise UnauthenticatedError()
    return actor


# ═════════════════════════════════════════════════════════════════════════════
# Profiles & capabilities
# ═════════════════════════════════════════════════════════════════════════════

def _lookup_profile(role, settings) -> PermissionProfile:
    canonical = normalize_role(role)
    profile = settings.profile_for(canonical) or settings.profile_for(role)
    if profile is None:
        raise ConfigurationMissingError(role)
    return profile


def resolve_profile(actor, settings=None) -> PermissionProfile:
    """Effective permission profile for *actor*.

    Inactive or missing actors resolve to the restrictive profile.
    """
    if actor is None or not getattr(actor, "is_active", True):
        return PermissionProfile.restrictive()
    if is_top_role(actor.role):
        return PermissionProfile.full()
    settings = settings if settings is not None else get_settings()
    try:
        return _lookup_profile(actor.role, settings)
    except ConfigurationMissingError as exc:
        logger.debug("%s; using restrictive profile", exc)
        return PermissionProfile.restrictive()


def has_capability(actor, capability: str) -> bool:
    return resolve_profile(actor).allows(capability)


def authorize_capability(actor, capability: str) -> bool:
    """Boolean capability verdict.  Unknown capability names are denied."""
    return has_capability(actor, capability)


def require_capability(actor, capability: str) -> None:
    """Raise ForbiddenError unless *actor* holds *capability*."""
    require_actor(actor)
    if not has_capability(actor, capability):
        logger.info(
            "Actor %s (%s) denied capability '%s'", actor.id, actor.role, capability,
            extra={"actor_id": actor.id, "event_type": "authz.denied"},
        )
        raise ForbiddenError(capability)


# ═════════════════════════════════════════════════════════════════════════════
# View scope
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TaskVisibility:
    """Resolved view scope.

    kind:
      - "all":      no restriction
      - "none":     matches nothing
      - "assignee": tasks assigned to ``participant_id``
      - "projects": tasks whose project is in ``project_ids``
    """

    kind: str
    participant_id: str | None = None
    project_ids: frozenset = frozenset()

    @property
    def is_unrestricted(self) -> bool:
        return self.kind == "all"

    @property
    def is_empty(self) -> bool:
        return self.kind == "none"

    def as_predicate(self):
        """SQLAlchemy boolean expression to AND into a Task query."""
        if self.kind == "all":
            return sa.true()
        if self.kind == "assignee":
            return Task.assignee_id == self.participant_id
        if self.kind == "projects":
            return Task.project_id.in_(sorted(self.project_ids))
        return sa.false()

    def matches(self, task) -> bool:
        if self.kind == "all":
            return True
        if self.kind == "assignee":
            return task.assignee_id == self.participant_id
        if self.kind == "projects":
            return task.project_id is not None and task.project_id in self.project_ids
        return False


NO_RESTRICTION = TaskVisibility("all")
MATCH_NOTHING = TaskVisibility("none")


def _assigned_project_ids(participant_id: str) -> frozenset:
    rows = (
        db.session.query(Task.project_id)
        .filter(Task.assignee_id == participant_id, Task.project_id.isnot(None))
        .distinct()
        .all()
    )
    return frozenset(r[0] for r in rows)


def build_view_scope(actor) -> TaskVisibility:
    if actor is None:
        return MATCH_NOTHING
    profile = resolve_profile(actor)
    if is_top_role(actor.role) or profile.view_scope == VIEW_SCOPE_ALL:
        return NO_RESTRICTION

    participant = participant_for_actor(actor)
    if participant is None:
        return MATCH_NOTHING

    if profile.view_scope == VIEW_SCOPE_PROJECT:
        project_ids = _assigned_project_ids(participant.id)
        if project_ids:
            return TaskVisibility("projects", participant_id=participant.id, project_ids=project_ids)
        return TaskVisibility("assignee", participant_id=participant.id)

    if profile.view_scope == VIEW_SCOPE_ASSIGNED:
        return TaskVisibility("assignee", participant_id=participant.id)
    return MATCH_NOTHING


def build_task_visibility_filter(actor):
    """Predicate to AND into any task query for *actor*."""
    return build_view_scope(actor).as_predicate()


def check_task_access(actor, task) -> bool:
    """Single-record variant of the visibility filter."""
    if task is None:
        return False
    return build_view_scope(actor).matches(task)


# ═════════════════════════════════════════════════════════════════════════════
# Privilege escalation
# ═════════════════════════════════════════════════════════════════════════════

def guard_privilege_escalation(actor, requested_role) -> bool:
    """True when *actor* may grant *requested_role*.

    The top role may grant anything; everyone else only strictly lower
    ranks.  No requested role means nothing to check.
    """
    if requested_role is None or requested_role == "":
        return True
    if actor is None:
        return False
    if is_top_role(actor.role):
        return True
    return level_of(requested_role) < level_of(actor.role)


def outranks(actor, target_role) -> bool:
    """True when *actor* may manage an account holding *target_role*."""
    if actor is None:
        return False
    if is_top_role(actor.role):
        return True
    if normalize_role(target_role) == TOP_ROLE:
        return False
    return level_of(target_role) < level_of(actor.role)
