"""Capability resolution, view scopes and the privilege-escalation guard."""

import pytest

from taskflow.core.exceptions import ForbiddenError, UnauthenticatedError
from taskflow.services.permission_service import (
    MATCH_NOTHING,
    authorize_capability,
    build_view_scope,
    check_task_access,
    guard_privilege_escalation,
    outranks,
    require_capability,
    resolve_profile,
)
from taskflow.services.settings_service import CAPABILITIES, DEFAULT_SETTINGS
from taskflow.services.task_lifecycle import visible_tasks_query


# ── Capabilities ─────────────────────────────────────────────────────────


def test_top_role_holds_every_capability(admin):
    for capability in CAPABILITIES:
        assert authorize_capability(admin, capability) is True
    assert resolve_profile(admin).view_scope == "all"


def test_top_role_ignores_configured_profile(admin, store_settings):
    store_settings(permissions={"SUPER_ADMIN": {"canCreate": False, "viewScope": "assigned_only"}})
    assert authorize_capability(admin, "create") is True
    assert build_view_scope(admin).is_unrestricted


def test_default_developer_profile(developer):
    assert authorize_capability(developer, "changeStatus") is True
    assert authorize_capability(developer, "edit") is True
    assert authorize_capability(developer, "create") is False
    assert authorize_capability(developer, "accessSettings") is False


def test_unknown_capability_is_denied(developer):
    assert authorize_capability(developer, "launchRockets") is False


def test_unknown_role_gets_restrictive_profile(make_user):
    designer = make_user("designer@opsconsole.io", "Designer")
    profile = resolve_profile(designer)
    assert profile.capabilities == frozenset()
    assert profile.view_scope == "assigned_only"


def test_raw_label_profile_is_used_when_not_canonical(make_user, store_settings):
    store_settings(permissions={"Designer": {"canComment": True, "viewScope": "all"}})
    designer = make_user("designer@opsconsole.io", "Designer")
    assert authorize_capability(designer, "comment") is True
    assert authorize_capability(designer, "edit") is False


def test_alias_role_resolves_to_canonical_profile(make_user):
    lead = make_user("lead@opsconsole.io", "TEAM_LEAD")
    assert authorize_capability(lead, "assign") is True
    assert resolve_profile(lead).view_scope == "project"


def test_only_literal_true_grants(make_user, store_settings):
    store_settings(permissions={"Developer": {"canEdit": "true", "canComment": 1, "canChangeStatus": True}})
    dev = make_user("dev2@opsconsole.io", "Developer")
    assert authorize_capability(dev, "edit") is False
    assert authorize_capability(dev, "comment") is False
    assert authorize_capability(dev, "changeStatus") is True


def test_missing_profile_keys_default_to_false(make_user, store_settings):
    store_settings(permissions={"Developer": {"viewScope": "bogus"}})
    dev = make_user("dev2@opsconsole.io", "Developer")
    profile = resolve_profile(dev)
    assert profile.capabilities == frozenset()
    assert profile.view_scope == "assigned_only"


def test_inactive_actor_resolves_restrictive(make_user):
    pm = make_user("pm@opsconsole.io", "Project Manager", is_active=False)
    assert authorize_capability(pm, "create") is False


def test_require_capability_raises(developer):
    with pytest.raises(ForbiddenError) as exc:
        require_capability(developer, "delete")
    assert exc.value.capability == "delete"


def test_require_capability_without_actor():
    with pytest.raises(UnauthenticatedError):
        require_capability(None, "edit")


def test_profile_edit_takes_effect_immediately(developer, store_settings):
    assert authorize_capability(developer, "create") is False
    perms = dict(DEFAULT_SETTINGS["permissions"])
    perms["Developer"] = {**perms["Developer"], "canCreate": True}
    store_settings(permissions=perms)
    assert authorize_capability(developer, "create") is True


# ── View scope ───────────────────────────────────────────────────────────


def test_assigned_only_without_participant_sees_nothing(admin, make_user, make_task):
    reporter = admin.participant
    make_task(reporter, title="Unassigned")
    make_task(reporter, title="Admin's", assignee_id=reporter.id)
    newcomer = make_user("new@opsconsole.io", "Developer")

    assert build_view_scope(newcomer) == MATCH_NOTHING
    assert visible_tasks_query(newcomer).count() == 0


def test_assigned_only_sees_own_tasks(admin, developer, make_task):
    mine = make_task(admin.participant, title="Mine", assignee_id=developer.participant.id)
    other = make_task(admin.participant, title="Other", assignee_id=admin.participant.id)

    ids = [t.id for t in visible_tasks_query(developer).all()]
    assert ids == [mine.id]
    assert check_task_access(developer, mine) is True
    assert check_task_access(developer, other) is False


def test_project_scope_covers_projects_of_assigned_tasks(admin, make_user, make_participant,
                                                         make_project, make_task):
    lead = make_user("lead@opsconsole.io", "Team Lead")
    lead_p = make_participant(lead)
    project_a = make_project("Alpha")
    project_c = make_project("Charlie")
    reporter = admin.participant

    own = make_task(reporter, title="Lead's", assignee_id=lead_p.id, project_id=project_a.id)
    sibling = make_task(reporter, title="Team's", assignee_id=reporter.id, project_id=project_a.id)
    foreign = make_task(reporter, title="Elsewhere", assignee_id=reporter.id, project_id=project_c.id)

    visible = {t.id for t in visible_tasks_query(lead).all()}
    assert visible == {own.id, sibling.id}
    assert check_task_access(lead, foreign) is False


def test_project_scope_with_no_projects_falls_back_to_assignee(admin, make_user, make_participant,
                                                               make_task):
    lead = make_user("lead@opsconsole.io", "Team Lead")
    lead_p = make_participant(lead)
    own = make_task(admin.participant, title="No project", assignee_id=lead_p.id)
    make_task(admin.participant, title="Someone else's", assignee_id=admin.participant.id)

    scope = build_view_scope(lead)
    assert scope.kind == "assignee"
    assert [t.id for t in visible_tasks_query(lead).all()] == [own.id]


def test_view_all_profile_is_unrestricted(make_user):
    pm = make_user("pm@opsconsole.io", "project_manager")
    assert build_view_scope(pm).is_unrestricted


# ── Privilege escalation ─────────────────────────────────────────────────


def test_guard_denies_equal_level(developer):
    assert guard_privilege_escalation(developer, "Developer") is False
    assert guard_privilege_escalation(developer, "Project Manager") is False


def test_guard_allows_strictly_lower_level(developer):
    assert guard_privilege_escalation(developer, "Agent") is True
    assert guard_privilege_escalation(developer, "tester") is True


def test_guard_with_no_requested_role(developer):
    assert guard_privilege_escalation(developer, None) is True
    assert guard_privilege_escalation(developer, "") is True


def test_top_role_may_grant_top_role(admin):
    assert guard_privilege_escalation(admin, "super_admin") is True


def test_outranks(admin, make_user):
    pm = make_user("pm@opsconsole.io", "Project Manager")
    assert outranks(pm, "Developer") is True
    assert outranks(pm, "Project Manager") is False
    assert outranks(pm, "SuperAdmin") is False
    assert outranks(admin, "SUPER_ADMIN") is True
