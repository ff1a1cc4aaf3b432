"""Post-commit hook isolation and the never-raising log writers."""

import json

from taskflow.models import db
from taskflow.models.audit import ActivityLog, AuditLog
from taskflow.models.workflow import Release
from taskflow.services import activity_log
from taskflow.services.post_commit import PostCommitHooks

from conftest import _utc


def test_hooks_run_in_order_and_report():
    calls = []
    hooks = PostCommitHooks()
    hooks.add("first", calls.append, 1)
    hooks.add("second", calls.append, 2)
    assert len(hooks) == 2

    assert hooks.run() == {"first": "ok", "second": "ok"}
    assert calls == [1, 2]
    assert len(hooks) == 0


def test_failing_hook_is_rolled_back_alone(developer):
    participant = developer.participant

    def bump(amount):
        participant.xp = (participant.xp or 0) + amount
        db.session.flush()

    def explode():
        participant.xp = 9999
        db.session.flush()
        raise RuntimeError("boom")

    hooks = PostCommitHooks(context={"actor_id": developer.id})
    hooks.add("bump", bump, 5)
    hooks.add("explode", explode)
    hooks.add("bump_again", bump, 1)

    assert hooks.run() == {"bump": "ok", "explode": "failed", "bump_again": "ok"}
    db.session.expire_all()
    assert developer.participant.xp == 6


def test_activity_write_failure_is_swallowed(caplog):
    # Unknown task id violates the foreign key
    entry = activity_log.log_activity("missing-task", None, "CREATED")
    assert entry is None
    assert "Failed to write activity log" in caplog.text


def test_write_audit_serializes_details():
    activity_log.write_audit(action="USER_CREATED", actor_id=7, target_id=9, details={"when": _utc(2024, 1, 1)})
    db.session.commit()
    row = AuditLog.query.one()
    assert row.actor_id == "7"
    assert json.loads(row.details_json)["when"].startswith("2024-01-01")


def test_field_changes_resolve_names(admin, developer, make_project, make_task):
    project = make_project("Apollo")
    release = Release(name="R1", project_id=project.id)
    db.session.add(release)
    db.session.commit()
    task = make_task(admin.participant)

    before = {"assignee_id": None, "project_id": None, "release_id": None, "priority": "MEDIUM",
              "due_date": _utc(2024, 5, 1)}
    after = {"assignee_id": developer.participant.id, "project_id": project.id, "release_id": release.id,
             "priority": "MEDIUM", "due_date": _utc(2024, 5, 1).replace(tzinfo=None)}
    entries = activity_log.log_field_changes(task.id, admin.participant.id, before, after)
    db.session.commit()

    by_field = {e.field: e for e in entries}
    assert set(by_field) == {"assignee_id", "project_id", "release_id"}
    assert by_field["assignee_id"].new_value == "Dana Dev"
    assert by_field["project_id"].new_value == "Apollo"
    assert by_field["release_id"].description == "Changed release from none to R1"
    assert ActivityLog.query.filter_by(task_id=task.id, action="FIELD_CHANGED").count() == 3


def test_status_diff_is_logged_as_status_change(admin, make_task):
    task = make_task(admin.participant)
    entries = activity_log.log_field_changes(
        task.id, admin.participant.id, {"status": "TODO"}, {"status": "IN_PROGRESS"},
    )
    assert [e.action for e in entries] == ["STATUS_CHANGED"]
    assert entries[0].old_value == "TODO"
