"""
Task lifecycle: status transitions, experience side effects, testing
subtasks, partial updates and comments.
"""

import os

import pytest

from taskflow.core.exceptions import ForbiddenError, InvalidTransitionError, NotFoundError, ValidationError
from taskflow.models import db
from taskflow.models.audit import ActivityLog
from taskflow.models.notification import Notification
from taskflow.models.workflow import (
    ChecklistItem,
    Participant,
    Task,
    TaskAttachment,
    TaskChecklist,
    TimeLog,
)
from taskflow.services import task_lifecycle
from taskflow.services.task_lifecycle import (
    add_comment,
    create_task,
    transition_task_status,
    update_task,
)

from conftest import _utc


@pytest.fixture()
def scored_task(admin, developer, make_task):
    """FEATURE / HIGH, 10h estimate, 8h logged, assigned to the developer."""
    task = make_task(
        admin.participant, title="Checkout flow", type="FEATURE", priority="HIGH",
        estimated_hours=10, assignee_id=developer.participant.id, status="IN_PROGRESS",
    )
    db.session.add_all([
        TimeLog(task_id=task.id, participant_id=developer.participant.id, duration=240),
        TimeLog(task_id=task.id, participant_id=developer.participant.id, duration=240),
    ])
    db.session.commit()
    return task


@pytest.fixture()
def pm(make_user, make_participant):
    user = make_user("pm@opsconsole.io", "Project Manager", first_name="Pat", last_name="Manager")
    make_participant(user)
    return user


# ═════════════════════════════════════════════════════════════════════════════
# Transitions
# ═════════════════════════════════════════════════════════════════════════════

def test_completion_awards_experience(developer, scored_task):
    task = transition_task_status(developer, scored_task.id, "DONE", now=_utc(2024, 3, 1, 12))

    assert task.status == "DONE"
    assert task.completed_date is not None
    assert task.xp_earned == 54
    participant = developer.participant
    assert participant.xp == 54
    assert participant.level == 1

    notif = Notification.query.filter_by(participant_id=participant.id).one()
    assert notif.type == "XP_GAIN"
    assert notif.title == "You earned 54 XP"

    log = ActivityLog.query.filter_by(task_id=task.id, action="STATUS_CHANGED").one()
    assert (log.old_value, log.new_value) == ("IN_PROGRESS", "DONE")
    assert log.participant_id == participant.id


def test_reopen_reverses_recorded_experience(developer, scored_task):
    transition_task_status(developer, scored_task.id, "DONE")
    task = transition_task_status(developer, scored_task.id, "IN_PROGRESS")

    assert task.xp_earned is None
    assert task.completed_date is None
    assert developer.participant.xp == 0
    assert ActivityLog.query.filter_by(task_id=task.id, action="STATUS_CHANGED").count() == 2


def test_reversal_uses_recorded_amount_after_rescoring(developer, scored_task, store_settings):
    transition_task_status(developer, scored_task.id, "DONE")
    participant = developer.participant
    participant.xp += 100
    db.session.commit()
    store_settings(leaderboardSettings={"baseXP": 500})

    transition_task_status(developer, scored_task.id, "TODO")
    assert developer.participant.xp == 100


def test_reversal_clamps_at_zero(developer, scored_task):
    transition_task_status(developer, scored_task.id, "DONE")
    developer.participant.xp = 10
    db.session.commit()

    transition_task_status(developer, scored_task.id, "BLOCKED")
    assert developer.participant.xp == 0


def test_same_status_is_a_no_op(developer, scored_task):
    transition_task_status(developer, scored_task.id, "IN_PROGRESS")
    assert ActivityLog.query.count() == 0


def test_unassigned_completion_has_no_experience(admin, make_task):
    task = make_task(admin.participant, status="TODO")
    transition_task_status(admin, task.id, "DONE")
    assert task.status == "DONE"
    assert task.xp_earned is None
    assert Notification.query.count() == 0


def test_invalid_status_is_rejected(developer, scored_task):
    with pytest.raises(InvalidTransitionError):
        transition_task_status(developer, scored_task.id, "FINISHED")


def test_invisible_task_answers_not_found(developer, admin, make_task):
    hidden = make_task(admin.participant, assignee_id=admin.participant.id)
    with pytest.raises(NotFoundError):
        transition_task_status(developer, hidden.id, "DONE")
    with pytest.raises(NotFoundError):
        transition_task_status(developer, "no-such-task", "DONE")


def test_transition_requires_capability(make_user, admin, make_task):
    agent = make_user("agent@opsconsole.io", "Agent")
    task = make_task(admin.participant)
    with pytest.raises(ForbiddenError):
        transition_task_status(agent, task.id, "DONE")


def test_transition_materializes_actor_participant(make_user, make_task, admin):
    pm = make_user("pm2@opsconsole.io", "Project Manager")
    task = make_task(admin.participant)
    assert Participant.query.filter_by(user_id=pm.id).first() is None

    transition_task_status(pm, task.id, "IN_PROGRESS")
    participant = Participant.query.filter_by(user_id=pm.id).one()
    assert ActivityLog.query.filter_by(task_id=task.id).one().participant_id == participant.id


def test_failing_side_effect_keeps_status_change(developer, scored_task, monkeypatch):
    def boom(task_id):
        raise RuntimeError("notification backend down")

    monkeypatch.setattr(task_lifecycle, "notify_experience", boom)
    task = transition_task_status(developer, scored_task.id, "DONE")

    db.session.expire_all()
    assert db.session.get(Task, task.id).status == "DONE"
    assert developer.participant.xp == 54
    assert Notification.query.count() == 0
    assert ActivityLog.query.filter_by(action="STATUS_CHANGED").count() == 1


# ═════════════════════════════════════════════════════════════════════════════
# Testing subtask
# ═════════════════════════════════════════════════════════════════════════════

def test_completion_clones_testing_subtask(developer, scored_task, make_user, store_settings, tmp_path):
    tester = make_user("qa@opsconsole.io", "Tester", first_name="Quinn")
    store_settings(autoTestingSubtask=True, autoTestingAssigneeId=f"virtual-{tester.id}")

    source_file = tmp_path / "spec.pdf"
    source_file.write_bytes(b"%PDF")
    checklist = TaskChecklist(task_id=scored_task.id, title="Release steps")
    checklist.items = [
        ChecklistItem(content="Write docs", is_completed=True),
        ChecklistItem(content="Demo", is_completed=False),
    ]
    db.session.add_all([
        checklist,
        TaskAttachment(task_id=scored_task.id, file_name="spec.pdf", original_name="spec.pdf",
                       file_path=str(source_file)),
        TaskAttachment(task_id=scored_task.id, file_name="gone.png", file_path=str(tmp_path / "gone.png")),
    ])
    db.session.commit()

    transition_task_status(developer, scored_task.id, "DONE")

    subtask = Task.query.filter_by(parent_task_id=scored_task.id).one()
    assert subtask.title == "Testing: Checkout flow"
    assert subtask.description.startswith("Auto-generated testing task for: Checkout flow")
    assert subtask.type == "TESTING"
    assert subtask.status == "TODO"
    assert subtask.assignee_id == Participant.query.filter_by(user_id=tester.id).one().id

    [cloned] = subtask.checklists
    assert [(i.content, i.is_completed) for i in cloned.items] == [("Write docs", False), ("Demo", False)]

    [attachment] = subtask.attachments
    assert attachment.file_name.startswith("copy_")
    assert attachment.file_name.endswith(".pdf")
    assert os.path.isfile(attachment.file_path)

    assert ActivityLog.query.filter_by(task_id=scored_task.id, action="SUBTASK_CREATED").count() == 1


def test_testing_task_completion_does_not_clone(admin, developer, make_task, store_settings):
    store_settings(autoTestingSubtask=True)
    task = make_task(admin.participant, type="TESTING", assignee_id=developer.participant.id)
    transition_task_status(developer, task.id, "DONE")
    assert Task.query.filter_by(parent_task_id=task.id).count() == 0


def test_unassigned_completion_still_clones(admin, make_task, store_settings):
    store_settings(autoTestingSubtask=True)
    task = make_task(admin.participant, title="Orphan", status="TODO")

    transition_task_status(admin, task.id, "DONE")

    subtask = Task.query.filter_by(parent_task_id=task.id).one()
    assert subtask.title == "Testing: Orphan"
    assert task.xp_earned is None


def test_subtask_left_unassigned_when_tester_unknown(developer, scored_task, store_settings):
    store_settings(autoTestingSubtask=True, autoTestingAssigneeId="virtual-9999")
    transition_task_status(developer, scored_task.id, "DONE")
    subtask = Task.query.filter_by(parent_task_id=scored_task.id).one()
    assert subtask.assignee_id is None


# ═════════════════════════════════════════════════════════════════════════════
# Create / update / comment
# ═════════════════════════════════════════════════════════════════════════════

def test_create_task_with_virtual_assignee(pm, make_user):
    newcomer = make_user("new@opsconsole.io", "Developer")
    task = create_task(pm, {
        "title": "Provision sandbox",
        "type": "MAINTENANCE",
        "assigneeId": f"virtual-{newcomer.id}",
        "dueDate": "2024-06-01T09:00:00Z",
        "estimatedHours": "4",
    })
    assert task.reporter_id == pm.participant.id
    assert task.assignee_id == Participant.query.filter_by(user_id=newcomer.id).one().id
    assert task.estimated_hours == 4
    assert ActivityLog.query.filter_by(task_id=task.id, action="CREATED").count() == 1


def test_create_task_validation(pm):
    with pytest.raises(ValidationError):
        create_task(pm, {"title": "  "})
    with pytest.raises(ValidationError):
        create_task(pm, {"title": "x", "status": "DONE"})
    with pytest.raises(ValidationError):
        create_task(pm, {"title": "x", "priority": "WHENEVER"})
    with pytest.raises(ValidationError):
        create_task(pm, {"title": "x", "assigneeId": "virtual-424242"})


def test_create_task_requires_capability(developer):
    with pytest.raises(ForbiddenError):
        create_task(developer, {"title": "Not allowed"})


def test_update_reassign_and_complete_credits_new_assignee(pm, developer, scored_task, make_user,
                                                           make_participant):
    other = make_user("other@opsconsole.io", "Developer", first_name="Olly", last_name="Other")
    other_p = make_participant(other)

    update_task(pm, scored_task.id, {"assignee_id": other_p.id, "status": "DONE", "priority": "LOW"})

    assert other_p.xp == scored_task.xp_earned
    assert developer.participant.xp == 0
    actions = {(e.action, e.field) for e in ActivityLog.query.filter_by(task_id=scored_task.id)}
    assert ("STATUS_CHANGED", "status") in actions
    assert ("FIELD_CHANGED", "assignee_id") in actions
    assert ("FIELD_CHANGED", "priority") in actions
    assignee_log = ActivityLog.query.filter_by(task_id=scored_task.id, field="assignee_id").one()
    assert (assignee_log.old_value, assignee_log.new_value) == ("Dana Dev", "Olly Other")


def test_update_assignee_requires_assign(developer, scored_task, admin):
    with pytest.raises(ForbiddenError) as exc:
        update_task(developer, scored_task.id, {"assigneeId": admin.participant.id})
    assert exc.value.capability == "assign"


def test_reassign_and_reopen_revokes_from_credited_participant(pm, developer, scored_task, make_user,
                                                              make_participant):
    other = make_user("other@opsconsole.io", "Developer", first_name="Olly", last_name="Other")
    other_p = make_participant(other)
    dev_p = developer.participant
    transition_task_status(developer, scored_task.id, "DONE")
    assert dev_p.xp == 54

    for _ in range(3):
        update_task(pm, scored_task.id, {"assigneeId": other_p.id, "status": "TODO"})
        assert dev_p.xp == 0
        assert scored_task.xp_earner_id is None
        update_task(pm, scored_task.id, {"assigneeId": dev_p.id, "status": "DONE"})
        assert scored_task.xp_earner_id == dev_p.id

    assert dev_p.xp == 54
    assert other_p.xp == 0


def test_reopen_after_handover_revokes_from_credited_participant(pm, developer, scored_task, make_user,
                                                                make_participant):
    other_p = make_participant(make_user("other@opsconsole.io", "Developer"))
    transition_task_status(developer, scored_task.id, "DONE")

    update_task(pm, scored_task.id, {"assigneeId": other_p.id})
    transition_task_status(pm, scored_task.id, "IN_REVIEW")

    assert developer.participant.xp == 0
    assert other_p.xp == 0
    assert scored_task.xp_earned is None


def test_update_status_requires_change_status(admin, make_user, make_task, store_settings):
    store_settings(permissions={"Editor": {"canEdit": True, "viewScope": "all"}})
    editor = make_user("editor@opsconsole.io", "Editor")
    task = make_task(admin.participant, status="TODO")

    with pytest.raises(ForbiddenError) as exc:
        update_task(editor, task.id, {"status": "DONE"})
    assert exc.value.capability == "changeStatus"
    assert task.status == "TODO"

    update_task(editor, task.id, {"description": "Edited"})
    assert task.description == "Edited"


def test_update_without_tracked_changes_logs_nothing(developer, scored_task):
    update_task(developer, scored_task.id, {"description": "More detail"})
    assert scored_task.description == "More detail"
    assert ActivityLog.query.count() == 0


def test_update_watchers(pm, developer, scored_task):
    task = update_task(pm, scored_task.id, {"watchers": [developer.participant.id, f"virtual-{pm.id}"]})
    assert sorted(w.participant_id for w in task.watchers) == sorted(
        [developer.participant.id, pm.participant.id]
    )
    task = update_task(pm, scored_task.id, {"watchers": []})
    assert task.watchers == []


def test_add_comment(developer, scored_task):
    comment = add_comment(developer, scored_task.id, "  Looks good  ")
    assert comment.content == "Looks good"
    assert comment.is_system is False
    assert ActivityLog.query.filter_by(action="COMMENT_ADDED").count() == 1


def test_add_comment_requires_content(developer, scored_task):
    with pytest.raises(ValidationError):
        add_comment(developer, scored_task.id, "")
