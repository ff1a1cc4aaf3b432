"""
Task Lifecycle Service — status state machine and its side effects.

Every transition between two of the eight states is allowed; the machine
only decides which side effects fire:

  * → DONE   award experience and notify (assignee set), optionally clone
             a TESTING subtask
  DONE → *   take back xp_earned from the participant it was credited to

The status write is the operation of record and commits first.  Side
effects are queued on a PostCommitHooks instance and run afterwards, each
in its own savepoint; the activity-log hook is always queued last.

Usage:
    from taskflow.services.task_lifecycle import transition_task_status

    task = transition_task_status(actor, task_id, "DONE")
"""

import logging
import os
import secrets
import shutil
import time
from datetime import datetime, timezone

from taskflow.core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from taskflow.models import db
from taskflow.models.workflow import (
    STATUS_DONE,
    STATUS_TODO,
    TASK_PRIORITIES,
    TASK_STATUSES,
    TASK_TYPES,
    TYPE_TESTING,
    ChecklistItem,
    Participant,
    Project,
    Release,
    Task,
    TaskAttachment,
    TaskChecklist,
    TaskComment,
    TaskWatcher,
)
from taskflow.services import activity_log
from taskflow.services.gamification import apply_experience, calculate_actual_hours, calculate_task_xp
from taskflow.services.notification import NotificationService
from taskflow.services.participant_service import get_or_create_for_actor, resolve
from taskflow.services.permission_service import (
    build_task_visibility_filter,
    check_task_access,
    require_actor,
    require_capability,
)
from taskflow.services.post_commit import PostCommitHooks
from taskflow.services.settings_service import get_settings

logger = logging.getLogger(__name__)


# Incoming payload key → Task column
_FIELD_ALIASES = {
    "assigneeId": "assignee_id",
    "projectId": "project_id",
    "releaseId": "release_id",
    "dueDate": "due_date",
    "estimatedHours": "estimated_hours",
    "businessValue": "business_value",
    "acceptanceCriteria": "acceptance_criteria",
}

_TEXT_FIELDS = ("title", "description", "business_value", "acceptance_criteria", "component")


def _utcnow():
    return datetime.now(timezone.utc)


def _snapshot(task) -> dict:
    return {field: getattr(task, field) for field in activity_log.TRACKED_FIELDS}


def _normalize_payload(data: dict) -> dict:
    return {_FIELD_ALIASES.get(k, k): v for k, v in (data or {}).items()}


# ═════════════════════════════════════════════════════════════════════════════
# Reads
# ═════════════════════════════════════════════════════════════════════════════

def get_visible_task(actor, task_id) -> Task:
    """Load a task the actor may see.

    Raises:
        NotFoundError: the task is absent OR outside the actor's view.
    """
    require_actor(actor)
    task = db.session.get(Task, task_id)
    if task is None or not check_task_access(actor, task):
        raise NotFoundError(resource="Task", resource_id=task_id)
    return task


def visible_tasks_query(actor, *, status=None, project_id=None, assignee_id=None):
    """Query of tasks visible to *actor*, newest first."""
    require_actor(actor)
    q = Task.query.filter(build_task_visibility_filter(actor))
    if status:
        q = q.filter(Task.status == status)
    if project_id:
        q = q.filter(Task.project_id == project_id)
    if assignee_id:
        q = q.filter(Task.assignee_id == assignee_id)
    return q.order_by(Task.created_at.desc(), Task.id)


# ═════════════════════════════════════════════════════════════════════════════
# Side effects
# ═════════════════════════════════════════════════════════════════════════════

def award_completion_experience(task_id, now):
    """Score a freshly completed task and credit its assignee."""
    task = db.session.get(Task, task_id)
    participant = db.session.get(Participant, task.assignee_id)
    settings = get_settings()
    actual_hours = calculate_actual_hours(task, completed_at=now)
    xp = calculate_task_xp(task, settings.leaderboard, actual_hours=actual_hours)
    apply_experience(participant, xp)
    task.xp_earned = xp
    task.xp_earner_id = participant.id
    logger.info(
        "Awarded %d XP to %s for task %s", xp, participant.id, task.id,
        extra={"task_id": task.id, "event_type": "gamification.awarded"},
    )
    return xp


def revoke_completion_experience(participant_id, amount, task_id):
    """Take back experience recorded for a task that left DONE."""
    participant = db.session.get(Participant, participant_id)
    if participant is None:
        return 0
    apply_experience(participant, -amount)
    logger.info(
        "Revoked %d XP from %s for reopened task %s", amount, participant_id, task_id,
        extra={"task_id": task_id, "event_type": "gamification.revoked"},
    )
    return amount


def notify_experience(task_id):
    task = db.session.get(Task, task_id)
    if task.xp_earned is None:
        return None
    return NotificationService.create(
        participant_id=task.assignee_id,
        type="XP_GAIN",
        title=f"You earned {task.xp_earned} XP",
        message=f"Completed task: {task.title}",
        task_id=task.id,
    )


def _unique_copy_name(original_path: str) -> str:
    _, ext = os.path.splitext(original_path)
    return f"copy_{int(time.time() * 1000)}_{secrets.token_hex(4)}{ext}"


def _clone_attachment(source: TaskAttachment):
    """Copy the file on disk and return a new unsaved attachment, or None."""
    if not source.file_path or not os.path.isfile(source.file_path):
        logger.warning("Attachment %s file missing on disk; not cloned", source.id)
        return None
    new_name = _unique_copy_name(source.file_path)
    new_path = os.path.join(os.path.dirname(source.file_path), new_name)
    shutil.copy2(source.file_path, new_path)
    return TaskAttachment(
        file_name=new_name,
        original_name=source.original_name,
        file_size=source.file_size,
        file_type=source.file_type,
        file_path=new_path,
        uploaded_by=source.uploaded_by,
    )


def create_testing_subtask(task_id):
    """Clone a completed task into a TESTING child task.

    Checklists are copied with every item reset to incomplete; attachment
    files are duplicated on disk.
    """
    task = db.session.get(Task, task_id)
    settings = get_settings()

    assignee_id = None
    if settings.auto_testing_assignee_id:
        assignee_id = resolve(settings.auto_testing_assignee_id)
        if assignee_id is None:
            logger.warning(
                "Default tester %s could not be resolved; subtask left unassigned",
                settings.auto_testing_assignee_id,
            )

    subtask = Task(
        title=f"Testing: {task.title}",
        description=(
            f"Auto-generated testing task for: {task.title}\n\n"
            f"Original Description:\n{task.description or ''}"
        ),
        business_value=task.business_value,
        acceptance_criteria=task.acceptance_criteria,
        status=STATUS_TODO,
        priority=task.priority,
        type=TYPE_TESTING,
        assignee_id=assignee_id,
        reporter_id=task.reporter_id,
        project_id=task.project_id,
        release_id=task.release_id,
        parent_task_id=task.id,
        tags=list(task.tags or []),
        component=task.component,
    )
    for checklist in task.checklists:
        clone = TaskChecklist(title=checklist.title)
        clone.items = [ChecklistItem(content=item.content, is_completed=False) for item in checklist.items]
        subtask.checklists.append(clone)
    for attachment in task.attachments:
        copied = _clone_attachment(attachment)
        if copied is not None:
            subtask.attachments.append(copied)

    db.session.add(subtask)
    db.session.flush()
    activity_log.log_subtask_created(task.id, subtask)
    logger.info(
        "Created testing subtask %s for task %s", subtask.id, task.id,
        extra={"task_id": task.id, "event_type": "task.subtask_created"},
    )
    return subtask


# ═════════════════════════════════════════════════════════════════════════════
# State machine
# ═════════════════════════════════════════════════════════════════════════════

def validate_status(new_status) -> str:
    if new_status not in TASK_STATUSES:
        raise InvalidTransitionError(new_status)
    return new_status


def _apply_status(task, new_status, hooks: PostCommitHooks, now) -> None:
    """Write the new status and queue the edge's side effects."""
    old_status = task.status
    if old_status == new_status:
        return
    task.status = new_status

    if new_status == STATUS_DONE:
        task.completed_date = now
        if task.assignee_id:
            hooks.add("experience", award_completion_experience, task.id, now)
            hooks.add("notification", notify_experience, task.id)
        if task.type != TYPE_TESTING and get_settings().auto_testing_subtask:
            hooks.add("testing_subtask", create_testing_subtask, task.id)
        return

    task.completed_date = None
    if old_status == STATUS_DONE:
        recorded, earner_id = task.xp_earned, task.xp_earner_id
        task.xp_earned = None
        task.xp_earner_id = None
        # Revoke from whoever was credited, even if the task changed hands since
        if earner_id and recorded:
            hooks.add("experience", revoke_completion_experience, earner_id, recorded, task.id)


def transition_task_status(actor, task_id, new_status, now=None) -> Task:
    """
    Move a task to *new_status*.

    Raises:
        UnauthenticatedError, ForbiddenError (changeStatus),
        InvalidTransitionError, NotFoundError (absent or invisible)
    """
    require_capability(actor, "changeStatus")
    validate_status(new_status)
    task = get_visible_task(actor, task_id)
    now = now or _utcnow()

    old_status = task.status
    if old_status == new_status:
        return task

    actor_participant = get_or_create_for_actor(actor)
    hooks = PostCommitHooks(context={"actor_id": actor.id, "task_id": task.id})
    _apply_status(task, new_status, hooks, now)
    db.session.commit()

    hooks.add(
        "activity_log", activity_log.log_status_change,
        task.id, actor_participant.id, old_status, new_status,
    )
    report = hooks.run()
    logger.info(
        "Task %s: %s → %s by actor %s", task.id, old_status, new_status, actor.id,
        extra={"actor_id": actor.id, "task_id": task.id, "event_type": "task.status_changed"},
    )
    if any(v != "ok" for v in report.values()):
        logger.warning("Task %s transition side effects: %s", task.id, report)
    return task


# ═════════════════════════════════════════════════════════════════════════════
# Create / update
# ═════════════════════════════════════════════════════════════════════════════

def _parse_datetime(value, field):
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime", details={field: value})
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _parse_hours(value):
    if value in (None, ""):
        return 0
    try:
        hours = float(value)
    except (TypeError, ValueError):
        raise ValidationError("estimated_hours must be a number", details={"estimated_hours": value})
    if hours < 0:
        raise ValidationError("estimated_hours must not be negative", details={"estimated_hours": value})
    return hours


def _check_choice(value, choices, field):
    if value not in choices:
        raise ValidationError(f"Invalid {field}", details={field: value, "allowed": list(choices)})
    return value


def _resolve_participant_field(raw, field):
    if raw in (None, ""):
        return None
    participant_id = resolve(raw)
    if participant_id is None:
        raise ValidationError(f"Unknown participant for {field}", details={field: raw})
    return participant_id


def _check_container(model, value, field):
    if value in (None, ""):
        return None
    if db.session.get(model, value) is None:
        raise ValidationError(f"Unknown {field}", details={field: value})
    return value


def _set_watchers(task, raw_watchers):
    if not isinstance(raw_watchers, list):
        raise ValidationError("watchers must be a list")
    wanted = []
    for raw in raw_watchers:
        pid = _resolve_participant_field(raw, "watchers")
        if pid not in wanted:
            wanted.append(pid)
    current = {w.participant_id: w for w in task.watchers}
    for pid, watcher in current.items():
        if pid not in wanted:
            task.watchers.remove(watcher)
    for pid in wanted:
        if pid not in current:
            task.watchers.append(TaskWatcher(participant_id=pid))


def create_task(actor, data: dict) -> Task:
    """Create a task reported by the actor's participant."""
    require_capability(actor, "create")
    data = _normalize_payload(data)
    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("title is required", details={"title": "required"})
    status = validate_status(data.get("status", "BACKLOG"))
    if status == STATUS_DONE:
        raise ValidationError("A task cannot be created as DONE", details={"status": STATUS_DONE})
    if "assignee_id" in data and data["assignee_id"] not in (None, ""):
        require_capability(actor, "assign")

    reporter = get_or_create_for_actor(actor)
    task = Task(
        title=title,
        description=data.get("description") or "",
        business_value=data.get("business_value"),
        acceptance_criteria=data.get("acceptance_criteria"),
        status=status,
        priority=_check_choice(data.get("priority", "MEDIUM"), TASK_PRIORITIES, "priority"),
        type=_check_choice(data.get("type", "FEATURE"), TASK_TYPES, "type"),
        assignee_id=_resolve_participant_field(data.get("assignee_id"), "assignee_id"),
        reporter_id=reporter.id,
        project_id=_check_container(Project, data.get("project_id"), "project_id"),
        release_id=_check_container(Release, data.get("release_id"), "release_id"),
        due_date=_parse_datetime(data.get("due_date"), "due_date"),
        estimated_hours=_parse_hours(data.get("estimated_hours")),
        component=data.get("component"),
        tags=list(data.get("tags") or []),
    )
    db.session.add(task)
    db.session.commit()

    activity_log.log_activity(
        task.id, reporter.id, "CREATED", description=f"Task created: {task.title}",
    )
    db.session.commit()
    return task


def update_task(actor, task_id, data: dict, now=None) -> Task:
    """
    Apply a partial update.  A status change needs "changeStatus" and runs
    the same side effects as ``transition_task_status``; changing the
    assignee also needs "assign".

    Tracked-field diffs are logged after the update commits.
    """
    require_capability(actor, "edit")
    data = _normalize_payload(data)
    if "status" in data:
        require_capability(actor, "changeStatus")
        validate_status(data["status"])
    if "assignee_id" in data:
        require_capability(actor, "assign")
    task = get_visible_task(actor, task_id)
    now = now or _utcnow()

    before = _snapshot(task)
    actor_participant = get_or_create_for_actor(actor)
    hooks = PostCommitHooks(context={"actor_id": actor.id, "task_id": task.id})

    for field in _TEXT_FIELDS:
        if field in data:
            value = data[field]
            if field == "title" and not (value or "").strip():
                raise ValidationError("title must not be empty", details={"title": "required"})
            setattr(task, field, value)
    if "priority" in data:
        task.priority = _check_choice(data["priority"], TASK_PRIORITIES, "priority")
    if "type" in data:
        task.type = _check_choice(data["type"], TASK_TYPES, "type")
    if "project_id" in data:
        task.project_id = _check_container(Project, data["project_id"], "project_id")
    if "release_id" in data:
        task.release_id = _check_container(Release, data["release_id"], "release_id")
    if "due_date" in data:
        task.due_date = _parse_datetime(data["due_date"], "due_date")
    if "estimated_hours" in data:
        task.estimated_hours = _parse_hours(data["estimated_hours"])
    if "tags" in data:
        task.tags = list(data["tags"] or [])
    if "watchers" in data:
        _set_watchers(task, data["watchers"])
    if "assignee_id" in data:
        task.assignee_id = _resolve_participant_field(data["assignee_id"], "assignee_id")
    # Assignee first so a combined reassign + complete credits the new holder
    if "status" in data:
        _apply_status(task, data["status"], hooks, now)

    db.session.commit()

    after = _snapshot(task)
    hooks.add("activity_log", activity_log.log_field_changes, task.id, actor_participant.id, before, after)
    hooks.run()
    return task


def add_comment(actor, task_id, content: str) -> TaskComment:
    require_capability(actor, "comment")
    if not (content or "").strip():
        raise ValidationError("content is required", details={"content": "required"})
    task = get_visible_task(actor, task_id)
    author = get_or_create_for_actor(actor)
    comment = TaskComment(task_id=task.id, author_id=author.id, content=content.strip())
    db.session.add(comment)
    db.session.commit()

    hooks = PostCommitHooks(context={"actor_id": actor.id, "task_id": task.id})
    hooks.add("activity_log", activity_log.log_comment_added, task.id, author.id, comment.id)
    hooks.run()
    return comment
