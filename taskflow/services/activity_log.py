"""
Activity / Audit Log — append-only writers and read helpers.

Writers never raise: a failed write is rolled back to its own savepoint
and reported through ``logger.exception``.  The operation being described
has already happened and must not fail because its log entry could not
be stored.

Writers ``flush`` only; the caller keeps transaction control.
"""

import json
import logging
from datetime import datetime, timezone

from taskflow.models import db
from taskflow.models.audit import ActivityLog, AuditLog
from taskflow.models.workflow import Project, Release
from taskflow.services.participant_service import display_name

logger = logging.getLogger(__name__)

# Task fields diffed on every mutation, in log order
TRACKED_FIELDS = (
    "status",
    "priority",
    "type",
    "assignee_id",
    "project_id",
    "release_id",
    "due_date",
    "estimated_hours",
)

FIELD_LABELS = {
    "status": "status",
    "priority": "priority",
    "type": "type",
    "assignee_id": "assignee",
    "project_id": "project",
    "release_id": "release",
    "due_date": "due date",
    "estimated_hours": "estimated hours",
}


# ═════════════════════════════════════════════════════════════════════════════
# Writers
# ═════════════════════════════════════════════════════════════════════════════

def log_activity(task_id, participant_id, action, *, field=None, old_value=None,
                 new_value=None, description=""):
    """Append one ActivityLog row.  Returns the row, or None on failure."""
    try:
        with db.session.begin_nested():
            entry = ActivityLog(
                task_id=task_id,
                participant_id=participant_id,
                action=action,
                field=field,
                old_value=None if old_value is None else str(old_value),
                new_value=None if new_value is None else str(new_value),
                description=description or "",
            )
            db.session.add(entry)
            db.session.flush()
        return entry
    except Exception:
        logger.exception(
            "Failed to write activity log %s for task %s", action, task_id,
            extra={"task_id": task_id, "event_type": "activity_log.write_failed"},
        )
        return None


def write_audit(*, action, actor_id=None, target_id=None, details=None):
    """Append one AuditLog row.  Returns the row, or None on failure."""
    try:
        with db.session.begin_nested():
            entry = AuditLog(
                action=action,
                actor_id=None if actor_id is None else str(actor_id),
                target_id=None if target_id is None else str(target_id),
                details_json=json.dumps(details or {}, default=str),
            )
            db.session.add(entry)
            db.session.flush()
        return entry
    except Exception:
        logger.exception(
            "Failed to write audit log %s (target=%s)", action, target_id,
            extra={"actor_id": actor_id, "event_type": "audit_log.write_failed"},
        )
        return None


def _display_value(field, value):
    if value is None or value == "":
        return None
    if field == "assignee_id":
        return display_name(value)
    if field == "project_id":
        project = db.session.get(Project, value)
        return project.name if project else str(value)
    if field == "release_id":
        release = db.session.get(Release, value)
        return release.name if release else str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _comparable(value):
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def log_status_change(task_id, participant_id, old_status, new_status):
    return log_activity(
        task_id, participant_id, "STATUS_CHANGED",
        field="status", old_value=old_status, new_value=new_status,
        description=f"Status changed from {old_status} to {new_status}",
    )


def log_field_changes(task_id, participant_id, before: dict, after: dict) -> list:
    """One FIELD_CHANGED / STATUS_CHANGED entry per tracked field that differs.

    ``before`` / ``after`` hold raw values keyed by column name; ids are
    resolved to display names here, at log time.
    """
    entries = []
    for field in TRACKED_FIELDS:
        if field not in before and field not in after:
            continue
        old, new = before.get(field), after.get(field)
        if _comparable(old) == _comparable(new):
            continue
        if field == "status":
            entry = log_status_change(task_id, participant_id, old, new)
        else:
            old_display, new_display = _display_value(field, old), _display_value(field, new)
            entry = log_activity(
                task_id, participant_id, "FIELD_CHANGED",
                field=field, old_value=old_display, new_value=new_display,
                description=f"Changed {FIELD_LABELS[field]} from {old_display or 'none'} to {new_display or 'none'}",
            )
        if entry is not None:
            entries.append(entry)
    return entries


def log_subtask_created(parent_task_id, subtask):
    # System-originated: no acting participant
    return log_activity(
        parent_task_id, None, "SUBTASK_CREATED",
        new_value=subtask.id,
        description=f"Testing subtask created automatically: {subtask.title}",
    )


def log_escalation(task_id, author_participant_id, old_assignee_id, new_assignee_id, description):
    return log_activity(
        task_id, author_participant_id, "TASK_ESCALATED",
        field="assignee_id", old_value=old_assignee_id, new_value=new_assignee_id,
        description=description,
    )


def log_comment_added(task_id, participant_id, comment_id):
    return log_activity(
        task_id, participant_id, "COMMENT_ADDED",
        new_value=comment_id, description="Comment added",
    )


# ═════════════════════════════════════════════════════════════════════════════
# Read side
# ═════════════════════════════════════════════════════════════════════════════

def list_task_activity(task_id, limit=100):
    return (
        ActivityLog.query.filter_by(task_id=task_id)
        .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .limit(limit)
        .all()
    )


def escalation_history_query():
    return ActivityLog.query.filter_by(action="TASK_ESCALATED").order_by(
        ActivityLog.created_at.desc(), ActivityLog.id.desc(),
    )


def escalation_entry_to_dict(row) -> dict:
    """Escalation entry with from/to participant ids resolved to names."""
    d = row.to_dict()
    d["from_name"] = display_name(row.old_value) if row.old_value else None
    d["to_name"] = display_name(row.new_value) if row.new_value else None
    return d


def audit_query(action=None, actor_id=None):
    q = AuditLog.query
    if action:
        q = q.filter_by(action=action)
    if actor_id is not None:
        q = q.filter_by(actor_id=str(actor_id))
    return q.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
