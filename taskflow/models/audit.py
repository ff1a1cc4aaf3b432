"""
Ops Console — Task Workflow Engine
Audit domain models.

Models:
    - ActivityLog: append-only trail of task mutations (keyed by task)
    - AuditLog: append-only trail of administrative actions (settings, users)

Rows are never updated or deleted by application code; writers live in
``taskflow.services.activity_log``.
"""

import json
from datetime import datetime, timezone

from taskflow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

ACTIVITY_ACTIONS = {
    "CREATED",
    "STATUS_CHANGED",
    "FIELD_CHANGED",
    "ASSIGNED",
    "SUBTASK_CREATED",
    "COMMENT_ADDED",
    "TASK_ESCALATED",
}

AUDIT_ACTIONS = {
    "USER_CREATED",
    "USER_UPDATED",
    "USER_DELETED",
    "SETTINGS_UPDATED",
    "ROLE_ESCALATION_DENIED",
}


class ActivityLog(db.Model):
    """
    One row per task event.  ``participant_id`` is NULL for
    system-originated entries (automation, auto-created subtasks).
    """

    __tablename__ = "task_activity_logs"
    __table_args__ = (
        db.Index("idx_activity_task", "task_id"),
        db.Index("idx_activity_action", "action"),
        db.Index("idx_activity_ts", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(db.String(36), db.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    participant_id = db.Column(
        db.String(36), db.ForeignKey("participants.id", ondelete="SET NULL"), nullable=True,
    )
    action = db.Column(db.String(40), nullable=False)
    field = db.Column(db.String(50), nullable=True)
    old_value = db.Column(db.Text, nullable=True)
    new_value = db.Column(db.Text, nullable=True)
    description = db.Column(db.Text, default="")
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "task_id": self.task_id,
            "participant_id": self.participant_id,
            "action": self.action,
            "field": self.field,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "description": self.description,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ActivityLog {self.id}: {self.action} on task {self.task_id}>"


class AuditLog(db.Model):
    """Administrative audit row.  ``details_json`` carries the payload."""

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_actor", "actor_id"),
        db.Index("idx_audit_ts", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.String(60), nullable=False)
    actor_id = db.Column(db.String(36), nullable=True, comment="User id of the acting admin; NULL for system")
    target_id = db.Column(db.String(36), nullable=True)
    details_json = db.Column(db.Text, default="{}")
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def details(self) -> dict:
        try:
            return json.loads(self.details_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self):
        return {
            "id": self.id,
            "action": self.action,
            "actor_id": self.actor_id,
            "target_id": self.target_id,
            "details": self.details,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} target={self.target_id}>"
