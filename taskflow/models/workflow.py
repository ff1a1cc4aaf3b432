"""
Ops Console — Task Workflow Engine
Workflow domain models.

Models:
    - Participant: durable workflow identity behind assignee/reporter/watcher
    - Project, Release: named containers referenced by tasks
    - Task: the unit of work driven by the lifecycle state machine
    - TaskChecklist / ChecklistItem, TaskAttachment, TimeLog,
      TaskComment, TaskWatcher: task child records
"""

import uuid
from datetime import datetime, timezone

from taskflow.models import db


def _uuid():
    return str(uuid.uuid4())


def _now():
    return datetime.now(timezone.utc)


# ── Constants ────────────────────────────────────────────────────────────────

TASK_STATUSES = (
    "BACKLOG", "TODO", "IN_PROGRESS", "IN_REVIEW",
    "TESTING", "DONE", "BLOCKED", "CANCELLED",
)
STATUS_DONE = "DONE"
STATUS_TODO = "TODO"

TASK_TYPES = (
    "BUG", "FEATURE", "ENHANCEMENT", "HOTFIX", "REFACTOR", "SECURITY",
    "DOCUMENTATION", "TESTING", "PERFORMANCE", "MAINTENANCE",
)
TYPE_TESTING = "TESTING"

TASK_PRIORITIES = ("CRITICAL", "URGENT", "HIGH", "MEDIUM", "LOW")


# ═════════════════════════════════════════════════════════════════════════════
# Participants
# ═════════════════════════════════════════════════════════════════════════════

class Participant(db.Model):
    """
    Workflow identity.  An actor has zero or one participant; task
    assignee/reporter/watcher columns only ever reference this table.
    """

    __tablename__ = "participants"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
        unique=True, nullable=True, index=True,
    )
    role = db.Column(db.String(50), default="Developer")
    department = db.Column(db.String(100))
    availability = db.Column(db.String(30), default="available")
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    # Gamification
    xp = db.Column(db.Integer, default=0, nullable=False)
    level = db.Column(db.Integer, default=1, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), default=_now)
    updated_at = db.Column(db.DateTime(timezone=True), default=_now, onupdate=_now)

    user = db.relationship("User", back_populates="participant")

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "role": self.role,
            "department": self.department,
            "availability": self.availability,
            "is_active": self.is_active,
            "xp": self.xp,
            "level": self.level,
        }

    def __repr__(self):
        return f"<Participant {self.id} user={self.user_id} xp={self.xp}>"


# ═════════════════════════════════════════════════════════════════════════════
# Containers
# ═════════════════════════════════════════════════════════════════════════════

class Project(db.Model):
    __tablename__ = "projects"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(200), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_now)

    def to_dict(self):
        return {"id": self.id, "name": self.name}


class Release(db.Model):
    __tablename__ = "releases"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    project_id = db.Column(db.String(36), db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=True)
    name = db.Column(db.String(200), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_now)

    def to_dict(self):
        return {"id": self.id, "project_id": self.project_id, "name": self.name}


# ═════════════════════════════════════════════════════════════════════════════
# Tasks
# ═════════════════════════════════════════════════════════════════════════════

class Task(db.Model):
    """
    Work item.

    Invariants kept by services.task_lifecycle:
      - completed_date is set iff status == DONE
      - xp_earned is set iff the task is completed and was not reopened since
      - xp_earner_id names the participant credited with xp_earned
    """

    __tablename__ = "tasks"
    __table_args__ = (
        db.Index("idx_task_assignee", "assignee_id"),
        db.Index("idx_task_project", "project_id"),
        db.Index("idx_task_status_due", "status", "due_date"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    business_value = db.Column(db.Text)
    acceptance_criteria = db.Column(db.Text)

    status = db.Column(db.String(20), nullable=False, default="BACKLOG")
    priority = db.Column(db.String(20), nullable=False, default="MEDIUM")
    type = db.Column(db.String(30), nullable=False, default="FEATURE")

    assignee_id = db.Column(db.String(36), db.ForeignKey("participants.id", ondelete="SET NULL"), nullable=True)
    reporter_id = db.Column(db.String(36), db.ForeignKey("participants.id"), nullable=False)
    project_id = db.Column(db.String(36), db.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True)
    release_id = db.Column(db.String(36), db.ForeignKey("releases.id", ondelete="SET NULL"), nullable=True)
    parent_task_id = db.Column(db.String(36), db.ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True)

    tags = db.Column(db.JSON, default=list)
    labels = db.Column(db.JSON, default=list)
    related_links = db.Column(db.JSON, default=list)
    component = db.Column(db.String(100))

    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_date = db.Column(db.DateTime(timezone=True), nullable=True)
    estimated_hours = db.Column(db.Float, default=0)
    xp_earned = db.Column(db.Integer, nullable=True)
    xp_earner_id = db.Column(db.String(36), db.ForeignKey("participants.id", ondelete="SET NULL"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_now)
    updated_at = db.Column(db.DateTime(timezone=True), default=_now, onupdate=_now)

    assignee = db.relationship("Participant", foreign_keys=[assignee_id])
    reporter = db.relationship("Participant", foreign_keys=[reporter_id])
    project = db.relationship("Project")
    release = db.relationship("Release")
    checklists = db.relationship(
        "TaskChecklist", back_populates="task", cascade="all, delete-orphan",
        order_by="TaskChecklist.id",
    )
    attachments = db.relationship("TaskAttachment", back_populates="task", cascade="all, delete-orphan")
    time_logs = db.relationship("TimeLog", back_populates="task", cascade="all, delete-orphan")
    comments = db.relationship(
        "TaskComment", back_populates="task", cascade="all, delete-orphan",
        order_by="TaskComment.created_at",
    )
    watchers = db.relationship("TaskWatcher", back_populates="task", cascade="all, delete-orphan")

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "business_value": self.business_value,
            "acceptance_criteria": self.acceptance_criteria,
            "status": self.status,
            "priority": self.priority,
            "type": self.type,
            "assignee_id": self.assignee_id,
            "reporter_id": self.reporter_id,
            "project_id": self.project_id,
            "release_id": self.release_id,
            "parent_task_id": self.parent_task_id,
            "tags": self.tags or [],
            "labels": self.labels or [],
            "component": self.component,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "completed_date": self.completed_date.isoformat() if self.completed_date else None,
            "estimated_hours": self.estimated_hours,
            "xp_earned": self.xp_earned,
            "watchers": [w.participant_id for w in self.watchers],
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Task {self.id}: {self.title[:40]} [{self.status}]>"


class TaskChecklist(db.Model):
    __tablename__ = "task_checklists"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(db.String(36), db.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)

    task = db.relationship("Task", back_populates="checklists")
    items = db.relationship(
        "ChecklistItem", back_populates="checklist", cascade="all, delete-orphan",
        order_by="ChecklistItem.id",
    )


class ChecklistItem(db.Model):
    __tablename__ = "task_checklist_items"

    id = db.Column(db.Integer, primary_key=True)
    checklist_id = db.Column(
        db.Integer, db.ForeignKey("task_checklists.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    content = db.Column(db.String(500), nullable=False)
    is_completed = db.Column(db.Boolean, default=False)

    checklist = db.relationship("TaskChecklist", back_populates="items")


class TaskAttachment(db.Model):
    __tablename__ = "task_attachments"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(db.String(36), db.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    file_name = db.Column(db.String(300), nullable=False)
    original_name = db.Column(db.String(300))
    file_size = db.Column(db.Integer)
    file_type = db.Column(db.String(100))
    file_path = db.Column(db.String(500))
    uploaded_by = db.Column(db.String(36), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_now)

    task = db.relationship("Task", back_populates="attachments")


class TimeLog(db.Model):
    __tablename__ = "task_time_logs"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(db.String(36), db.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    participant_id = db.Column(db.String(36), db.ForeignKey("participants.id", ondelete="SET NULL"))
    duration = db.Column(db.Integer, default=0, comment="Minutes")
    created_at = db.Column(db.DateTime(timezone=True), default=_now)

    task = db.relationship("Task", back_populates="time_logs")


class TaskComment(db.Model):
    __tablename__ = "task_comments"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(db.String(36), db.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id = db.Column(db.String(36), db.ForeignKey("participants.id"), nullable=False)
    content = db.Column(db.Text, nullable=False)
    is_system = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_now)

    task = db.relationship("Task", back_populates="comments")

    def to_dict(self):
        return {
            "id": self.id,
            "task_id": self.task_id,
            "author_id": self.author_id,
            "content": self.content,
            "is_system": self.is_system,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class TaskWatcher(db.Model):
    __tablename__ = "task_watchers"
    __table_args__ = (
        db.UniqueConstraint("task_id", "participant_id", name="uq_task_watcher"),
    )

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(db.String(36), db.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    participant_id = db.Column(db.String(36), db.ForeignKey("participants.id", ondelete="CASCADE"), nullable=False)

    task = db.relationship("Task", back_populates="watchers")
