"""
Ops Console — Task Workflow Engine
Notification domain model.

Creating a row is the whole contract; delivery is somebody else's job.
"""

from datetime import datetime, timezone

from taskflow.models import db


NOTIFICATION_TYPES = {"XP_GAIN", "TASK_ASSIGNED", "TASK_ESCALATED", "SYSTEM"}


class Notification(db.Model):
    """One record per recipient participant per event."""

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    participant_id = db.Column(
        db.String(36), db.ForeignKey("participants.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    type = db.Column(db.String(30), default="SYSTEM")
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    task_id = db.Column(db.String(36), nullable=True)

    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def mark_read(self):
        self.is_read = True
        self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "participant_id": self.participant_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "task_id": self.task_id,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"
