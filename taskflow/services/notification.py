"""
Ops Console — Task Workflow Engine
Notification Service.

Creating a notification is a side-effect write, not a delivery guarantee.
Rows are flushed only; callers (normally a post-commit hook) commit.
"""

from taskflow.models import db
from taskflow.models.notification import Notification


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, participant_id, title, message="", type="SYSTEM", task_id=None):
        """
        Create a single notification record for one participant.

        Returns:
            The flushed Notification instance.
        """
        notif = Notification(
            participant_id=participant_id,
            type=type,
            title=title,
            message=message,
            task_id=task_id,
        )
        db.session.add(notif)
        db.session.flush()
        return notif

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_participant(participant_id, unread_only=False, limit=50, offset=0):
        """Notifications for a participant, newest first."""
        q = Notification.query.filter_by(participant_id=participant_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = q.order_by(Notification.created_at.desc()).offset(offset).limit(limit).all()
        return items, total

    @staticmethod
    def mark_read(notification_id, participant_id):
        """Mark one of the participant's notifications as read."""
        notif = Notification.query.filter_by(id=notification_id, participant_id=participant_id).first()
        if notif:
            notif.mark_read()
            db.session.commit()
        return notif
