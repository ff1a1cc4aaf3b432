"""
Ops Console — Task Workflow Engine
Workflow settings storage.

A single keyed row holds the mutable configuration blob (permission
profiles, automation rules, leaderboard tables).  Parsing and validation
happen in ``taskflow.services.settings_service``; this model only stores.
"""

from datetime import datetime, timezone

from taskflow.models import db

DEFAULT_SETTINGS_KEY = "default"


class WorkflowSettings(db.Model):
    __tablename__ = "workflow_settings"

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(50), unique=True, nullable=False, default=DEFAULT_SETTINGS_KEY)
    data = db.Column(db.JSON, default=dict, nullable=False)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self):
        return f"<WorkflowSettings {self.key}>"
