"""
Post-commit hook queue for best-effort side effects.

The primary mutation is committed by the caller first.  Each queued hook
then runs inside its own SAVEPOINT and is committed on its own, so a
failing hook is rolled back, logged and reported without touching the
primary write or any hook that already ran.

Usage:
    hooks = PostCommitHooks()
    hooks.add("experience", award_experience, task, participant_id)
    hooks.add("activity_log", log_status_change, ...)   # queue logs last
    db.session.commit()
    report = hooks.run()        # {"experience": "ok", "activity_log": "ok"}
"""

import logging

from taskflow.models import db

logger = logging.getLogger(__name__)


class PostCommitHooks:
    def __init__(self, context: dict | None = None):
        self._hooks: list = []
        self.context = context or {}

    def __len__(self):
        return len(self._hooks)

    def add(self, name: str, fn, *args, **kwargs) -> None:
        self._hooks.append((name, fn, args, kwargs))

    def run(self) -> dict:
        """Run every hook in insertion order; returns name → "ok" | "failed"."""
        report = {}
        for name, fn, args, kwargs in self._hooks:
            try:
                with db.session.begin_nested():
                    fn(*args, **kwargs)
                db.session.commit()
                report[name] = "ok"
            except Exception:
                db.session.rollback()
                logger.exception(
                    "Post-commit hook '%s' failed", name,
                    extra={**self.context, "event_type": f"side_effect.{name}.failed"},
                )
                report[name] = "failed"
        self._hooks.clear()
        return report
