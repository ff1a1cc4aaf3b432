"""
Escalation Automation Engine — rule-based reassignment of overdue tasks.

For every configured rule:
  1. cutoff = now - threshold (hours | days)
  2. candidates: status != DONE, due_date < cutoff, not already held by the
     rule's resolved target (loop guard), optionally narrowed to tasks
     currently held by ``rule.scope``
  3. each candidate is reassigned, gets a system comment and a
     TASK_ESCALATED activity entry

Isolation:
  - a rule whose target cannot be resolved is skipped
  - each task runs in its own savepoint and commits on its own; a failing
    task is rolled back and the batch continues
  - a sweep is never re-entered: a second caller while one is running
    gets ``{"status": "skipped"}``

Usage:
    from taskflow.services.escalation import EscalationEngine
    summary = EscalationEngine.run_sweep()
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone

from sqlalchemy import or_

from taskflow.models import db
from taskflow.models.auth import User
from taskflow.models.workflow import STATUS_DONE, Participant, Task, TaskComment
from taskflow.services.activity_log import log_escalation
from taskflow.services.identity import is_admin_role
from taskflow.services.notification import NotificationService
from taskflow.services.participant_service import (
    PendingRef,
    RealRef,
    display_name,
    parse_ref,
    resolve,
)
from taskflow.services.settings_service import get_settings

logger = logging.getLogger(__name__)

SCOPE_ALL = "all"


# ═════════════════════════════════════════════════════════════════════════════
# System author chain
# ═════════════════════════════════════════════════════════════════════════════

def _system_named_participant():
    pattern = "%system%"
    row = (
        db.session.query(Participant.id)
        .join(User, Participant.user_id == User.id)
        .filter(or_(
            User.email.ilike(pattern),
            User.first_name.ilike(pattern),
            User.last_name.ilike(pattern),
        ))
        .order_by(Participant.created_at, Participant.id)
        .first()
    )
    return row[0] if row else None


def _admin_labels(column) -> list:
    labels = db.session.query(column).filter(column.isnot(None)).distinct()
    return [label for (label,) in labels if is_admin_role(label)]


def _first_admin_participant():
    # Distinct labels are normalized in Python; the participant lookup stays in SQL
    participant_roles = _admin_labels(Participant.role)
    user_roles = _admin_labels(User.role)
    if not participant_roles and not user_roles:
        return None
    row = (
        db.session.query(Participant.id)
        .outerjoin(User, Participant.user_id == User.id)
        .filter(or_(Participant.role.in_(participant_roles), User.role.in_(user_roles)))
        .order_by(Participant.created_at, Participant.id)
        .first()
    )
    return row[0] if row else None


def _first_participant():
    row = db.session.query(Participant.id).order_by(Participant.created_at, Participant.id).first()
    return row[0] if row else None


# Evaluated in order; the first non-None participant id wins
SYSTEM_AUTHOR_STRATEGIES = (
    _system_named_participant,
    _first_admin_participant,
    _first_participant,
)


def resolve_system_author(strategies=SYSTEM_AUTHOR_STRATEGIES):
    for strategy in strategies:
        participant_id = strategy()
        if participant_id:
            return participant_id
    return None


# ═════════════════════════════════════════════════════════════════════════════
# Engine
# ═════════════════════════════════════════════════════════════════════════════

def rule_cutoff(rule, now: datetime) -> datetime:
    delta = timedelta(days=rule.threshold) if rule.unit == "days" else timedelta(hours=rule.threshold)
    return now - delta


def _lookup_scope(scope):
    """Participant id a rule is scoped to, without materializing one."""
    ref = parse_ref(scope)
    if isinstance(ref, RealRef):
        return ref.participant_id
    if isinstance(ref, PendingRef):
        row = db.session.query(Participant.id).filter_by(user_id=ref.actor_id).first()
        return row[0] if row else None
    return None


def candidate_task_ids(rule, target_id, now: datetime) -> list | None:
    """Ids of tasks the rule would escalate; None when its scope matches no one."""
    q = db.session.query(Task.id).filter(
        Task.status != STATUS_DONE,
        Task.due_date.isnot(None),
        Task.due_date < rule_cutoff(rule, now),
        or_(Task.assignee_id.is_(None), Task.assignee_id != target_id),
    )
    if rule.scope != SCOPE_ALL:
        scope_id = _lookup_scope(rule.scope)
        if scope_id is None:
            return None
        q = q.filter(Task.assignee_id == scope_id)
    return [row[0] for row in q.order_by(Task.due_date, Task.id).all()]


class EscalationEngine:
    """Single-flight sweep over all automation rules."""

    _lock = threading.Lock()

    @classmethod
    def run_sweep(cls, now: datetime | None = None, author_strategies=SYSTEM_AUTHOR_STRATEGIES) -> dict:
        if not cls._lock.acquire(blocking=False):
            logger.warning("Escalation sweep already running; skipped")
            return {"status": "skipped"}
        try:
            return cls._sweep(now or datetime.now(timezone.utc), author_strategies)
        finally:
            cls._lock.release()

    @classmethod
    def _sweep(cls, now, author_strategies) -> dict:
        summary = {"status": "completed", "rules": 0, "escalated": 0, "skipped": 0, "failed": 0}
        rules = get_settings().automation_rules
        author_id = None

        for idx, rule in enumerate(rules):
            summary["rules"] += 1
            log_extra = {"rule_index": idx, "event_type": "escalation.rule"}
            try:
                target_id = resolve(rule.target_id)
                if target_id is None:
                    logger.error("Rule #%d: target %s cannot be resolved; rule skipped", idx, rule.target_id,
                                 extra=log_extra)
                    continue
                db.session.commit()
                task_ids = candidate_task_ids(rule, target_id, now)
            except Exception:
                db.session.rollback()
                logger.exception("Rule #%d failed during preparation", idx, extra=log_extra)
                continue
            if task_ids is None:
                logger.info("Rule #%d: scope %s has no participant; nothing to do", idx, rule.scope,
                            extra=log_extra)
                continue

            for task_id in task_ids:
                if author_id is None:
                    author_id = resolve_system_author(author_strategies)
                if author_id is None:
                    logger.error(
                        "No system author available; escalation of task %s skipped", task_id,
                        extra={**log_extra, "task_id": task_id},
                    )
                    summary["skipped"] += 1
                    continue
                if cls._escalate_task(task_id, rule, target_id, author_id, idx):
                    summary["escalated"] += 1
                else:
                    summary["failed"] += 1

        logger.info(
            "Escalation sweep: %d rule(s), %d escalated, %d skipped, %d failed",
            summary["rules"], summary["escalated"], summary["skipped"], summary["failed"],
            extra={"event_type": "escalation.sweep"},
        )
        return summary

    @staticmethod
    def _escalate_task(task_id, rule, target_id, author_id, rule_index) -> bool:
        log_extra = {"task_id": task_id, "rule_index": rule_index, "event_type": "escalation.task"}
        try:
            with db.session.begin_nested():
                task = db.session.get(Task, task_id)
                previous_id = task.assignee_id
                previous_name = display_name(previous_id) if previous_id else "Unassigned"
                target_name = display_name(target_id)
                description = (
                    f"Task automatically escalated: overdue by more than {rule.threshold:g} {rule.unit}. "
                    f"Reassigned from {previous_name} to {target_name}."
                )
                task.assignee_id = target_id
                db.session.add(TaskComment(
                    task_id=task.id, author_id=author_id, content=description, is_system=True,
                ))
                NotificationService.create(
                    participant_id=target_id,
                    type="TASK_ESCALATED",
                    title=f"Task escalated to you: {task.title}",
                    message=description,
                    task_id=task.id,
                )
            db.session.commit()
        except Exception:
            db.session.rollback()
            logger.exception("Escalation of task %s failed", task_id, extra=log_extra)
            return False

        log_escalation(task_id, author_id, previous_id, target_id, description)
        db.session.commit()
        logger.info("Escalated task %s to %s", task_id, target_id, extra=log_extra)
        return True


def run_escalation_sweep(now: datetime | None = None) -> dict:
    return EscalationEngine.run_sweep(now=now)
