"""
Ops Console — Task Workflow Engine
Scheduler Service.

A lightweight background job scheduler implemented with a single daemon
thread, so the engine needs no external broker.

Architecture:
    - Job functions are registered via the ``@register_job`` decorator
    - Each registered job has a ScheduledJob row (run history + config)
    - ``run_job`` is single-flight per job: an overlapping trigger returns
      status "skipped" instead of running the job twice
    - A failing job is recorded and logged; the scheduler thread keeps going
    - Jobs can also be triggered manually via the admin API
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from flask import Flask

from taskflow.models import db
from taskflow.models.scheduling import ScheduledJob

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

_job_registry: dict[str, Callable] = {}
_job_locks: dict[str, threading.Lock] = {}


def register_job(name: str):
    """Decorator to register a job function.

    Usage:
        @register_job("escalation_sweep")
        def escalation_sweep(app):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        _job_locks.setdefault(name, threading.Lock())
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    """Return all registered job functions."""
    return dict(_job_registry)


class SchedulerService:
    """
    Lightweight scheduler service.

    Manages job registration, persistence, and execution.
    Jobs are executed within a fresh Flask app context.
    """

    _app: Flask | None = None
    _thread: threading.Thread | None = None
    _stop_event: threading.Event | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        """Initialize scheduler with Flask app context."""
        # Importing registers the jobs
        from taskflow.services import scheduled_jobs  # noqa: F401

        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService initialized with %d registered jobs", len(_job_registry))

    @classmethod
    def _interval_for(cls, job_name: str) -> int:
        if job_name == "escalation_sweep":
            return int(cls._app.config.get("ESCALATION_SWEEP_INTERVAL", 300))
        return 300

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """
        Ensure all registered jobs have a corresponding DB record.
        Creates missing records with default config.
        """
        if not cls._app:
            return []

        created = []
        with cls._app.app_context():
            for name, fn in _job_registry.items():
                existing = ScheduledJob.query.filter_by(job_name=name).first()
                if not existing:
                    job = ScheduledJob(
                        job_name=name,
                        description=(fn.__doc__ or f"Scheduled job: {name}").strip().splitlines()[0],
                        interval_seconds=cls._interval_for(name),
                        status="active",
                        is_enabled=True,
                    )
                    db.session.add(job)
                    created.append(job)
            if created:
                db.session.commit()
                logger.info("Created %d scheduled job records", len(created))
        return created

    @classmethod
    def run_job(cls, job_name: str) -> dict:
        """
        Execute a single job by name.

        Returns:
            Dict with status, duration_ms, result or error.
        """
        fn = _job_registry.get(job_name)
        if not fn:
            return {"job_name": job_name, "status": "error", "error": f"Unknown job: {job_name}"}

        if not cls._app:
            return {"job_name": job_name, "status": "error", "error": "Scheduler not initialized"}

        lock = _job_locks[job_name]
        if not lock.acquire(blocking=False):
            logger.warning("Job %s is already running; trigger skipped", job_name)
            return {"job_name": job_name, "status": "skipped", "duration_ms": 0, "result": None, "error": None}

        try:
            start = time.monotonic()
            result = None
            error = None
            status = "success"

            try:
                with cls._app.app_context():
                    result = fn(cls._app)
            except Exception as exc:
                status = "failed"
                error = str(exc)
                logger.exception("Job %s failed: %s", job_name, exc)

            duration_ms = int((time.monotonic() - start) * 1000)
            if isinstance(result, dict) and result.get("status") == "skipped":
                status = "skipped"

            try:
                with cls._app.app_context():
                    job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
                    if job_record:
                        job_record.record_run(
                            status=status,
                            duration_ms=duration_ms,
                            result=result if isinstance(result, dict) else {"output": str(result)},
                            error=error,
                        )
                        db.session.commit()
            except Exception:
                logger.exception("Failed to update job record for %s", job_name)
        finally:
            lock.release()

        return {
            "job_name": job_name,
            "status": status,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }

    # ── Background thread ─────────────────────────────────────────────────

    @classmethod
    def is_running(cls) -> bool:
        return cls._thread is not None and cls._thread.is_alive()

    @classmethod
    def start(cls, tick_seconds: float = 5.0) -> None:
        """Start the daemon thread that triggers due jobs."""
        if not cls._app or cls.is_running():
            return
        cls.ensure_jobs_registered()
        cls._stop_event = threading.Event()
        cls._thread = threading.Thread(
            target=cls._loop, args=(tick_seconds, cls._stop_event),
            name="taskflow-scheduler", daemon=True,
        )
        cls._thread.start()
        logger.info("Scheduler thread started (tick=%ss)", tick_seconds)

    @classmethod
    def stop(cls, timeout: float = 5.0) -> None:
        if cls._stop_event is not None:
            cls._stop_event.set()
        if cls._thread is not None:
            cls._thread.join(timeout)
        cls._thread = None
        cls._stop_event = None

    @classmethod
    def _is_enabled(cls, job_name: str) -> bool:
        with cls._app.app_context():
            record = ScheduledJob.query.filter_by(job_name=job_name).first()
            return record is None or bool(record.is_enabled)

    @classmethod
    def _loop(cls, tick_seconds: float, stop_event: threading.Event) -> None:
        started = time.monotonic()
        last_run: dict[str, float] = {}
        while not stop_event.wait(tick_seconds):
            for name in list(_job_registry):
                now = time.monotonic()
                if now - last_run.get(name, started) < cls._interval_for(name):
                    continue
                last_run[name] = now
                try:
                    if cls._is_enabled(name):
                        cls.run_job(name)
                except Exception:
                    logger.exception("Scheduler tick failed for job %s", name)

    # ── Queries ───────────────────────────────────────────────────────────

    @classmethod
    def list_jobs(cls) -> list[dict]:
        """List all registered jobs with their DB status."""
        jobs = []
        for name in _job_registry:
            job_record = ScheduledJob.query.filter_by(job_name=name).first()
            jobs.append({
                "job_name": name,
                "registered": True,
                "db_record": job_record.to_dict() if job_record else None,
            })
        return jobs

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        """Enable or disable a scheduled job."""
        job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
        if not job_record:
            return None
        job_record.is_enabled = enabled
        job_record.status = "active" if enabled else "paused"
        db.session.commit()
        return job_record.to_dict()
