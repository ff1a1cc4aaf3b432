"""
Scheduler service: job registry, single-flight execution and run history.
"""

import threading

from taskflow.models import db
from taskflow.models.scheduling import ScheduledJob
from taskflow.services import scheduler_service
from taskflow.services.escalation import EscalationEngine
from taskflow.services.scheduler_service import SchedulerService, get_registered_jobs


def _job_record(name="escalation_sweep"):
    db.session.expire_all()
    return ScheduledJob.query.filter_by(job_name=name).first()


def test_escalation_sweep_is_registered(app):
    assert "escalation_sweep" in get_registered_jobs()
    assert app.extensions["scheduler"] is SchedulerService


def test_ensure_jobs_registered_creates_records(app):
    SchedulerService.ensure_jobs_registered()
    record = _job_record()
    assert record is not None
    assert record.interval_seconds == app.config["ESCALATION_SWEEP_INTERVAL"]
    assert record.is_enabled is True

    # Second call creates nothing new
    assert SchedulerService.ensure_jobs_registered() == []


def test_run_job_records_success():
    SchedulerService.ensure_jobs_registered()

    result = SchedulerService.run_job("escalation_sweep")

    assert result["status"] == "success"
    assert result["result"]["status"] == "completed"
    record = _job_record()
    assert record.run_count == 1
    assert record.last_run_status == "success"


def test_run_job_unknown():
    result = SchedulerService.run_job("does_not_exist")
    assert result["status"] == "error"
    assert "Unknown job" in result["error"]


def test_overlapping_trigger_is_skipped():
    lock = scheduler_service._job_locks["escalation_sweep"]
    assert lock.acquire(blocking=False)
    try:
        result = SchedulerService.run_job("escalation_sweep")
    finally:
        lock.release()
    assert result["status"] == "skipped"


def test_sweep_already_running_is_recorded_as_skipped():
    SchedulerService.ensure_jobs_registered()
    assert EscalationEngine._lock.acquire(blocking=False)
    try:
        result = SchedulerService.run_job("escalation_sweep")
    finally:
        EscalationEngine._lock.release()
    assert result["status"] == "skipped"
    assert _job_record().last_run_status == "skipped"


def test_failing_job_is_recorded(monkeypatch):
    def broken(app):
        raise RuntimeError("kaboom")

    monkeypatch.setitem(scheduler_service._job_registry, "broken", broken)
    monkeypatch.setitem(scheduler_service._job_locks, "broken", threading.Lock())
    SchedulerService.ensure_jobs_registered()

    result = SchedulerService.run_job("broken")

    assert result["status"] == "failed"
    assert result["error"] == "kaboom"
    record = _job_record("broken")
    assert record.error_count == 1
    assert record.last_error == "kaboom"


def test_toggle_job():
    SchedulerService.ensure_jobs_registered()
    assert SchedulerService.toggle_job("escalation_sweep", False)["status"] == "paused"
    assert SchedulerService._is_enabled("escalation_sweep") is False
    assert SchedulerService.toggle_job("missing", True) is None


def test_list_jobs_includes_db_record():
    SchedulerService.ensure_jobs_registered()
    jobs = {j["job_name"]: j for j in SchedulerService.list_jobs()}
    assert jobs["escalation_sweep"]["db_record"]["job_name"] == "escalation_sweep"


def test_scheduler_thread_not_started_in_testing():
    assert SchedulerService.is_running() is False
