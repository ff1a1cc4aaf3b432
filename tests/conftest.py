"""
Shared pytest fixtures for the Task Workflow Engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_user / make_participant / make_project / make_task: row factories
    - auth_headers: Bearer header for a user
"""

import copy
from datetime import datetime, timezone

import pytest

from taskflow import create_app
from taskflow.models import db as _db
from taskflow.models.auth import User
from taskflow.models.settings import DEFAULT_SETTINGS_KEY, WorkflowSettings
from taskflow.models.workflow import Participant, Project, Task
from taskflow.services.jwt_service import generate_access_token
from taskflow.services.settings_service import DEFAULT_SETTINGS, invalidate_settings_cache


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        # Ids are reused after the recreate; a cached blob would outlive its row
        app.extensions["settings_cache"].clear()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()
        app.extensions["settings_cache"].clear()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Row factories ────────────────────────────────────────────────────────


def _make_user(email, role="Developer", *, first_name="", last_name="", is_active=True, password=None):
    from taskflow.utils.crypto import hash_password

    user = User(
        email=email,
        role=role,
        first_name=first_name,
        last_name=last_name,
        is_active=is_active,
        password_hash=hash_password(password) if password else None,
    )
    _db.session.add(user)
    _db.session.commit()
    return user


def _make_participant(user=None, role=None):
    participant = Participant(
        user_id=user.id if user else None,
        role=role or (user.role if user else "Developer"),
    )
    _db.session.add(participant)
    _db.session.commit()
    return participant


def _make_project(name="Project"):
    project = Project(name=name)
    _db.session.add(project)
    _db.session.commit()
    return project


def _make_task(reporter, **kwargs):
    """Task reported by *reporter* (a Participant); kwargs map to columns."""
    defaults = {
        "title": "Task",
        "status": "TODO",
        "priority": "MEDIUM",
        "type": "FEATURE",
    }
    defaults.update(kwargs)
    task = Task(reporter_id=reporter.id, **defaults)
    _db.session.add(task)
    _db.session.commit()
    return task


def _store_settings(**overrides):
    """Replace top-level keys of the stored settings blob and drop caches."""
    row = WorkflowSettings.query.filter_by(key=DEFAULT_SETTINGS_KEY).first()
    if row is None:
        row = WorkflowSettings(key=DEFAULT_SETTINGS_KEY, data=copy.deepcopy(DEFAULT_SETTINGS))
        _db.session.add(row)
    data = copy.deepcopy(row.data)
    data.update(overrides)
    row.data = data
    _db.session.commit()
    invalidate_settings_cache()
    return data


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture()
def make_user():
    return _make_user


@pytest.fixture()
def make_participant():
    return _make_participant


@pytest.fixture()
def make_project():
    return _make_project


@pytest.fixture()
def make_task():
    return _make_task


@pytest.fixture()
def store_settings():
    return _store_settings


@pytest.fixture()
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {generate_access_token(user.id, user.role)}"}
    return _headers


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def admin():
    """Top-role actor with a participant."""
    user = _make_user("root@opsconsole.io", "super_admin", first_name="Root", last_name="Admin")
    _make_participant(user)
    return user


@pytest.fixture()
def developer():
    """Developer actor with a participant."""
    user = _make_user("dev@opsconsole.io", "Developer", first_name="Dana", last_name="Dev")
    _make_participant(user)
    return user
