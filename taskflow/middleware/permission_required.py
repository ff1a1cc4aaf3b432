"""
Permission Decorators — capability checks for route protection.

Usage:
    @bp.route("/api/v1/tasks/<task_id>", methods=["PUT"])
    @capability_required("edit")
    def update_task(task_id):
        ...

    @bp.route("/api/v1/me/permissions", methods=["GET"])
    @login_required
    def my_permissions():
        ...

Both decorators raise; the app-level error handlers turn the exceptions
into 401 / 403 responses.
"""

import functools

from flask import g

from taskflow.services.permission_service import require_actor, require_capability


def login_required(f):
    """Decorator: require an authenticated, active actor on ``g.actor``."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        require_actor(getattr(g, "actor", None))
        return f(*args, **kwargs)
    return decorated


def capability_required(capability: str):
    """
    Decorator: require the actor's resolved profile to grant *capability*.

    Args:
        capability: Capability name, e.g. "changeStatus"
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            require_capability(getattr(g, "actor", None), capability)
            return f(*args, **kwargs)
        return decorated
    return decorator
