"""
Admin Blueprint — user administration and scheduled job control.

Endpoints:
    GET    /api/v1/admin/users
    POST   /api/v1/admin/users
    GET    /api/v1/admin/users/<id>
    PUT    /api/v1/admin/users/<id>
    DELETE /api/v1/admin/users/<id>
    GET    /api/v1/admin/jobs
    POST   /api/v1/admin/jobs/<name>/run
    POST   /api/v1/admin/jobs/<name>/toggle
"""

from flask import Blueprint, current_app, g, jsonify, request

from taskflow.blueprints import json_body
from taskflow.middleware.permission_required import capability_required, login_required
from taskflow.services import user_service
from taskflow.utils.errors import E, api_error

admin_bp = Blueprint("admin", __name__, url_prefix="/api/v1/admin")


# ═══════════════════════════════════════════════════════════════
# Users
# ═══════════════════════════════════════════════════════════════
@admin_bp.route("/users", methods=["GET"])
@login_required
def list_users():
    active = request.args.get("active")
    users = user_service.list_users(
        g.actor,
        role=request.args.get("role"),
        active=None if active is None else active in ("1", "true"),
    )
    return jsonify({"items": [u.to_dict() for u in users], "total": len(users)})


@admin_bp.route("/users", methods=["POST"])
@login_required
def create_user():
    user = user_service.create_user(g.actor, json_body())
    return jsonify(user.to_dict()), 201


@admin_bp.route("/users/<int:user_id>", methods=["GET"])
@login_required
def get_user(user_id):
    return jsonify(user_service.get_user(g.actor, user_id).to_dict())


@admin_bp.route("/users/<int:user_id>", methods=["PUT"])
@login_required
def update_user(user_id):
    user = user_service.update_user(g.actor, user_id, json_body())
    return jsonify(user.to_dict())


@admin_bp.route("/users/<int:user_id>", methods=["DELETE"])
@login_required
def delete_user(user_id):
    user_service.delete_user(g.actor, user_id)
    return jsonify({"deleted": True, "id": user_id})


# ═══════════════════════════════════════════════════════════════
# Scheduled jobs
# ═══════════════════════════════════════════════════════════════
def _scheduler():
    return current_app.extensions["scheduler"]


@admin_bp.route("/jobs", methods=["GET"])
@capability_required("accessSettings")
def list_jobs():
    return jsonify({"items": _scheduler().list_jobs()})


@admin_bp.route("/jobs/<job_name>/run", methods=["POST"])
@capability_required("accessSettings")
def run_job(job_name):
    result = _scheduler().run_job(job_name)
    if result["status"] == "error":
        return api_error(E.NOT_FOUND, result["error"])
    return jsonify(result)


@admin_bp.route("/jobs/<job_name>/toggle", methods=["POST"])
@capability_required("accessSettings")
def toggle_job(job_name):
    enabled = bool(json_body().get("enabled", True))
    record = _scheduler().toggle_job(job_name, enabled)
    if record is None:
        return api_error(E.NOT_FOUND, f"Job not found: {job_name}")
    return jsonify(record)
