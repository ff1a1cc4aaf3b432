"""
Task Blueprint — visibility-filtered task reads and lifecycle mutations.

Every read goes through the actor's view scope; a task outside it answers
404 exactly like a missing one.
"""

from flask import Blueprint, g, jsonify, request

from taskflow.blueprints import json_body, paginate_query
from taskflow.middleware.permission_required import login_required
from taskflow.services import activity_log, task_lifecycle
from taskflow.utils.errors import E, api_error

task_bp = Blueprint("task", __name__, url_prefix="/api/v1")


# ═════════════════════════════════════════════════════════════════════════════
# Reads
# ═════════════════════════════════════════════════════════════════════════════

@task_bp.route("/tasks", methods=["GET"])
@login_required
def list_tasks():
    """Visible tasks.  Filters: status, project_id, assignee_id; limit/offset."""
    q = task_lifecycle.visible_tasks_query(
        g.actor,
        status=request.args.get("status"),
        project_id=request.args.get("project_id"),
        assignee_id=request.args.get("assignee_id"),
    )
    items, total = paginate_query(q)
    return jsonify({"items": [t.to_dict() for t in items], "total": total})


@task_bp.route("/tasks/<task_id>", methods=["GET"])
@login_required
def get_task(task_id):
    task = task_lifecycle.get_visible_task(g.actor, task_id)
    return jsonify(task.to_dict())


@task_bp.route("/tasks/<task_id>/activity", methods=["GET"])
@login_required
def task_activity(task_id):
    task = task_lifecycle.get_visible_task(g.actor, task_id)
    entries = activity_log.list_task_activity(task.id)
    return jsonify({"items": [e.to_dict() for e in entries], "total": len(entries)})


@task_bp.route("/tasks/<task_id>/comments", methods=["GET"])
@login_required
def list_comments(task_id):
    task = task_lifecycle.get_visible_task(g.actor, task_id)
    return jsonify({"items": [c.to_dict() for c in task.comments]})


# ═════════════════════════════════════════════════════════════════════════════
# Mutations
# ═════════════════════════════════════════════════════════════════════════════

@task_bp.route("/tasks", methods=["POST"])
@login_required
def create_task():
    task = task_lifecycle.create_task(g.actor, json_body())
    return jsonify(task.to_dict()), 201


@task_bp.route("/tasks/<task_id>", methods=["PUT"])
@login_required
def update_task(task_id):
    task = task_lifecycle.update_task(g.actor, task_id, json_body())
    return jsonify(task.to_dict())


@task_bp.route("/tasks/<task_id>/status", methods=["PATCH"])
@login_required
def change_status(task_id):
    """Body: { "status": "DONE" }"""
    data = json_body()
    if "status" not in data:
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    task = task_lifecycle.transition_task_status(g.actor, task_id, data["status"])
    return jsonify(task.to_dict())


@task_bp.route("/tasks/<task_id>/comments", methods=["POST"])
@login_required
def add_comment(task_id):
    comment = task_lifecycle.add_comment(g.actor, task_id, json_body().get("content"))
    return jsonify(comment.to_dict()), 201
