"""
Audit Blueprint — administrative audit trail and escalation history.

    GET /api/v1/audit         AuditLog rows (accessSettings); filters action, actor_id
    GET /api/v1/escalations   TASK_ESCALATED entries with from/to names (viewReports)
"""

from flask import Blueprint, jsonify, request

from taskflow.blueprints import paginate_query
from taskflow.middleware.permission_required import capability_required
from taskflow.services.activity_log import audit_query, escalation_entry_to_dict, escalation_history_query

audit_bp = Blueprint("audit", __name__, url_prefix="/api/v1")


@audit_bp.route("/audit", methods=["GET"])
@capability_required("accessSettings")
def list_audit():
    q = audit_query(action=request.args.get("action"), actor_id=request.args.get("actor_id"))
    items, total = paginate_query(q)
    return jsonify({"items": [r.to_dict() for r in items], "total": total})


@audit_bp.route("/escalations", methods=["GET"])
@capability_required("viewReports")
def list_escalations():
    items, total = paginate_query(escalation_history_query(), default_limit=20)
    return jsonify({"items": [escalation_entry_to_dict(r) for r in items], "total": total})
