"""
Settings Blueprint — read and patch the workflow settings blob.

    GET /api/v1/settings   any actor with accessSettings or manageTaskSettings
    PUT /api/v1/settings   same; ``permissions`` changes need the top role
"""

from flask import Blueprint, g, jsonify

from taskflow.blueprints import json_body
from taskflow.core.exceptions import ForbiddenError
from taskflow.middleware.permission_required import login_required
from taskflow.services.permission_service import has_capability
from taskflow.services.settings_service import load_settings_blob, update_settings

settings_bp = Blueprint("settings", __name__, url_prefix="/api/v1")


def _require_settings_access(actor):
    if not (has_capability(actor, "accessSettings") or has_capability(actor, "manageTaskSettings")):
        raise ForbiddenError("accessSettings")


@settings_bp.route("/settings", methods=["GET"])
@login_required
def get_settings():
    _require_settings_access(g.actor)
    return jsonify(load_settings_blob())


@settings_bp.route("/settings", methods=["PUT"])
@login_required
def put_settings():
    _require_settings_access(g.actor)
    return jsonify(update_settings(g.actor, json_body()))
