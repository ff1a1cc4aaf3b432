"""
Auth Blueprint — login and the caller's resolved permissions.

Endpoints:
    POST /api/v1/auth/login         email + password → access token
    GET  /api/v1/me/permissions     resolved profile + participant id
    GET  /api/v1/me/notifications   caller's notifications
    POST /api/v1/me/notifications/<id>/read
"""

from flask import Blueprint, g, jsonify, request

from taskflow.blueprints import json_body
from taskflow.middleware.permission_required import login_required
from taskflow.services import permission_service, user_service
from taskflow.services.identity import level_of, normalize_role
from taskflow.services.jwt_service import token_response
from taskflow.services.notification import NotificationService
from taskflow.services.participant_service import participant_for_actor
from taskflow.utils.errors import E, api_error

auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1")


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/login
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/auth/login", methods=["POST"])
def login():
    """
    Authenticate with email + password, return an access token.

    Body: { "email": "...", "password": "..." }
    """
    data = json_body()
    email = (data.get("email") or "").strip()
    password = data.get("password") or ""
    if not email or not password:
        return api_error(E.VALIDATION_REQUIRED, "Email and password are required")

    user = user_service.authenticate(email, password)
    return jsonify(token_response(user)), 200


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/me/permissions
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/me/permissions", methods=["GET"])
@login_required
def my_permissions():
    actor = g.actor
    profile = permission_service.resolve_profile(actor)
    participant = participant_for_actor(actor)
    return jsonify({
        "user_id": actor.id,
        "role": actor.role,
        "canonical_role": normalize_role(actor.role),
        "level": level_of(actor.role),
        "participant_id": participant.id if participant else None,
        "permissions": profile.to_dict(),
        "assignable_roles": user_service.assignable_roles(actor),
    })


# ═══════════════════════════════════════════════════════════════
# Notifications
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/me/notifications", methods=["GET"])
@login_required
def my_notifications():
    participant = participant_for_actor(g.actor)
    if participant is None:
        return jsonify({"items": [], "total": 0})
    unread_only = request.args.get("unread") in ("1", "true")
    items, total = NotificationService.list_for_participant(participant.id, unread_only=unread_only)
    return jsonify({"items": [n.to_dict() for n in items], "total": total})


@auth_bp.route("/me/notifications/<int:nid>/read", methods=["POST"])
@login_required
def mark_notification_read(nid):
    participant = participant_for_actor(g.actor)
    notif = NotificationService.mark_read(nid, participant.id) if participant else None
    if notif is None:
        return api_error(E.NOT_FOUND, "Notification not found")
    return jsonify(notif.to_dict())
