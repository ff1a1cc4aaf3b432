"""
Actor Context Middleware — Bearer token → ``g.actor``.

Runs before every /api/v1/ request:
  - clears the per-request settings memo so profile edits made by an
    earlier request are seen by this one
  - decodes the JWT (if any) and loads the User row into ``g.actor``

A missing, invalid or expired token, or an inactive user, leaves
``g.actor = None``; the services raise UnauthenticatedError from there.
"""

import logging

import jwt as pyjwt
from flask import g, request

from taskflow.models import db
from taskflow.models.auth import User
from taskflow.services.jwt_service import decode_access_token
from taskflow.services.settings_service import clear_request_settings

logger = logging.getLogger(__name__)

# Paths that skip actor resolution entirely
SKIP_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/health",
    "/static/",
)


def current_actor():
    return getattr(g, "actor", None)


def init_actor_context(app):
    """Register the actor middleware as a before_request hook."""

    @app.before_request
    def _resolve_actor():
        g.actor = None
        clear_request_settings()

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        try:
            payload = decode_access_token(auth_header[7:])
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired access token on %s", path)
            return
        except pyjwt.InvalidTokenError:
            logger.info("Invalid access token on %s", path)
            return

        user = db.session.get(User, payload["sub"])
        if user is None or not user.is_active:
            return
        g.actor = user
