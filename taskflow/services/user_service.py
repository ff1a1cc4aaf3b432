"""
User Service — authentication and administrative user management.

Every mutation is guarded twice:
  - the acting admin must outrank the account being changed
    (the top role is exempt)
  - any requested role must pass the privilege-escalation guard

Denied role grants are audited as ROLE_ESCALATION_DENIED before the
ForbiddenError is raised.
"""

import logging
from datetime import datetime, timezone

from email_validator import EmailNotValidError, validate_email

from taskflow.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthenticatedError,
    ValidationError,
)
from taskflow.models import db
from taskflow.models.auth import User
from taskflow.services.activity_log import write_audit
from taskflow.services.identity import ROLE_HIERARCHY, is_admin_role, normalize_role
from taskflow.services.permission_service import (
    guard_privilege_escalation,
    has_capability,
    outranks,
    require_actor,
)
from taskflow.utils.crypto import hash_password, verify_password

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = ("first_name", "last_name", "email", "role", "is_active")


def _normalized_email(email: str) -> str:
    try:
        return validate_email(email or "", check_deliverability=False).normalized
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email: {e}", details={"email": email})


def _require_user_admin(actor) -> None:
    require_actor(actor)
    if not (is_admin_role(actor.role) or has_capability(actor, "accessSettings")):
        raise ForbiddenError("accessSettings", "User administration requires an administrative role")


def _guard_role_grant(actor, requested_role, target_id=None) -> None:
    if guard_privilege_escalation(actor, requested_role):
        return
    write_audit(
        action="ROLE_ESCALATION_DENIED",
        actor_id=actor.id,
        target_id=target_id,
        details={"actor_role": actor.role, "requested_role": requested_role},
    )
    db.session.commit()
    logger.warning(
        "Actor %s (%s) tried to grant role %s", actor.id, actor.role, requested_role,
        extra={"actor_id": actor.id, "event_type": "authz.role_escalation_denied"},
    )
    raise ForbiddenError("assignRole", f"You cannot assign the role '{requested_role}'")


def _guard_target(actor, target: User) -> None:
    if not outranks(actor, target.role):
        raise ForbiddenError("manageUser", "You can only manage users with a lower role than yours")


# ═══════════════════════════════════════════════════════════════
# Authentication
# ═══════════════════════════════════════════════════════════════
def authenticate(email: str, password: str) -> User:
    """Return the active user matching the credentials."""
    user = User.query.filter(db.func.lower(User.email) == (email or "").strip().lower()).first()
    if user is None or not user.is_active or not verify_password(password, user.password_hash):
        raise UnauthenticatedError("Invalid email or password")
    user.last_login_at = datetime.now(timezone.utc)
    db.session.commit()
    return user


# ═══════════════════════════════════════════════════════════════
# User CRUD
# ═══════════════════════════════════════════════════════════════
def list_users(actor, role=None, active=None) -> list[User]:
    _require_user_admin(actor)
    q = User.query
    if role:
        q = q.filter(User.role == role)
    if active is not None:
        q = q.filter(User.is_active.is_(active))
    return q.order_by(User.id).all()


def get_user(actor, user_id: int) -> User:
    _require_user_admin(actor)
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(resource="User", resource_id=user_id)
    return user


def create_user(actor, data: dict) -> User:
    """Create a system user.  ``role`` defaults to Developer."""
    _require_user_admin(actor)
    data = data or {}
    email = _normalized_email(data.get("email"))
    role = normalize_role(data.get("role") or "Developer")
    password = data.get("password")
    if not password or len(password) < 8:
        raise ValidationError("password must be at least 8 characters", details={"password": "too short"})
    _guard_role_grant(actor, role)

    if User.query.filter(db.func.lower(User.email) == email.lower()).first():
        raise ConflictError(f"User with email {email} already exists")

    user = User(
        email=email,
        password_hash=hash_password(password),
        first_name=data.get("first_name") or "",
        last_name=data.get("last_name") or "",
        role=role,
        is_active=bool(data.get("is_active", True)),
    )
    db.session.add(user)
    db.session.commit()

    write_audit(
        action="USER_CREATED",
        actor_id=actor.id,
        target_id=user.id,
        details={"email": user.email, "role": user.role},
    )
    db.session.commit()
    return user


def update_user(actor, user_id: int, data: dict) -> User:
    """Update profile fields, role, active flag or password."""
    user = get_user(actor, user_id)
    _guard_target(actor, user)
    data = data or {}

    if "role" in data:
        data = {**data, "role": normalize_role(data["role"])}
        if data["role"] != user.role:
            _guard_role_grant(actor, data["role"], target_id=user.id)
    if "email" in data:
        data = {**data, "email": _normalized_email(data["email"])}
        clash = User.query.filter(
            db.func.lower(User.email) == data["email"].lower(), User.id != user.id,
        ).first()
        if clash:
            raise ConflictError(f"User with email {data['email']} already exists")

    changes = {}
    for field in _EDITABLE_FIELDS:
        if field in data and getattr(user, field) != data[field]:
            changes[field] = {"old": getattr(user, field), "new": data[field]}
            setattr(user, field, data[field])
    if data.get("password"):
        user.password_hash = hash_password(data["password"])
        changes["password"] = "changed"

    if "role" in changes and user.participant is not None:
        user.participant.role = user.role
    db.session.commit()

    if changes:
        write_audit(action="USER_UPDATED", actor_id=actor.id, target_id=user.id, details={"changes": changes})
        db.session.commit()
    return user


def delete_user(actor, user_id: int) -> None:
    user = get_user(actor, user_id)
    if user.id == actor.id:
        raise ValidationError("You cannot delete your own account")
    _guard_target(actor, user)

    snapshot = {"email": user.email, "role": user.role}
    db.session.delete(user)
    db.session.commit()

    write_audit(action="USER_DELETED", actor_id=actor.id, target_id=user_id, details=snapshot)
    db.session.commit()


def assignable_roles(actor) -> list[str]:
    """Canonical roles *actor* may grant, highest first."""
    return [role for role in ROLE_HIERARCHY if guard_privilege_escalation(actor, role)]
