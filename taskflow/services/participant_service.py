"""
Participant Directory — actor identity → durable workflow participant.

References to "a user" reach the engine in three shapes:
  - an existing participant id (uuid string)
  - a virtual id ``virtual-<actorId>`` for an actor with no participant yet
  - a bare actor id (int or numeric string)

``parse_ref`` turns each of them into a ``ParticipantRef``; ``resolve``
is the only place a participant is ever materialized.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from taskflow.models import db
from taskflow.models.auth import User
from taskflow.models.workflow import Participant

logger = logging.getLogger(__name__)

VIRTUAL_PREFIX = "virtual-"


@dataclass(frozen=True)
class RealRef:
    participant_id: str


@dataclass(frozen=True)
class PendingRef:
    actor_id: int


def parse_ref(raw):
    """Classify a raw reference.  Returns RealRef, PendingRef or None."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return PendingRef(raw)
    value = str(raw).strip()
    if not value:
        return None
    if value.startswith(VIRTUAL_PREFIX):
        actor_part = value[len(VIRTUAL_PREFIX):]
        return PendingRef(int(actor_part)) if actor_part.isdigit() else None
    if value.isdigit():
        return PendingRef(int(value))
    return RealRef(value)


def virtual_id(actor_id) -> str:
    return f"{VIRTUAL_PREFIX}{actor_id}"


def participant_for_actor(actor):
    """Read-only lookup; never materializes."""
    if actor is None or actor.id is None:
        return None
    return Participant.query.filter_by(user_id=actor.id).first()


def get_or_create_for_actor(actor):
    """Return the actor's participant, creating it on first use.

    The unique constraint on ``user_id`` decides concurrent first uses:
    the losing insert is rolled back to its savepoint and the winner's
    row is returned.
    """
    existing = participant_for_actor(actor)
    if existing is not None:
        return existing
    try:
        with db.session.begin_nested():
            participant = Participant(user_id=actor.id, role=actor.role or "Developer")
            db.session.add(participant)
        logger.info(
            "Materialized participant %s for actor %s", participant.id, actor.id,
            extra={"actor_id": actor.id, "event_type": "participant.materialized"},
        )
        return participant
    except IntegrityError:
        return Participant.query.filter_by(user_id=actor.id).one()


def resolve(ref):
    """Resolve a reference to a participant id, materializing when pending.

    Accepts a ParticipantRef or any raw form understood by ``parse_ref``.
    Returns None when no matching participant or actor exists.
    """
    if not isinstance(ref, (RealRef, PendingRef)):
        ref = parse_ref(ref)
    if ref is None:
        return None

    if isinstance(ref, RealRef):
        participant = db.session.get(Participant, ref.participant_id)
        return participant.id if participant else None

    actor = db.session.get(User, ref.actor_id)
    if actor is None:
        logger.warning("Cannot resolve participant: actor %s does not exist", ref.actor_id)
        return None
    return get_or_create_for_actor(actor).id


def display_name(participant_id) -> str | None:
    """Human label for a participant: full name, else email, else the id."""
    if not participant_id:
        return None
    participant = db.session.get(Participant, participant_id)
    if participant is None:
        return str(participant_id)
    user = participant.user
    if user is None:
        return participant.id
    return user.full_name or user.email or participant.id
