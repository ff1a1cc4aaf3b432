"""Participant references: parsing, lazy materialization and display names."""

import pytest

from taskflow.models.workflow import Participant
from taskflow.services.participant_service import (
    PendingRef,
    RealRef,
    display_name,
    get_or_create_for_actor,
    parse_ref,
    participant_for_actor,
    resolve,
    virtual_id,
)


@pytest.mark.parametrize("raw,expected", [
    (None, None),
    ("", None),
    (True, None),
    (12, PendingRef(12)),
    ("12", PendingRef(12)),
    ("virtual-12", PendingRef(12)),
    ("virtual-abc", None),
    ("3f2b6c1e-0000-4000-8000-000000000000", RealRef("3f2b6c1e-0000-4000-8000-000000000000")),
])
def test_parse_ref(raw, expected):
    assert parse_ref(raw) == expected


def test_virtual_id_round_trip():
    assert parse_ref(virtual_id(42)) == PendingRef(42)


def test_lookup_never_materializes(make_user):
    user = make_user("solo@opsconsole.io")
    assert participant_for_actor(user) is None
    assert Participant.query.count() == 0


def test_get_or_create_is_idempotent(make_user):
    user = make_user("solo@opsconsole.io", "Tester")
    first = get_or_create_for_actor(user)
    second = get_or_create_for_actor(user)
    assert first.id == second.id
    assert first.role == "Tester"
    assert Participant.query.filter_by(user_id=user.id).count() == 1


def test_resolve_variants(developer, make_user):
    pid = developer.participant.id
    assert resolve(pid) == pid
    assert resolve(f"virtual-{developer.id}") == pid
    assert resolve("not-a-participant") is None
    assert resolve("virtual-31337") is None

    newcomer = make_user("new@opsconsole.io")
    materialized = resolve(str(newcomer.id))
    assert materialized == Participant.query.filter_by(user_id=newcomer.id).one().id


def test_display_name_fallbacks(developer, make_user, make_participant):
    assert display_name(developer.participant.id) == "Dana Dev"

    nameless = make_user("nameless@opsconsole.io")
    assert display_name(make_participant(nameless).id) == "nameless@opsconsole.io"

    orphan = make_participant()
    assert display_name(orphan.id) == orphan.id
    assert display_name("ghost") == "ghost"
    assert display_name(None) is None
