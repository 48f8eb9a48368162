"""
tests/test_lifecycle.py
Reservation transition rules, independent of HTTP and the database.
"""

import pytest

from services.reservation.lifecycle import Actor, check_transition, parse_status
from shared.models.models import ReservationStatus as S
from shared.utils.errors import Forbidden, InvalidState


@pytest.mark.parametrize("current, target, actor", [
    (S.PENDING, S.CANCELLED, Actor.BOOKER),
    (S.CONFIRMED, S.CANCELLED, Actor.BOOKER),
    (S.PENDING, S.CONFIRMED, Actor.ARTIST),
    (S.PENDING, S.COMPLETED, Actor.ARTIST),
    (S.CONFIRMED, S.COMPLETED, Actor.ARTIST),
    (S.CONFIRMED, S.CANCELLED, Actor.ARTIST),
    (S.PENDING, S.CONFIRMED, Actor.SYSTEM),
])
def test_allowed_transitions(current, target, actor):
    check_transition(current, target, actor)


@pytest.mark.parametrize("target", [S.PENDING, S.CONFIRMED, S.COMPLETED])
def test_booker_may_only_cancel(target):
    with pytest.raises(Forbidden):
        check_transition(S.PENDING, target, Actor.BOOKER)


def test_artist_cannot_reopen():
    with pytest.raises(Forbidden):
        check_transition(S.CONFIRMED, S.PENDING, Actor.ARTIST)


@pytest.mark.parametrize("terminal", [S.COMPLETED, S.CANCELLED])
@pytest.mark.parametrize("target", [S.CONFIRMED, S.COMPLETED, S.CANCELLED])
def test_terminal_states_are_final(terminal, target):
    with pytest.raises(InvalidState):
        check_transition(terminal, target, Actor.ARTIST)


def test_same_state_rejected():
    with pytest.raises(InvalidState):
        check_transition(S.CONFIRMED, S.CONFIRMED, Actor.ARTIST)


def test_system_confirms_only_pending():
    with pytest.raises(InvalidState):
        check_transition(S.CONFIRMED, S.CONFIRMED, Actor.SYSTEM)
    with pytest.raises(Forbidden):
        check_transition(S.PENDING, S.CANCELLED, Actor.SYSTEM)


def test_parse_status():
    assert parse_status("completed") == S.COMPLETED
    with pytest.raises(InvalidState):
        parse_status("archived")
