from datetime import date, time

import pytest

from pipelines.errors import NotFoundError
from pipelines.rooms import ROOMS, entry_message, find_room, get_room, next_room, status_message, visible_rooms
from pipelines.schemas import AppointmentForm, Role, RoomId, RetraitForm, User


def _user(role_id: str) -> User:
    return User(name="U", email="u@mn.com", password_hash="x:y", role_id=role_id)


def test_rooms_form_a_single_chain_ending_in_archive():
    ids = [r.id for r in ROOMS]
    assert ids[0] == RoomId.REQUEST
    assert ids[-1] == RoomId.ARCHIVE
    for room, following in zip(ROOMS, ROOMS[1:]):
        assert room.next_room_id == following.id
    assert ROOMS[-1].is_terminal
    assert next_room(ROOMS[-1]) is None


def test_generator_is_not_a_workflow_room():
    assert find_room(RoomId.GENERATOR) is None
    assert find_room("nope") is None
    with pytest.raises(NotFoundError):
        get_room(RoomId.GENERATOR)


def test_status_messages():
    appt = AppointmentForm(date_rdv=date(2024, 7, 1), heure_rdv=time(9, 30))
    assert status_message(RoomId.APPOINTMENT, appt) == "RDV planifié pour le 2024-07-01 à 09:30."
    assert status_message(RoomId.EXAMINATION) == "Examen saisi (Qualité: N/A)."
    retrait = RetraitForm(date_retrait=date(2024, 7, 2), heure_retrait=time(16, 0), retire_par="Le patient")
    assert status_message(RoomId.RETRAIT_CR_SORTIE, retrait) == (
        "CR retiré par Le patient le 2024-07-02 à 16:00. Dossier archivé."
    )
    assert status_message(RoomId.ARCHIVE) == "Action complétée."
    assert entry_message(get_room(RoomId.INJECTION)) == "Entré dans Injection"


def test_visible_rooms_by_role():
    admin_role = Role(id="role_admin", name="Administrateur(trice)")
    assert visible_rooms(_user("role_admin"), admin_role) == list(ROOMS)

    doctor = visible_rooms(_user("role_doctor"), Role(id="role_doctor", name="Médecin"))
    assert [r.id for r in doctor] == [RoomId.CONSULTATION, RoomId.REPORT]

    assert visible_rooms(None, None) == []


def test_admin_recognised_by_role_name():
    renamed = Role(id="role_custom", name="Administrateur(trice)")
    assert len(visible_rooms(_user("role_custom"), renamed)) == len(ROOMS)
