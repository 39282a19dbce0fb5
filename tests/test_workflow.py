from datetime import date, time, timedelta

import pytest

from pipelines.errors import InvalidTransitionError, NotFoundError, ValidationError
from pipelines.rooms import get_room
from pipelines.schemas import AppointmentForm, HistoryEntry, Patient, PatientStatus, RequestForm, RoomId
from pipelines.workflow import (
    MANUAL_MOVE_MESSAGE,
    ORDERING_OFFSET,
    advance,
    check_consistency,
    create_patient,
    move_patient,
    next_patient_id,
    open_entry,
    validate_form,
    validate_patient_data,
)

IDENTITY = {"name": "Jean Dupont", "date_of_birth": "1965-08-15"}
APPOINTMENT = {"date_rdv": date(2024, 7, 1), "heure_rdv": time(9, 0)}


@pytest.fixture
def patient(noon) -> Patient:
    return create_patient(IDENTITY, {"requested_exam": "Scintigraphie Osseuse"}, patient_id="PAT001", now=noon)


def test_intake_with_request_waits_in_appointment(patient, noon):
    assert patient.current_room_id == RoomId.APPOINTMENT
    assert patient.status_in_room == PatientStatus.WAITING
    first, second = patient.history
    assert (first.room_id, first.entry_date, first.exit_date) == (RoomId.REQUEST, noon, noon)
    assert first.status_message == "Patient et demande créés."
    assert second.room_id == RoomId.APPOINTMENT
    assert second.entry_date == noon + ORDERING_OFFSET
    assert second.exit_date is None
    assert second.status_message == "Entré dans Rendez-vous"
    assert patient.requested_exam == "Scintigraphie Osseuse"
    assert patient.age is not None
    assert check_consistency(patient) == []


def test_intake_without_request_waits_in_request(noon):
    p = create_patient(IDENTITY, patient_id="PAT002", now=noon)
    assert p.current_room_id == RoomId.REQUEST
    assert len(p.history) == 1
    assert p.history[0].is_open
    assert p.history[0].status_message == "Patient créé."


def test_intake_with_blank_exam_is_treated_as_no_request(noon):
    p = create_patient(IDENTITY, RequestForm(requested_exam=""), patient_id="PAT003", now=noon)
    assert p.current_room_id == RoomId.REQUEST


def test_advance_moves_to_next_room(patient, noon):
    later = noon + timedelta(minutes=20)
    advance(patient, RoomId.APPOINTMENT, APPOINTMENT, now=later)

    assert patient.current_room_id == RoomId.CONSULTATION
    assert patient.status_in_room == PatientStatus.WAITING
    waited, done, entered = patient.history[1:]
    assert waited.exit_date == later
    assert done.room_id == RoomId.APPOINTMENT
    assert done.status_message == "RDV planifié pour le 2024-07-01 à 09:00."
    assert entered.room_id == RoomId.CONSULTATION
    assert entered.entry_date == later + ORDERING_OFFSET
    assert patient.room_specific_data[RoomId.APPOINTMENT].heure_rdv == time(9, 0)
    assert check_consistency(patient) == []


def test_advance_merges_with_previous_room_data(patient, noon):
    patient.room_specific_data[RoomId.APPOINTMENT] = AppointmentForm(consignes_specifiques="Venir à jeun.")
    advance(patient, RoomId.APPOINTMENT, APPOINTMENT, now=noon + timedelta(minutes=5))
    saved = patient.room_specific_data[RoomId.APPOINTMENT]
    assert saved.consignes_specifiques == "Venir à jeun."
    assert saved.date_rdv == date(2024, 7, 1)


def test_advance_refuses_a_patient_in_another_room(patient):
    with pytest.raises(InvalidTransitionError):
        advance(patient, RoomId.INJECTION, {})


def test_terminal_room_marks_patient_seen_once(noon):
    p = create_patient(IDENTITY, {"requested_exam": "X"}, patient_id="PAT004", now=noon)
    move_patient(p, RoomId.ARCHIVE, now=noon + timedelta(minutes=1))
    before = len(p.history)
    advance(p, RoomId.ARCHIVE, {"notes": "ok"}, now=noon + timedelta(minutes=2))

    assert len(p.history) == before + 1
    assert p.current_room_id == RoomId.ARCHIVE
    assert p.status_in_room == PatientStatus.SEEN
    assert p.history[-1].room_id == RoomId.ARCHIVE
    assert p.history[-1].exit_date is None
    assert check_consistency(p) == []

    with pytest.raises(InvalidTransitionError):
        advance(p, RoomId.ARCHIVE, {}, now=noon + timedelta(minutes=3))


def test_terminal_room_adds_exactly_one_entry(noon):
    p = create_patient(IDENTITY, {"requested_exam": "X"}, patient_id="PAT005", now=noon)
    move_patient(p, RoomId.REPORT, now=noon + timedelta(minutes=1))
    last_room = get_room(RoomId.REPORT).model_copy(update={"next_room_id": None})
    before = len(p.history)

    advance(p, last_room, {"texte_compte_rendu": "RAS"}, now=noon + timedelta(minutes=2))

    assert len(p.history) == before + 1
    assert p.current_room_id == RoomId.REPORT
    assert p.status_in_room == PatientStatus.SEEN
    assert p.history[-1].room_id == RoomId.REPORT
    assert p.history[-1].status_message == "Compte rendu rédigé."
    assert p.history[-2].exit_date == noon + timedelta(minutes=2)


def test_manual_move_ignores_the_graph(patient, noon):
    later = noon + timedelta(minutes=10)
    move_patient(patient, RoomId.REPORT, now=later)

    marker, entered = patient.history[-2:]
    assert patient.history[1].exit_date == later
    assert marker.room_id == RoomId.APPOINTMENT
    assert marker.entry_date == marker.exit_date == later
    assert marker.status_message == MANUAL_MOVE_MESSAGE
    assert entered.room_id == RoomId.REPORT
    assert entered.entry_date == later + ORDERING_OFFSET
    assert patient.current_room_id == RoomId.REPORT
    assert patient.status_in_room == PatientStatus.WAITING
    assert check_consistency(patient) == []


def test_manual_move_to_generator_is_rejected(patient):
    with pytest.raises(NotFoundError):
        move_patient(patient, RoomId.GENERATOR)


def test_history_entry_closes_once(noon):
    entry = HistoryEntry(room_id=RoomId.REQUEST, entry_date=noon)
    entry.close(noon)
    with pytest.raises(ValueError):
        entry.close(noon)


def test_history_entry_rejects_exit_before_entry(noon):
    with pytest.raises(ValueError):
        HistoryEntry(room_id=RoomId.REQUEST, entry_date=noon, exit_date=noon - timedelta(seconds=1))


def test_open_entry(patient):
    assert open_entry(patient).room_id == RoomId.APPOINTMENT
    assert open_entry(patient, RoomId.REQUEST) is None


def test_validate_patient_data_collects_every_message():
    with pytest.raises(ValidationError) as exc:
        validate_patient_data({"name": " ", "date_of_birth": date.today() + timedelta(days=1), "email": "nope"})
    assert len(exc.value.messages) == 3


def test_validate_form_per_room():
    with pytest.raises(ValidationError) as exc:
        validate_form(RoomId.APPOINTMENT, AppointmentForm())
    assert len(exc.value.messages) == 2
    with pytest.raises(ValidationError):
        validate_form(RoomId.REQUEST, RequestForm())
    validate_form(RoomId.CONSULTATION, object())


def test_next_patient_id():
    assert next_patient_id([]) == "PAT001"
    assert next_patient_id(["PAT001", "PAT009", "other"]) == "PAT010"
    assert next_patient_id(["PAT999"]) == "PAT1000"


def test_round_trip_preserves_room_data(patient, noon):
    advance(patient, RoomId.APPOINTMENT, APPOINTMENT, now=noon + timedelta(minutes=1))
    again = Patient.model_validate(patient.model_dump(mode="json"))
    assert again == patient
