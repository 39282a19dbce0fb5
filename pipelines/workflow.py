"""
pipelines/workflow.py

Patient intake and room transitions.

- create_patient: intake, optionally with the exam request already filled in
- advance: the patient completed the form of the room they are waiting in
- move_patient: manual correction, jumps to any workflow room

All three mutate the patient in place and return it; persistence is the
caller's job (see pipelines/storage.py).
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Optional, Union

from pydantic import BaseModel

from pipelines.errors import InvalidTransitionError, ValidationError
from pipelines.periods import calculate_age, to_local_naive
from pipelines.rooms import Room, entry_message, get_room, status_message
from pipelines.schemas import (
    HistoryEntry,
    Patient,
    PatientStatus,
    ReferringEntity,
    RequestForm,
    RoomId,
    form_for_room,
    merge_forms,
    utcnow,
)

logger = logging.getLogger(__name__)

# Entries written in the same action are spaced by 1ms so sorting by
# timestamp keeps their order.
ORDERING_OFFSET = timedelta(milliseconds=1)

MANUAL_MOVE_MESSAGE = "Déplacé manuellement."

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PATIENT_ID_RE = re.compile(r"^PAT(\d+)$")

FormInput = Union[dict[str, Any], BaseModel, None]


# ---------------------------------------------------------------------------
# History helpers
# ---------------------------------------------------------------------------


def open_entry(patient: Patient, room_id: Optional[RoomId] = None) -> Optional[HistoryEntry]:
    """Most recent entry without an exit date (optionally for *room_id* only)."""
    for entry in reversed(patient.history):
        if entry.exit_date is None and (room_id is None or entry.room_id == room_id):
            return entry
    return None


def check_consistency(patient: Patient) -> list[str]:
    """
    Return the ways *patient* breaks the room/history invariant (empty when
    consistent): a waiting patient's most recent open entry is in their
    current room; a seen patient's latest entry is in their current room.
    """
    problems: list[str] = []
    if not patient.history:
        return ["history is empty"]

    if patient.status_in_room == PatientStatus.WAITING:
        entry = open_entry(patient)
        if entry is None:
            problems.append("waiting patient has no open history entry")
        elif entry.room_id != patient.current_room_id:
            problems.append(
                f"latest open entry is {entry.room_id.value}, current room is {patient.current_room_id.value}"
            )
    elif patient.history[-1].room_id != patient.current_room_id:
        problems.append(
            f"latest entry is {patient.history[-1].room_id.value}, current room is {patient.current_room_id.value}"
        )

    for e in patient.history:
        if e.exit_date is not None and e.exit_date < e.entry_date:
            problems.append(f"entry in {e.room_id.value} exits before it enters")
    return problems


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_patient_data(data: dict[str, Any], today: Optional[date] = None) -> None:
    errors: list[str] = []
    today = today or date.today()

    if not str(data.get("name") or "").strip():
        errors.append("Le nom du patient est requis.")

    dob = data.get("date_of_birth")
    if not dob:
        errors.append("La date de naissance est requise.")
    else:
        try:
            if to_local_naive(dob).date() > today:
                errors.append("La date de naissance ne peut pas être dans le futur.")
        except (TypeError, ValueError):
            errors.append("La date de naissance est invalide.")

    email = str(data.get("email") or "").strip()
    if email and not _EMAIL_RE.match(email):
        errors.append("L'adresse email est invalide.")

    if errors:
        raise ValidationError(errors)


def validate_request(form: RequestForm) -> None:
    if not (form.requested_exam or "").strip():
        raise ValidationError(["Veuillez sélectionner un examen."])


def validate_appointment(form) -> None:
    errors = []
    if form.date_rdv is None:
        errors.append("La date du rendez-vous est requise.")
    if form.heure_rdv is None:
        errors.append("L'heure du rendez-vous est requise.")
    if errors:
        raise ValidationError(errors)


def validate_retrait(form) -> None:
    errors = []
    if form.date_retrait is None:
        errors.append("La date de retrait est requise.")
    if form.heure_retrait is None:
        errors.append("L'heure de retrait est requise.")
    if not (form.retire_par or "").strip():
        errors.append("Le nom de la personne qui retire le compte rendu est requis.")
    if errors:
        raise ValidationError(errors)


_FORM_VALIDATORS = {
    RoomId.REQUEST: validate_request,
    RoomId.APPOINTMENT: validate_appointment,
    RoomId.RETRAIT_CR_SORTIE: validate_retrait,
}


def validate_form(room_id: RoomId, form: BaseModel) -> None:
    """Run the room-specific checks, if that room has any."""
    check = _FORM_VALIDATORS.get(RoomId(room_id))
    if check is not None:
        check(form)


# ---------------------------------------------------------------------------
# Intake
# ---------------------------------------------------------------------------


def next_patient_id(existing_ids: Iterable[str]) -> str:
    """``PAT`` + zero-padded number, one above the highest existing one."""
    highest = 0
    for pid in existing_ids:
        m = _PATIENT_ID_RE.match(pid or "")
        if m:
            highest = max(highest, int(m.group(1)))
    return f"PAT{highest + 1:03d}"


def _referring(value: Any) -> Optional[ReferringEntity]:
    if value is None or isinstance(value, ReferringEntity):
        return value
    if isinstance(value, dict) and any(value.values()):
        return ReferringEntity(**value)
    return None


def create_patient(
    data: dict[str, Any],
    request: FormInput = None,
    *,
    patient_id: str,
    now: Optional[datetime] = None,
) -> Patient:
    """
    Build a new patient from the intake form.

    With a request naming an exam, the REQUEST stay is recorded as already
    completed and the patient waits in APPOINTMENT. Without one, the patient
    waits in REQUEST.

    Raises:
        ValidationError: If the identity fields are incomplete.
    """
    validate_patient_data(data)
    now = now or utcnow()

    patient = Patient(
        id=patient_id,
        name=str(data["name"]).strip(),
        date_of_birth=to_local_naive(data["date_of_birth"]).date(),
        address=data.get("address") or "",
        phone=data.get("phone") or "",
        email=(data.get("email") or "").strip(),
        referring_entity=_referring(data.get("referring_entity")),
        creation_date=now,
        current_room_id=RoomId.REQUEST,
        status_in_room=PatientStatus.WAITING,
    )
    patient.age = calculate_age(patient.date_of_birth)

    req = form_for_room(RoomId.REQUEST, request) if request is not None else None
    if req is not None and (req.requested_exam or "").strip():
        appointment = get_room(RoomId.APPOINTMENT)
        patient.room_specific_data[RoomId.REQUEST] = req
        patient.history.append(
            HistoryEntry(
                room_id=RoomId.REQUEST,
                entry_date=now,
                exit_date=now,
                status_message="Patient et demande créés.",
            )
        )
        patient.history.append(
            HistoryEntry(
                room_id=RoomId.APPOINTMENT,
                entry_date=now + ORDERING_OFFSET,
                status_message=entry_message(appointment),
            )
        )
        patient.current_room_id = RoomId.APPOINTMENT
    else:
        patient.history.append(
            HistoryEntry(room_id=RoomId.REQUEST, entry_date=now, status_message="Patient créé.")
        )

    logger.info("Created patient %s in room %s", patient.id, patient.current_room_id.value)
    return patient


def update_identity(patient: Patient, data: dict[str, Any]) -> Patient:
    """Apply edited identity fields (name, birth date, contact) to *patient*."""
    merged = {
        "name": patient.name,
        "date_of_birth": patient.date_of_birth,
        "email": patient.email,
        **data,
    }
    validate_patient_data(merged)
    patient.name = str(merged["name"]).strip()
    patient.date_of_birth = to_local_naive(merged["date_of_birth"]).date()
    patient.address = merged.get("address", patient.address) or ""
    patient.phone = merged.get("phone", patient.phone) or ""
    patient.email = (merged.get("email") or "").strip()
    if "referring_entity" in data:
        patient.referring_entity = _referring(data["referring_entity"])
    patient.age = calculate_age(patient.date_of_birth)
    return patient


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


def advance(
    patient: Patient,
    room: Union[Room, RoomId, str],
    form: FormInput = None,
    now: Optional[datetime] = None,
) -> Patient:
    """
    Record that *patient* completed *room*'s form and move them on.

    1. merge *form* into ``room_specific_data[room]``
    2. close the last open history entry for the room
    3. append the completion entry (message from the room template)
    4. enter the next room 1ms later and wait there, or, for the terminal
       room, mark the patient SEEN where they are

    Raises:
        InvalidTransitionError: If the patient is not waiting in *room*.
        NotFoundError: If *room* is not a workflow room.
    """
    if not isinstance(room, Room):
        room = get_room(room)

    if patient.current_room_id != room.id:
        raise InvalidTransitionError(
            f"Le patient {patient.id} n'est pas dans la salle {room.name}.",
            {"patient_id": patient.id, "current_room": patient.current_room_id.value, "room": room.id.value},
        )
    if patient.status_in_room != PatientStatus.WAITING:
        raise InvalidTransitionError(
            f"Le patient {patient.id} a déjà été vu dans la salle {room.name}.",
            {"patient_id": patient.id, "room": room.id.value},
        )

    now = now or utcnow()
    incoming = form_for_room(room.id, form)
    merged = merge_forms(patient.room_specific_data.get(room.id), incoming)
    patient.room_specific_data[room.id] = merged

    current = open_entry(patient, room.id)
    if current is not None:
        current.close(now)
    else:
        logger.warning("Patient %s had no open entry in %s", patient.id, room.id.value)

    patient.history.append(
        HistoryEntry(room_id=room.id, entry_date=now, status_message=status_message(room.id, merged))
    )

    if room.next_room_id is not None:
        nxt = get_room(room.next_room_id)
        patient.history.append(
            HistoryEntry(
                room_id=nxt.id,
                entry_date=now + ORDERING_OFFSET,
                status_message=entry_message(nxt),
            )
        )
        patient.current_room_id = nxt.id
        patient.status_in_room = PatientStatus.WAITING
        logger.info("Patient %s advanced %s -> %s", patient.id, room.id.value, nxt.id.value)
    else:
        patient.status_in_room = PatientStatus.SEEN
        logger.info("Patient %s completed terminal room %s", patient.id, room.id.value)

    return patient


def move_patient(
    patient: Patient,
    target_room_id: Union[RoomId, str],
    now: Optional[datetime] = None,
) -> Patient:
    """
    Manually move *patient* to any workflow room, ignoring the configured
    next-room graph.

    Raises:
        NotFoundError: If *target_room_id* is not a workflow room.
    """
    target = get_room(target_room_id)
    now = now or utcnow()
    source = patient.current_room_id

    current = open_entry(patient, source)
    if current is not None:
        current.close(now)

    patient.history.append(
        HistoryEntry(room_id=source, entry_date=now, exit_date=now, status_message=MANUAL_MOVE_MESSAGE)
    )
    patient.history.append(
        HistoryEntry(room_id=target.id, entry_date=now + ORDERING_OFFSET, status_message=entry_message(target))
    )
    patient.current_room_id = target.id
    patient.status_in_room = PatientStatus.WAITING

    logger.info("Patient %s moved manually %s -> %s", patient.id, source.value, target.id.value)
    return patient
