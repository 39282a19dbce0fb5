"""
pipelines/rooms.py

Static room catalog: the fixed sequence a patient walks through, who may
act in each room, and the status messages written to the history log.
"""

from __future__ import annotations

from datetime import date, time
from typing import Optional

from pydantic import BaseModel, ConfigDict

from pipelines.errors import NotFoundError
from pipelines.schemas import RoomId

ADMIN_ROLE_ID = "role_admin"
ADMIN_ROLE_NAME = "Administrateur(trice)"


class Room(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: RoomId
    name: str
    description: str = ""
    next_room_id: Optional[RoomId] = None
    allowed_role_ids: frozenset[str] = frozenset()

    @property
    def is_terminal(self) -> bool:
        return self.next_room_id is None


ROOMS: tuple[Room, ...] = (
    Room(
        id=RoomId.REQUEST,
        name="Demande",
        description="Création et gestion des demandes d'examen initiales.",
        next_room_id=RoomId.APPOINTMENT,
        allowed_role_ids=frozenset({"role_admin", "role_reception"}),
    ),
    Room(
        id=RoomId.APPOINTMENT,
        name="Rendez-vous",
        description="Planification des rendez-vous pour les patients.",
        next_room_id=RoomId.CONSULTATION,
        allowed_role_ids=frozenset({"role_admin", "role_reception"}),
    ),
    Room(
        id=RoomId.CONSULTATION,
        name="Consultation",
        description="Consultation médicale pré-injection.",
        next_room_id=RoomId.INJECTION,
        allowed_role_ids=frozenset({"role_admin", "role_doctor"}),
    ),
    Room(
        id=RoomId.INJECTION,
        name="Injection",
        description="Salle d'injection du traceur radioactif.",
        next_room_id=RoomId.EXAMINATION,
        allowed_role_ids=frozenset({"role_admin", "role_technician"}),
    ),
    Room(
        id=RoomId.EXAMINATION,
        name="Examen",
        description="Réalisation de l'imagerie scintigraphique.",
        next_room_id=RoomId.REPORT,
        allowed_role_ids=frozenset({"role_admin", "role_technician"}),
    ),
    Room(
        id=RoomId.REPORT,
        name="Compte Rendu",
        description="Rédaction et validation des comptes rendus.",
        next_room_id=RoomId.RETRAIT_CR_SORTIE,
        allowed_role_ids=frozenset({"role_admin", "role_doctor"}),
    ),
    Room(
        id=RoomId.RETRAIT_CR_SORTIE,
        name="Retrait CR / Sortie",
        description="Remise du compte rendu et finalisation du dossier.",
        next_room_id=RoomId.ARCHIVE,
        allowed_role_ids=frozenset({"role_admin", "role_reception"}),
    ),
    Room(
        id=RoomId.ARCHIVE,
        name="Archive",
        description="Dossiers des patients terminés et archivés.",
        next_room_id=None,
        allowed_role_ids=frozenset({"role_admin"}),
    ),
)

_BY_ID: dict[RoomId, Room] = {r.id: r for r in ROOMS}

ROOM_ORDER: dict[RoomId, int] = {r.id: i for i, r in enumerate(ROOMS)}


def find_room(room_id: RoomId | str) -> Optional[Room]:
    try:
        return _BY_ID.get(RoomId(room_id))
    except ValueError:
        return None


def get_room(room_id: RoomId | str) -> Room:
    room = find_room(room_id)
    if room is None:
        raise NotFoundError("Room", str(getattr(room_id, "value", room_id)))
    return room


def next_room(room: Room) -> Optional[Room]:
    return _BY_ID.get(room.next_room_id) if room.next_room_id else None


# ---------------------------------------------------------------------------
# History messages
# ---------------------------------------------------------------------------


def _fmt(value) -> str:
    if value is None:
        return ""
    if isinstance(value, time):
        return value.strftime("%H:%M")
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def status_message(room_id: RoomId, form=None) -> str:
    """Completion message for *room_id*, filled from the submitted *form*."""
    get = (lambda name: getattr(form, name, None)) if form is not None else (lambda name: None)
    room_id = RoomId(room_id)

    if room_id == RoomId.REQUEST:
        return f"Demande complétée pour {get('requested_exam') or ''}."
    if room_id == RoomId.APPOINTMENT:
        return f"RDV planifié pour le {_fmt(get('date_rdv'))} à {_fmt(get('heure_rdv'))}."
    if room_id == RoomId.CONSULTATION:
        return "Consultation terminée."
    if room_id == RoomId.INJECTION:
        return "Injection enregistrée."
    if room_id == RoomId.EXAMINATION:
        return f"Examen saisi (Qualité: {get('qualite_images') or 'N/A'})."
    if room_id == RoomId.REPORT:
        return "Compte rendu rédigé."
    if room_id == RoomId.RETRAIT_CR_SORTIE:
        return (
            f"CR retiré par {get('retire_par') or 'inconnu'} le {_fmt(get('date_retrait'))} "
            f"à {_fmt(get('heure_retrait'))}. Dossier archivé."
        )
    return "Action complétée."


def entry_message(room: Room) -> str:
    return f"Entré dans {room.name}"


# ---------------------------------------------------------------------------
# Role-based visibility
# ---------------------------------------------------------------------------


def is_admin(role) -> bool:
    if role is None:
        return False
    return getattr(role, "id", None) == ADMIN_ROLE_ID or getattr(role, "name", None) == ADMIN_ROLE_NAME


def visible_rooms(user, role) -> list[Room]:
    """
    Rooms a user may work in: all of them for the administrator role,
    otherwise those whose ``allowed_role_ids`` contain the user's role.
    """
    if user is None:
        return []
    if is_admin(role):
        return list(ROOMS)
    return [r for r in ROOMS if user.role_id in r.allowed_role_ids]
