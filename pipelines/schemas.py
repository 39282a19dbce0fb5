"""
pipelines/schemas.py

Pydantic models for the department's persisted objects:
- Patients, their room history and per-room form data
- Users / roles / permissions
- Exam configurations and report templates
- Hot-lab products, tracer lots and preparations
- Patrimony: assets, stock items, life sheets

Room form data is a tagged union keyed by room id: every variant carries a
literal ``room`` discriminator so a persisted dict validates back into the
right model.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:10]}"


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _as_aware(value: datetime) -> datetime:
    # Stored timestamps are always timezone-aware; naive input is read as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class RoomId(str, Enum):
    REQUEST = "DEMANDE"
    APPOINTMENT = "RENDEZVOUS"
    CONSULTATION = "CONSULTATION"
    GENERATOR = "GENERATEUR"  # hot lab entry point, not a workflow room
    INJECTION = "INJECTION"
    EXAMINATION = "EXAMEN"
    REPORT = "COMPTE_RENDU"
    RETRAIT_CR_SORTIE = "RETRAIT_CR_SORTIE"
    ARCHIVE = "ARCHIVE"


class PatientStatus(str, Enum):
    WAITING = "WAITING"
    SEEN = "SEEN"


class Permission(str, Enum):
    VIEW_PATIENTS = "view_patients"
    EDIT_PATIENTS = "edit_patients"
    CREATE_PATIENTS = "create_patients"
    MOVE_PATIENTS = "move_patients"
    MANAGE_APPOINTMENTS = "manage_appointments"
    MANAGE_USERS = "manage_users"
    MANAGE_ROLES = "manage_roles"
    VIEW_HOT_LAB = "view_hot_lab"
    EDIT_HOT_LAB = "edit_hot_lab"
    VIEW_STATISTICS = "view_statistics"


class MovementType(str, Enum):
    ENTRY = "Entrée"
    EXIT = "Sortie"
    CONSUMPTION = "Consommation"
    INVENTORY = "Inventaire"


ActivityUnit = Literal["MBq", "GBq", "mCi", "Ci"]
FieldType = Literal["text", "textarea", "select", "checkbox"]
AssetAction = Literal["En service", "En réparation", "Réformé"]


# ---------------------------------------------------------------------------
# Patient history
# ---------------------------------------------------------------------------


class HistoryEntry(BaseModel):
    """One stay of a patient in a room. Closed once ``exit_date`` is set."""

    room_id: RoomId
    entry_date: datetime
    exit_date: Optional[datetime] = None
    status_message: str = ""

    @field_validator("entry_date", "exit_date")
    @classmethod
    def _aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_aware(v) if v is not None else None

    @model_validator(mode="after")
    def _exit_not_before_entry(self) -> "HistoryEntry":
        if self.exit_date is not None and self.exit_date < self.entry_date:
            raise ValueError("exit_date must not precede entry_date")
        return self

    @property
    def is_open(self) -> bool:
        return self.exit_date is None

    def close(self, when: datetime) -> None:
        if self.exit_date is not None:
            raise ValueError(f"History entry for {self.room_id.value} is already closed")
        when = _as_aware(when)
        # the +1ms ordering offset can put "now" a hair before entry_date
        self.exit_date = max(when, self.entry_date)


# ---------------------------------------------------------------------------
# Per-room form data (tagged union)
# ---------------------------------------------------------------------------


class RequestForm(BaseModel):
    room: Literal["DEMANDE"] = "DEMANDE"
    requested_exam: str = ""
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class AppointmentForm(BaseModel):
    room: Literal["RENDEZVOUS"] = "RENDEZVOUS"
    date_rdv: Optional[date] = None
    heure_rdv: Optional[time] = None
    consignes_specifiques: str = ""


class ConsultationForm(BaseModel):
    room: Literal["CONSULTATION"] = "CONSULTATION"
    notes: str = ""
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class InjectionForm(BaseModel):
    room: Literal["INJECTION"] = "INJECTION"
    produit_injecte: str = ""
    heure_injection: Optional[time] = None
    injected_activity: Optional[float] = None
    activity_unit: ActivityUnit = "MBq"
    volume_injected: Optional[float] = None
    technician: str = ""
    injection_point: str = ""
    injection_notes: str = ""
    tracer_lot_id: Optional[str] = None


class ExaminationForm(BaseModel):
    room: Literal["EXAMEN"] = "EXAMEN"
    qualite_images: str = ""
    parametres_examen: str = ""
    commentaires_technicien: str = ""


class ReportForm(BaseModel):
    room: Literal["COMPTE_RENDU"] = "COMPTE_RENDU"
    texte_compte_rendu: str = ""
    conclusion_cr: str = ""
    template_id: Optional[str] = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class RetraitForm(BaseModel):
    room: Literal["RETRAIT_CR_SORTIE"] = "RETRAIT_CR_SORTIE"
    date_retrait: Optional[date] = None
    heure_retrait: Optional[time] = None
    retire_par: str = ""
    commentaires_sortie: str = ""


class ArchiveForm(BaseModel):
    room: Literal["ARCHIVE"] = "ARCHIVE"
    notes: str = ""


RoomForm = Annotated[
    Union[
        RequestForm,
        AppointmentForm,
        ConsultationForm,
        InjectionForm,
        ExaminationForm,
        ReportForm,
        RetraitForm,
        ArchiveForm,
    ],
    Field(discriminator="room"),
]

FORM_MODELS: dict[RoomId, type[BaseModel]] = {
    RoomId.REQUEST: RequestForm,
    RoomId.APPOINTMENT: AppointmentForm,
    RoomId.CONSULTATION: ConsultationForm,
    RoomId.INJECTION: InjectionForm,
    RoomId.EXAMINATION: ExaminationForm,
    RoomId.REPORT: ReportForm,
    RoomId.RETRAIT_CR_SORTIE: RetraitForm,
    RoomId.ARCHIVE: ArchiveForm,
}


def form_for_room(room_id: RoomId, data: Union[dict[str, Any], BaseModel, None] = None) -> BaseModel:
    """
    Build the form variant for *room_id* from a plain dict (or pass a
    matching model through).

    Raises:
        KeyError: If *room_id* has no form (the hot-lab pseudo-room).
        TypeError: If a model for another room is given.
    """
    model = FORM_MODELS[RoomId(room_id)]
    if isinstance(data, BaseModel):
        if not isinstance(data, model):
            raise TypeError(f"{type(data).__name__} is not a form for room {RoomId(room_id).value}")
        return data
    payload = {k: v for k, v in (data or {}).items() if k != "room"}
    return model.model_validate(payload)


def merge_forms(existing: Optional[BaseModel], incoming: BaseModel) -> BaseModel:
    """Overlay the fields explicitly set on *incoming* onto *existing*."""
    if existing is None or type(existing) is not type(incoming):
        return incoming
    update = {k: getattr(incoming, k) for k in incoming.model_fields_set if k != "room"}
    return existing.model_copy(update=update)


# ---------------------------------------------------------------------------
# Patient
# ---------------------------------------------------------------------------


class ReferringEntity(BaseModel):
    type: Literal["service", "center", "doctor"] = "doctor"
    name: str = ""
    contact_number: str = ""
    contact_email: str = ""


class PatientDocument(BaseModel):
    id: str = Field(default_factory=lambda: _new_id("doc"))
    name: str
    file_type: str
    upload_date: datetime = Field(default_factory=utcnow)
    data_url: str


class Patient(BaseModel):
    id: str
    name: str
    date_of_birth: date
    age: Optional[int] = None
    address: str = ""
    phone: str = ""
    email: str = ""
    referring_entity: Optional[ReferringEntity] = None
    documents: list[PatientDocument] = Field(default_factory=list)

    creation_date: datetime = Field(default_factory=utcnow)
    current_room_id: RoomId = RoomId.REQUEST
    status_in_room: PatientStatus = PatientStatus.WAITING
    history: list[HistoryEntry] = Field(default_factory=list)
    room_specific_data: dict[RoomId, RoomForm] = Field(default_factory=dict)

    @field_validator("creation_date")
    @classmethod
    def _aware_creation(cls, v: datetime) -> datetime:
        return _as_aware(v)

    def room_data(self, room_id: RoomId) -> Optional[BaseModel]:
        return self.room_specific_data.get(RoomId(room_id))

    @property
    def requested_exam(self) -> str:
        req = self.room_specific_data.get(RoomId.REQUEST)
        return getattr(req, "requested_exam", "") if req is not None else ""


# ---------------------------------------------------------------------------
# Users / roles
# ---------------------------------------------------------------------------


class Role(BaseModel):
    id: str = Field(default_factory=lambda: _new_id("role"))
    name: str
    permissions: list[Permission] = Field(default_factory=list)


class User(BaseModel):
    id: str = Field(default_factory=lambda: _new_id("user"))
    name: str
    email: str
    password_hash: str  # "<hex_salt>:<hex_hash>"
    role_id: str


class AuditEntry(BaseModel):
    timestamp: datetime = Field(default_factory=utcnow)
    actor: str = "system"
    action: str
    target: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Exam configuration / report templates
# ---------------------------------------------------------------------------


class ConfigurableField(BaseModel):
    id: str
    label: str
    type: FieldType = "text"
    options: list[str] = Field(default_factory=list)


class ExamFields(BaseModel):
    request: list[ConfigurableField] = Field(default_factory=list)
    consultation: list[ConfigurableField] = Field(default_factory=list)
    report: list[ConfigurableField] = Field(default_factory=list)


class ExamConfiguration(BaseModel):
    id: str = Field(default_factory=lambda: _new_id("exam"))
    name: str
    form_fields: ExamFields = Field(default_factory=ExamFields)


class ReportTemplate(BaseModel):
    id: str = Field(default_factory=lambda: _new_id("template"))
    name: str
    exam_name: str
    report_content: str = ""
    conclusion_content: str = ""


# ---------------------------------------------------------------------------
# Hot lab
# ---------------------------------------------------------------------------


class RadiopharmaceuticalProduct(BaseModel):
    id: str
    name: str
    isotope: str
    unit: ActivityUnit = "MBq"


class TracerLot(BaseModel):
    id: str = Field(default_factory=lambda: _new_id("lot"))
    product_id: str
    lot_number: str
    expiry_date: date
    calibration_date_time: Optional[datetime] = None
    initial_activity: Optional[float] = None
    unit: ActivityUnit = "MBq"
    received_date: date = Field(default_factory=date.today)
    quantity_received: float = 1
    notes: str = ""


class PreparationLog(BaseModel):
    id: str = Field(default_factory=lambda: _new_id("prep"))
    tracer_lot_id: str
    activity_prepared: float
    unit: ActivityUnit = "MBq"
    preparation_date_time: datetime = Field(default_factory=utcnow)
    prepared_by: str
    patient_id: Optional[str] = None
    exam_type: Optional[str] = None
    notes: str = ""

    @field_validator("preparation_date_time")
    @classmethod
    def _aware_prep(cls, v: datetime) -> datetime:
        return _as_aware(v)


# ---------------------------------------------------------------------------
# Patrimony
# ---------------------------------------------------------------------------


class Asset(BaseModel):
    id: str = Field(default_factory=lambda: _new_id("asset"))
    family: str
    designation: str
    brand: str = ""
    model: str = ""
    serial_number: str = ""
    quantity: int = 1
    acquisition_year: Optional[int] = None
    acquisition_cost: float = 0.0
    is_functional: bool = True
    current_action: AssetAction = "En service"
    funding_source: str = ""
    supplier: str = ""


class StockMovement(BaseModel):
    id: str = Field(default_factory=lambda: _new_id("mvt"))
    date: datetime = Field(default_factory=utcnow)
    type: MovementType
    quantity: float
    unit_price: float = 0.0
    document_ref: str = ""
    destination_or_source: str = ""
    ordonnateur: str = ""

    @field_validator("date")
    @classmethod
    def _aware_date(cls, v: datetime) -> datetime:
        return _as_aware(v)


class StockItem(BaseModel):
    id: str = Field(default_factory=lambda: _new_id("stock"))
    designation: str
    unit: str = "pièce"
    budget_line: str = ""
    current_stock: float = 0.0
    unit_price: float = 0.0
    movements: list[StockMovement] = Field(default_factory=list)


class LifeSheetLotMovement(BaseModel):
    id: str = Field(default_factory=lambda: _new_id("lsm"))
    movement_date: date
    nature: str
    entry_units: float = 0
    entry_amount: float = 0
    entry_destination: str = ""
    exit_units: float = 0
    exit_amount: float = 0
    exit_destination: str = ""


class LifeSheetLot(BaseModel):
    id: str  # matches the asset id
    designation: str
    identification_code: str = ""
    lot_value: float = 0
    unit_value: float = 0
    movements: list[LifeSheetLotMovement] = Field(default_factory=list)


class LifeSheetUnitMovement(BaseModel):
    id: str = Field(default_factory=lambda: _new_id("lsm"))
    movement_date: date
    nature: str
    entry_amount: float = 0
    entry_state: Optional[Literal["Bon", "Moyen", "Mauvais"]] = None
    entry_destination: str = ""
    exit_amount: float = 0
    exit_state: Optional[Literal["Vendu", "Réformé", "Transféré"]] = None
    exit_destination: str = ""


class LifeSheetUnit(BaseModel):
    id: str  # matches the asset id
    designation: str
    identification_code: str = ""
    movements: list[LifeSheetUnitMovement] = Field(default_factory=list)
