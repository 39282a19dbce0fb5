"""
pipelines/storage.py

Collection storage for the department's data.

- One ``Collection`` per entity (users, roles, patients, ...), loaded once
  at start-up and rewritten in full on every change (write-through)
- Seed data is used whenever a collection's key is absent
- JSON files under ``data/`` by default (atomic writes), SQLite with
  ``MN_BACKEND=sqlite`` (see storage/db.py)
- ``Database`` wraps the collections with the workflow operations the
  pages call, and appends every mutation to the audit log

Single-process demo storage: last writer wins, no locking.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Generic, Iterable, Iterator, Optional, Protocol, TypeVar, Union

from pydantic import BaseModel

from pipelines import hot_lab, patrimony, seed
from pipelines.config import Settings, get_settings
from pipelines.documents import attach_document, remove_document
from pipelines.errors import NotFoundError, ReferentialIntegrityError, ValidationError
from pipelines.rooms import get_room
from pipelines.schemas import (
    Asset,
    AuditEntry,
    ExamConfiguration,
    LifeSheetLot,
    LifeSheetLotMovement,
    LifeSheetUnit,
    LifeSheetUnitMovement,
    MovementType,
    Patient,
    PatientDocument,
    Permission,
    PreparationLog,
    ReportTemplate,
    Role,
    RoomId,
    StockItem,
    StockMovement,
    TracerLot,
    User,
    form_for_room,
    utcnow,
)
from pipelines.workflow import (
    FormInput,
    advance,
    create_patient,
    move_patient,
    next_patient_id,
    update_identity,
    validate_form,
)
from storage.accounts import require_permission
from storage.crypto import decrypt_json, encrypt_json, is_token
from storage.db import SqliteBackend

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def _atomic_write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False, default=str), encoding="utf-8")
    tmp.replace(path)


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class KeyValueBackend(Protocol):
    def read(self, key: str) -> Optional[Any]: ...

    def write(self, key: str, value: Any) -> None: ...

    def append_audit(self, entry: AuditEntry) -> None: ...

    def read_audit(self, limit: Optional[int] = None) -> list[AuditEntry]: ...


class JsonFileBackend:
    """One ``<key>.json`` file per key; the audit log is ``audit_log.jsonl``."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.audit_path = self.directory / "audit_log.jsonl"

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def read(self, key: str) -> Optional[Any]:
        path = self._path(key)
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    def write(self, key: str, value: Any) -> None:
        _atomic_write_json(self._path(key), value)

    def append_audit(self, entry: AuditEntry) -> None:
        with self.audit_path.open("a", encoding="utf-8") as fh:
            fh.write(entry.model_dump_json() + "\n")

    def read_audit(self, limit: Optional[int] = None) -> list[AuditEntry]:
        """Most recent entries first."""
        if not self.audit_path.exists():
            return []
        lines = [ln for ln in self.audit_path.read_text(encoding="utf-8").splitlines() if ln.strip()]
        lines.reverse()
        if limit is not None:
            lines = lines[:limit]
        return [AuditEntry.model_validate_json(ln) for ln in lines]


def make_backend(settings: Settings) -> KeyValueBackend:
    if settings.backend == "sqlite":
        return SqliteBackend(settings.sqlite_path)
    return JsonFileBackend(settings.data_dir)


# ---------------------------------------------------------------------------
# Collections
# ---------------------------------------------------------------------------


class Collection(Generic[M]):
    """
    In-memory list of models mirrored to one backend key.

    The key is read once on construction. When it is absent the collection
    starts from *seed* and is written straight away. Every mutation
    rewrites the whole list.
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        key: str,
        model: type[M],
        seed: Optional[Callable[[], Iterable[M]]] = None,
        *,
        kind: Optional[str] = None,
        encrypted: bool = False,
    ):
        self.backend = backend
        self.key = key
        self.model = model
        self.kind = kind or model.__name__
        self.encrypted = encrypted
        self._items: list[M] = []
        self._load(seed)

    def _load(self, seed: Optional[Callable[[], Iterable[M]]]) -> None:
        raw = self.backend.read(self.key)
        if raw is None:
            self._items = list(seed()) if seed is not None else []
            logger.info("Seeded %s with %d item(s)", self.key, len(self._items))
            self._flush()
            return
        if is_token(raw):
            raw = decrypt_json(raw)
        self._items = [self.model.model_validate(r) for r in raw]
        logger.debug("Loaded %d item(s) from %s", len(self._items), self.key)
        if self.encrypted and not is_token(self.backend.read(self.key)):
            # plaintext written before encryption was switched on
            self._flush()

    def _flush(self) -> None:
        payload = [item.model_dump(mode="json") for item in self._items]
        self.backend.write(self.key, encrypt_json(payload) if self.encrypted else payload)

    # -- reads ---------------------------------------------------------------

    def all(self) -> list[M]:
        return list(self._items)

    def find(self, item_id: str) -> Optional[M]:
        return next((i for i in self._items if getattr(i, "id", None) == item_id), None)

    def get(self, item_id: str) -> M:
        item = self.find(item_id)
        if item is None:
            raise NotFoundError(self.kind, item_id)
        return item

    def ids(self) -> list[str]:
        return [getattr(i, "id") for i in self._items]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[M]:
        return iter(list(self._items))

    def __contains__(self, item_id: object) -> bool:
        return any(getattr(i, "id", None) == item_id for i in self._items)

    # -- writes --------------------------------------------------------------

    def add(self, item: M) -> M:
        if getattr(item, "id") in self:
            raise ValueError(f"{self.kind} '{getattr(item, 'id')}' already exists")
        self._items.append(item)
        self._flush()
        return item

    def update(self, item: M) -> M:
        """Replace the stored item with the same id. Raises NotFoundError."""
        item_id = getattr(item, "id")
        for i, existing in enumerate(self._items):
            if getattr(existing, "id") == item_id:
                self._items[i] = item
                self._flush()
                return item
        raise NotFoundError(self.kind, item_id)

    def upsert(self, item: M) -> M:
        if getattr(item, "id") in self:
            return self.update(item)
        return self.add(item)

    def remove(self, item_id: str) -> M:
        item = self.get(item_id)
        self._items = [i for i in self._items if getattr(i, "id") != item_id]
        self._flush()
        return item


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

Actor = Optional[Union[User, str]]


def _actor_id(actor: Actor) -> str:
    if actor is None:
        return "system"
    return actor if isinstance(actor, str) else actor.id


class Database:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        backend: Optional[KeyValueBackend] = None,
        now: Optional[datetime] = None,
    ):
        self.settings = settings or get_settings()
        self.backend = backend or make_backend(self.settings)
        now = now or utcnow()
        demo = self.settings.seed_demo_data

        def key(name: str) -> str:
            return f"{self.settings.storage_prefix}{name}"

        self.roles: Collection[Role] = Collection(self.backend, key("roles"), Role, seed.initial_roles)
        self.users: Collection[User] = Collection(self.backend, key("users"), User, seed.initial_users)
        self.exam_configs: Collection[ExamConfiguration] = Collection(
            self.backend, key("exam_configs"), ExamConfiguration, seed.initial_exam_configs,
            kind="ExamConfiguration",
        )
        self.report_templates: Collection[ReportTemplate] = Collection(
            self.backend, key("report_templates"), ReportTemplate, seed.initial_report_templates
        )
        self.patients: Collection[Patient] = Collection(
            self.backend,
            key("patients"),
            Patient,
            (lambda: seed.demo_patients(now)) if demo else None,
            encrypted=self.settings.encrypt_patients,
        )
        self.lots: Collection[TracerLot] = Collection(
            self.backend, key("hot_lab_lots"), TracerLot, (lambda: seed.initial_lots(now)) if demo else None
        )
        self.preparations: Collection[PreparationLog] = Collection(
            self.backend,
            key("hot_lab_preparations"),
            PreparationLog,
            (lambda: seed.initial_preparations(now)) if demo else None,
        )
        self.assets: Collection[Asset] = Collection(
            self.backend, key("assets"), Asset, seed.initial_assets if demo else None
        )
        self.stock_items: Collection[StockItem] = Collection(
            self.backend, key("stock_items"), StockItem, seed.initial_stock_items if demo else None
        )
        self.life_sheet_lots: Collection[LifeSheetLot] = Collection(
            self.backend, key("life_sheet_lots"), LifeSheetLot, seed.initial_life_sheet_lots if demo else None
        )
        self.life_sheet_units: Collection[LifeSheetUnit] = Collection(
            self.backend, key("life_sheet_units"), LifeSheetUnit, seed.initial_life_sheet_units if demo else None
        )

        for item in self.stock_items:
            drift = patrimony.stock_drift(item)
            if drift:
                logger.warning("Stock item %s drifts from its ledger by %g", item.id, drift)

    # -----------------------------------------------------------------------
    # Audit / permissions
    # -----------------------------------------------------------------------

    def _authorize(self, actor: Actor, permission: Permission) -> None:
        # id strings and None are system callers
        if isinstance(actor, User):
            require_permission(self, actor, permission)

    def audit(self, action: str, target: Optional[str] = None, actor: Actor = None, **details: Any) -> None:
        self.backend.append_audit(
            AuditEntry(actor=_actor_id(actor), action=action, target=target, details=details)
        )

    def audit_log(self, limit: Optional[int] = 100) -> list[AuditEntry]:
        return self.backend.read_audit(limit)

    # -----------------------------------------------------------------------
    # Patients
    # -----------------------------------------------------------------------

    def create_patient(self, data: dict[str, Any], request: FormInput = None, *, actor: Actor = None) -> Patient:
        """
        Intake. A request naming an exam must name a configured one.

        Raises:
            ValidationError: Incomplete identity or unknown exam.
        """
        self._authorize(actor, Permission.CREATE_PATIENTS)
        req = form_for_room(RoomId.REQUEST, request) if request is not None else None
        if req is not None and req.requested_exam and self.exam_config_by_name(req.requested_exam) is None:
            raise ValidationError([f"Examen inconnu : {req.requested_exam}."])

        patient = create_patient(data, req, patient_id=next_patient_id(self.patients.ids()))
        self.patients.add(patient)
        self.audit("patient_created", target=patient.id, actor=actor, room=patient.current_room_id.value)
        return patient

    def complete_room(
        self, patient_id: str, room_id: RoomId, form: FormInput = None, *, actor: Actor = None
    ) -> Patient:
        """
        Validate *form* for *room_id* and advance the patient.

        Raises:
            NotFoundError: Unknown patient or room.
            ValidationError: The form is incomplete.
            InvalidTransitionError: The patient is not waiting in *room_id*.
        """
        room = get_room(room_id)
        patient = self.patients.get(patient_id).model_copy(deep=True)
        model = form_for_room(room.id, form)
        validate_form(room.id, model)
        advance(patient, room, model)
        self.patients.update(patient)
        self.audit("patient_advanced", target=patient.id, actor=actor, room=RoomId(room_id).value,
                   next_room=patient.current_room_id.value)
        return patient

    def move_patient(self, patient_id: str, target_room_id: RoomId, *, actor: Actor = None) -> Patient:
        self._authorize(actor, Permission.MOVE_PATIENTS)
        patient = self.patients.get(patient_id).model_copy(deep=True)
        source = patient.current_room_id
        move_patient(patient, target_room_id)
        self.patients.update(patient)
        self.audit("patient_moved", target=patient.id, actor=actor, source=source.value,
                   destination=patient.current_room_id.value)
        return patient

    def update_patient_identity(self, patient_id: str, data: dict[str, Any], *, actor: Actor = None) -> Patient:
        self._authorize(actor, Permission.EDIT_PATIENTS)
        patient = self.patients.get(patient_id).model_copy(deep=True)
        update_identity(patient, data)
        self.patients.update(patient)
        self.audit("patient_updated", target=patient.id, actor=actor, fields=sorted(data))
        return patient

    def update_room_data(
        self, patient_id: str, room_id: RoomId, form: FormInput, *, actor: Actor = None
    ) -> Patient:
        """Correct a room's saved form without moving the patient."""
        self._authorize(actor, Permission.EDIT_PATIENTS)
        room = get_room(room_id)
        patient = self.patients.get(patient_id).model_copy(deep=True)
        model = form_for_room(room.id, form)
        validate_form(room.id, model)
        patient.room_specific_data[room.id] = model
        self.patients.update(patient)
        self.audit("patient_room_data_updated", target=patient.id, actor=actor, room=RoomId(room_id).value)
        return patient

    def delete_patient(self, patient_id: str, *, actor: Actor = None) -> None:
        self._authorize(actor, Permission.EDIT_PATIENTS)
        self.patients.remove(patient_id)
        self.audit("patient_deleted", target=patient_id, actor=actor)
        logger.info("Deleted patient %s", patient_id)

    def attach_document(
        self, patient_id: str, name: str, file_type: str, data: bytes, *, actor: Actor = None
    ) -> PatientDocument:
        self._authorize(actor, Permission.EDIT_PATIENTS)
        patient = self.patients.get(patient_id).model_copy(deep=True)
        doc = attach_document(patient, name, file_type, data)
        self.patients.update(patient)
        self.audit("document_attached", target=patient.id, actor=actor, document=doc.id, name=doc.name)
        return doc

    def remove_document(self, patient_id: str, document_id: str, *, actor: Actor = None) -> None:
        self._authorize(actor, Permission.EDIT_PATIENTS)
        patient = self.patients.get(patient_id).model_copy(deep=True)
        if not remove_document(patient, document_id):
            raise NotFoundError("PatientDocument", document_id)
        self.patients.update(patient)
        self.audit("document_removed", target=patient.id, actor=actor, document=document_id)

    # -----------------------------------------------------------------------
    # Exam configuration / report templates
    # -----------------------------------------------------------------------

    def exam_config_by_name(self, name: str) -> Optional[ExamConfiguration]:
        return next((c for c in self.exam_configs if c.name == name), None)

    def exam_names(self) -> list[str]:
        return [c.name for c in self.exam_configs]

    def save_exam_config(self, config: ExamConfiguration, *, actor: Actor = None) -> ExamConfiguration:
        if not config.name.strip():
            raise ValidationError(["Le nom de l'examen est requis."])
        clash = self.exam_config_by_name(config.name.strip())
        if clash is not None and clash.id != config.id:
            raise ValidationError(["Un examen porte déjà ce nom."])

        previous = self.exam_configs.find(config.id)
        if previous is not None and previous.name != config.name and self._patients_requesting(previous.name):
            raise ReferentialIntegrityError(
                "Impossible de renommer un examen demandé par des patients.", {"exam": previous.name}
            )
        self.exam_configs.upsert(config)
        self.audit("exam_config_saved", target=config.id, actor=actor, name=config.name)
        logger.info("Saved exam configuration %s", config.name)
        return config

    def _patients_requesting(self, exam_name: str) -> list[str]:
        return [p.id for p in self.patients if p.requested_exam == exam_name]

    def delete_exam_config(self, config_id: str, *, actor: Actor = None) -> None:
        """
        Raises:
            ReferentialIntegrityError: While any patient's request names the exam.
        """
        config = self.exam_configs.get(config_id)
        users = self._patients_requesting(config.name)
        if users:
            logger.warning("Refused to delete exam %s requested by %d patient(s)", config.name, len(users))
            raise ReferentialIntegrityError(
                "Cet examen est utilisé par des patients et ne peut pas être supprimé.",
                {"exam": config.name, "patients": users},
            )
        self.exam_configs.remove(config_id)
        self.audit("exam_config_deleted", target=config_id, actor=actor, name=config.name)

    def templates_for_exam(self, exam_name: str) -> list[ReportTemplate]:
        return [t for t in self.report_templates if t.exam_name == exam_name]

    def save_report_template(self, template: ReportTemplate, *, actor: Actor = None) -> ReportTemplate:
        errors = []
        if not template.name.strip():
            errors.append("Le nom du modèle est requis.")
        if self.exam_config_by_name(template.exam_name) is None:
            errors.append("L'examen associé est inconnu.")
        if errors:
            raise ValidationError(errors)
        self.report_templates.upsert(template)
        self.audit("report_template_saved", target=template.id, actor=actor, name=template.name)
        return template

    def delete_report_template(self, template_id: str, *, actor: Actor = None) -> None:
        self.report_templates.remove(template_id)
        self.audit("report_template_deleted", target=template_id, actor=actor)

    # -----------------------------------------------------------------------
    # Hot lab
    # -----------------------------------------------------------------------

    def add_lot(self, lot: TracerLot, *, actor: Actor = None) -> TracerLot:
        self._authorize(actor, Permission.EDIT_HOT_LAB)
        hot_lab.validate_lot(lot)
        self.lots.add(lot)
        self.audit("lot_added", target=lot.id, actor=actor, lot_number=lot.lot_number)
        logger.info("Added tracer lot %s (%s)", lot.lot_number, lot.product_id)
        return lot

    def delete_lot(self, lot_id: str, *, actor: Actor = None) -> None:
        self._authorize(actor, Permission.EDIT_HOT_LAB)
        lot = self.lots.get(lot_id)
        preps = [p.id for p in self.preparations if p.tracer_lot_id == lot_id]
        if preps:
            raise ReferentialIntegrityError(
                "Ce lot est utilisé par des préparations et ne peut pas être supprimé.",
                {"lot_id": lot_id, "preparations": preps},
            )
        self.lots.remove(lot_id)
        self.audit("lot_deleted", target=lot_id, actor=actor, lot_number=lot.lot_number)

    def add_preparation(self, prep: PreparationLog, *, actor: Actor = None) -> PreparationLog:
        self._authorize(actor, Permission.EDIT_HOT_LAB)
        hot_lab.validate_preparation(prep, self.lots.all())
        if prep.patient_id and prep.patient_id not in self.patients:
            raise ValidationError([f"Patient inconnu : {prep.patient_id}."])
        self.preparations.add(prep)
        self.audit("preparation_added", target=prep.id, actor=actor, lot=prep.tracer_lot_id,
                   activity=prep.activity_prepared, unit=prep.unit)
        logger.info("Logged preparation %s: %g %s", prep.id, prep.activity_prepared, prep.unit)
        return prep

    def delete_preparation(self, prep_id: str, *, actor: Actor = None) -> None:
        self._authorize(actor, Permission.EDIT_HOT_LAB)
        self.preparations.remove(prep_id)
        self.audit("preparation_deleted", target=prep_id, actor=actor)

    # -----------------------------------------------------------------------
    # Patrimony
    # -----------------------------------------------------------------------

    def save_asset(self, asset: Asset, *, actor: Actor = None) -> Asset:
        patrimony.validate_asset(asset)
        self.assets.upsert(asset)
        self.audit("asset_saved", target=asset.id, actor=actor, designation=asset.designation)
        return asset

    def delete_asset(self, asset_id: str, *, actor: Actor = None) -> None:
        self.assets.remove(asset_id)
        self.audit("asset_deleted", target=asset_id, actor=actor)

    def save_stock_item(self, item: StockItem, *, actor: Actor = None) -> StockItem:
        """Create or edit an item's description; movements are never edited here."""
        patrimony.validate_stock_item(item)
        existing = self.stock_items.find(item.id)
        item = item.model_copy(deep=True)
        if existing is not None:
            item.movements = existing.movements
        patrimony.recompute_stock(item)
        self.stock_items.upsert(item)
        self.audit("stock_item_saved", target=item.id, actor=actor, designation=item.designation)
        return item

    def delete_stock_item(self, item_id: str, *, actor: Actor = None) -> None:
        patrimony.ensure_stock_item_deletable(self.stock_items.get(item_id))
        self.stock_items.remove(item_id)
        self.audit("stock_item_deleted", target=item_id, actor=actor)

    def stock_entry(
        self, item_id: str, quantity: float, unit_price: float, *, actor: Actor = None, **kwargs: Any
    ) -> StockMovement:
        item = self.stock_items.get(item_id).model_copy(deep=True)
        movement = patrimony.record_entry(item, quantity, unit_price, **kwargs)
        self.stock_items.update(item)
        self.audit("stock_entry", target=item_id, actor=actor, quantity=quantity, ref=movement.document_ref)
        return movement

    def stock_exit(
        self,
        item_id: str,
        quantity: float,
        *,
        kind: MovementType = MovementType.EXIT,
        actor: Actor = None,
        **kwargs: Any,
    ) -> StockMovement:
        item = self.stock_items.get(item_id).model_copy(deep=True)
        movement = patrimony.record_exit(item, quantity, kind=kind, **kwargs)
        self.stock_items.update(item)
        self.audit("stock_exit", target=item_id, actor=actor, quantity=quantity, type=kind.value,
                   ref=movement.document_ref)
        return movement

    def stock_inventory(self, item_id: str, counted: float, *, actor: Actor = None, **kwargs: Any) -> StockMovement:
        item = self.stock_items.get(item_id).model_copy(deep=True)
        movement = patrimony.record_inventory(item, counted, **kwargs)
        self.stock_items.update(item)
        self.audit("stock_inventory", target=item_id, actor=actor, counted=counted)
        return movement

    def save_life_sheet_lot(self, sheet: LifeSheetLot, *, actor: Actor = None) -> LifeSheetLot:
        if not sheet.designation.strip():
            raise ValidationError(["La désignation est requise."])
        self.life_sheet_lots.upsert(sheet)
        self.audit("life_sheet_saved", target=sheet.id, actor=actor, kind="lot")
        return sheet

    def save_life_sheet_unit(self, sheet: LifeSheetUnit, *, actor: Actor = None) -> LifeSheetUnit:
        if not sheet.designation.strip():
            raise ValidationError(["La désignation est requise."])
        self.life_sheet_units.upsert(sheet)
        self.audit("life_sheet_saved", target=sheet.id, actor=actor, kind="unit")
        return sheet

    def add_life_sheet_lot_movement(
        self, sheet_id: str, movement: LifeSheetLotMovement, *, actor: Actor = None
    ) -> LifeSheetLot:
        sheet = self.life_sheet_lots.get(sheet_id).model_copy(deep=True)
        patrimony.add_lot_movement(sheet, movement)
        self.life_sheet_lots.update(sheet)
        self.audit("life_sheet_movement", target=sheet_id, actor=actor, nature=movement.nature)
        return sheet

    def add_life_sheet_unit_movement(
        self, sheet_id: str, movement: LifeSheetUnitMovement, *, actor: Actor = None
    ) -> LifeSheetUnit:
        sheet = self.life_sheet_units.get(sheet_id).model_copy(deep=True)
        patrimony.add_unit_movement(sheet, movement)
        self.life_sheet_units.update(sheet)
        self.audit("life_sheet_movement", target=sheet_id, actor=actor, nature=movement.nature)
        return sheet

    def delete_life_sheet(self, sheet_id: str, *, actor: Actor = None) -> None:
        if sheet_id in self.life_sheet_lots:
            self.life_sheet_lots.remove(sheet_id)
        else:
            self.life_sheet_units.remove(sheet_id)
        self.audit("life_sheet_deleted", target=sheet_id, actor=actor)


_DB_SINGLETON: Optional[Database] = None


def get_db() -> Database:
    global _DB_SINGLETON
    if _DB_SINGLETON is None:
        _DB_SINGLETON = Database()
    return _DB_SINGLETON
