import json

import pytest
from cryptography.fernet import Fernet

from pipelines.config import Settings
from pipelines.errors import (
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ReferentialIntegrityError,
    ValidationError,
)
from pipelines.schemas import ExamConfiguration, PatientStatus, ReportTemplate, RoomId
from pipelines.seed import OSSEUSE
from pipelines.storage import Database, JsonFileBackend, KeyValueBackend
from pipelines.workflow import check_consistency
from storage.crypto import reset_key_cache
from storage.db import SqliteBackend

IDENTITY = {"name": "Jean Dupont", "date_of_birth": "1965-08-15"}


@pytest.fixture
def sqlite_settings(tmp_path) -> Settings:
    return Settings(data_dir=tmp_path / "sql", backend="sqlite", seed_demo_data=False)


def test_empty_store_is_seeded_and_written(db, settings):
    assert "user_admin" in db.users
    assert {r.id for r in db.roles} >= {"role_admin", "role_doctor", "role_technician", "role_reception"}
    assert OSSEUSE in db.exam_names()
    assert len(db.patients) == 0
    assert (settings.data_dir / f"{settings.storage_prefix}users.json").exists()


def test_demo_seed(demo_db):
    assert demo_db.patients.get("PAT001").current_room_id == RoomId.INJECTION
    assert demo_db.patients.get("PAT011").status_in_room == PatientStatus.SEEN
    assert all(check_consistency(p) == [] for p in demo_db.patients)
    assert demo_db.stock_items.get("STOCK01").current_stock == 50


def test_writes_go_through_to_disk(db, settings, admin):
    patient = db.create_patient(IDENTITY, {"requested_exam": OSSEUSE}, actor=admin)
    assert patient.id == "PAT001"
    assert patient.current_room_id == RoomId.APPOINTMENT

    again = Database(settings=settings)
    assert again.patients.get("PAT001") == patient
    assert again.audit_log(1)[0].action == "patient_created"
    assert again.audit_log(1)[0].actor == admin.id


def test_unknown_exam_is_rejected(db):
    with pytest.raises(ValidationError):
        db.create_patient(IDENTITY, {"requested_exam": "Inconnu"})
    assert len(db.patients) == 0


def test_complete_room_validates_before_mutating(db):
    patient = db.create_patient(IDENTITY, {"requested_exam": OSSEUSE})
    with pytest.raises(ValidationError):
        db.complete_room(patient.id, RoomId.APPOINTMENT, {})
    with pytest.raises(InvalidTransitionError):
        db.complete_room(patient.id, RoomId.CONSULTATION, {"notes": "x"})
    assert db.patients.get(patient.id) == patient

    moved = db.complete_room(patient.id, RoomId.APPOINTMENT, {"date_rdv": "2024-07-01", "heure_rdv": "09:00"})
    assert moved.current_room_id == RoomId.CONSULTATION
    assert db.patients.get(patient.id).current_room_id == RoomId.CONSULTATION


def test_move_and_correct_room_data(db):
    patient = db.create_patient(IDENTITY)
    db.move_patient(patient.id, RoomId.EXAMINATION)
    with pytest.raises(NotFoundError):
        db.move_patient(patient.id, RoomId.GENERATOR)

    fixed = db.update_room_data(patient.id, RoomId.EXAMINATION, {"qualite_images": "Bonne"})
    assert fixed.current_room_id == RoomId.EXAMINATION
    assert fixed.room_specific_data[RoomId.EXAMINATION].qualite_images == "Bonne"
    assert [e.action for e in db.audit_log(2)] == ["patient_room_data_updated", "patient_moved"]


def test_identity_update_and_delete(db):
    patient = db.create_patient(IDENTITY)
    updated = db.update_patient_identity(patient.id, {"name": "Jean Durand", "phone": "0600"})
    assert updated.name == "Jean Durand"
    assert updated.phone == "0600"
    with pytest.raises(ValidationError):
        db.update_patient_identity(patient.id, {"name": ""})

    db.delete_patient(patient.id)
    with pytest.raises(NotFoundError):
        db.patients.get(patient.id)
    assert db.patients.find(patient.id) is None


def test_exam_in_use_cannot_be_deleted_or_renamed(db):
    db.create_patient(IDENTITY, {"requested_exam": OSSEUSE})
    config = db.exam_config_by_name(OSSEUSE)
    with pytest.raises(ReferentialIntegrityError):
        db.delete_exam_config(config.id)
    with pytest.raises(ReferentialIntegrityError):
        db.save_exam_config(config.model_copy(update={"name": "Os"}))
    with pytest.raises(ValidationError):
        db.save_exam_config(ExamConfiguration(name=OSSEUSE))

    extra = db.save_exam_config(ExamConfiguration(name="TEP FDG"))
    template = db.save_report_template(ReportTemplate(name="Normal", exam_name="TEP FDG"))
    assert db.templates_for_exam("TEP FDG") == [template]
    with pytest.raises(ValidationError):
        db.save_report_template(ReportTemplate(name="Orphan", exam_name="Nope"))
    db.delete_report_template(template.id)
    db.delete_exam_config(extra.id)
    assert "TEP FDG" not in db.exam_names()


def test_sqlite_backend_round_trip(sqlite_settings):
    first = Database(settings=sqlite_settings)
    assert isinstance(first.backend, SqliteBackend)
    first.create_patient(IDENTITY)

    second = Database(settings=sqlite_settings)
    assert second.patients.ids() == ["PAT001"]
    assert second.audit_log(1)[0].action == "patient_created"
    assert sqlite_settings.sqlite_path.exists()


def test_audit_log_is_newest_first(tmp_path):
    backend = JsonFileBackend(tmp_path)
    db = Database(settings=Settings(data_dir=tmp_path, seed_demo_data=False), backend=backend)
    for i in range(3):
        db.audit("ping", target=str(i))
    assert [e.target for e in db.audit_log(2)] == ["2", "1"]
    assert len(db.audit_log(None)) == 3


def test_patients_encrypted_at_rest(tmp_path, monkeypatch):
    monkeypatch.setenv("APP_DATA_KEY", Fernet.generate_key().decode())
    reset_key_cache()
    try:
        settings = Settings(data_dir=tmp_path, seed_demo_data=False, encrypt_patients=True)
        db = Database(settings=settings)
        db.create_patient(IDENTITY)

        raw = json.loads((tmp_path / f"{settings.storage_prefix}patients.json").read_text(encoding="utf-8"))
        assert isinstance(raw, str)
        assert "Dupont" not in raw
        assert Database(settings=settings).patients.get("PAT001").name == "Jean Dupont"
    finally:
        monkeypatch.delenv("APP_DATA_KEY")
        reset_key_cache()


def test_turning_encryption_on_rewrites_plaintext(tmp_path, monkeypatch):
    monkeypatch.setenv("APP_DATA_KEY", Fernet.generate_key().decode())
    reset_key_cache()
    try:
        Database(settings=Settings(data_dir=tmp_path, seed_demo_data=False)).create_patient(IDENTITY)
        settings = Settings(data_dir=tmp_path, seed_demo_data=False, encrypt_patients=True)
        Database(settings=settings)
        raw = json.loads((tmp_path / f"{settings.storage_prefix}patients.json").read_text(encoding="utf-8"))
        assert isinstance(raw, str)
    finally:
        monkeypatch.delenv("APP_DATA_KEY")
        reset_key_cache()


def test_collection_add_rejects_duplicate_ids(db, admin):
    with pytest.raises(ValueError):
        db.users.add(admin)


def test_operations_check_the_acting_user(db, admin, make_user):
    desk = make_user("role_reception", "desk@mn.com")
    tech = make_user("role_technician", "tech@mn.com")
    patient = db.create_patient(IDENTITY, actor=desk)

    with pytest.raises(PermissionDeniedError):
        db.create_patient(IDENTITY, actor=tech)
    with pytest.raises(PermissionDeniedError):
        db.move_patient(patient.id, RoomId.EXAMINATION, actor=desk)
    with pytest.raises(PermissionDeniedError):
        db.delete_patient(patient.id, actor=desk)
    assert db.patients.get(patient.id) == patient
    assert len(db.patients) == 1

    assert db.move_patient(patient.id, RoomId.EXAMINATION, actor=tech).current_room_id == RoomId.EXAMINATION
    db.delete_patient(patient.id, actor=admin)
    assert db.audit_log(1)[0].actor == admin.id


@pytest.mark.parametrize("backend_cls", [JsonFileBackend, SqliteBackend])
def test_backends_implement_the_key_value_protocol(backend_cls):
    wanted = {name for name in vars(KeyValueBackend) if not name.startswith("_")}
    assert wanted == {"read", "write", "append_audit", "read_audit"}
    assert wanted <= {name for name in vars(backend_cls) if not name.startswith("_")}
