import json

from pipelines.schemas import RoomId
from storage.export import (
    export_life_sheet_pdf,
    export_patient_json,
    export_patient_pdf,
    export_stock_ledger_pdf,
    html_to_text,
    patient_bundle,
)


def test_html_to_text():
    html = "<p>Fixation <b>normale</b>.</p><ul><li>Rachis</li><li>Bassin</li></ul><br>&nbsp;Fin"
    assert html_to_text(html) == "Fixation normale.\nRachis\nBassin\nFin"
    assert html_to_text("") == ""


def test_patient_json_lists_documents_without_content(demo_db, admin):
    demo_db.attach_document("PAT001", "note.txt", "text/plain", b"hello")
    patient = demo_db.patients.get("PAT001")

    bundle = json.loads(export_patient_json(patient, db=demo_db, actor=admin))
    assert bundle["patient"]["id"] == "PAT001"
    assert "documents" not in bundle["patient"]
    assert bundle["documents"][0]["name"] == "note.txt"
    assert "data_url" not in bundle["documents"][0]
    assert RoomId.CONSULTATION.value in bundle["patient"]["room_specific_data"]

    entry = demo_db.audit_log(1)[0]
    assert (entry.action, entry.target, entry.actor) == ("export_patient_json", "PAT001", admin.id)


def test_bundle_has_a_timestamp(demo_db):
    assert patient_bundle(demo_db.patients.get("PAT011"))["export_generated_at"]


def test_patient_pdf(demo_db):
    for patient in demo_db.patients:
        assert export_patient_pdf(patient).startswith(b"%PDF")
    export_patient_pdf(demo_db.patients.get("PAT002"), db=demo_db, actor="user_admin")
    assert demo_db.audit_log(1)[0].action == "export_patient_pdf"


def test_stock_ledger_pdf(demo_db):
    pdf = export_stock_ledger_pdf(demo_db.stock_items.get("STOCK01"), db=demo_db)
    assert pdf.startswith(b"%PDF")
    assert demo_db.audit_log(1)[0].target == "STOCK01"


def test_life_sheet_pdfs(demo_db):
    assert export_life_sheet_pdf(demo_db.life_sheet_lots.get("ASSET002")).startswith(b"%PDF")
    assert export_life_sheet_pdf(demo_db.life_sheet_units.get("ASSET001"), db=demo_db).startswith(b"%PDF")
    assert demo_db.audit_log(1)[0].action == "export_life_sheet_pdf"
