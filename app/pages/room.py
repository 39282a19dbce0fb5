"""
app/pages/room.py

Work queue for one room:
- patients waiting here (and those already seen, for the terminal room)
- the room's completion form, which advances the selected patient
- manual move to any room (requires move_patients)
- the intake form in the Demande room
"""

from __future__ import annotations

from datetime import date, datetime, time
from typing import Any, Optional

import streamlit as st

from app.renderers import patient_rows, render_patient_card, room_label
from app.ui import go, inject_theme, notify, page_context, require, show_error, view_state
from pipelines.errors import WorkflowError
from pipelines.hot_lab import RADIOPHARMACEUTICAL_PRODUCTS, available_lots
from pipelines.reporting import patients_in_room
from pipelines.rooms import ROOMS, get_room, visible_rooms
from pipelines.schemas import ConfigurableField, Patient, PatientStatus, Permission, RoomId
from pipelines.views import view_patient_detail
from storage.accounts import role_of

IMAGE_QUALITY = ["Excellente", "Bonne", "Moyenne", "Médiocre"]


def custom_field_inputs(fields: list[ConfigurableField], key: str, existing: Optional[dict] = None) -> dict[str, Any]:
    """Widgets for exam-configured fields; returns {field_id: value}."""
    existing = existing or {}
    values: dict[str, Any] = {}
    for f in fields:
        wkey = f"{key}_{f.id}"
        current = existing.get(f.id)
        if f.type == "textarea":
            values[f.id] = st.text_area(f.label, value=current or "", key=wkey)
        elif f.type == "select" and f.options:
            index = f.options.index(current) if current in f.options else 0
            values[f.id] = st.selectbox(f.label, f.options, index=index, key=wkey)
        elif f.type == "checkbox":
            values[f.id] = st.checkbox(f.label, value=bool(current), key=wkey)
        else:
            values[f.id] = st.text_input(f.label, value=current or "", key=wkey)
    return values


# ---------------------------------------------------------------------------
# Intake
# ---------------------------------------------------------------------------


def _intake_form(db, user) -> None:
    exams = db.exam_names()
    with st.expander("➕ New patient", expanded=False):
        exam = st.selectbox("Requested exam", ["—"] + exams, key="intake_exam")
        config = db.exam_config_by_name(exam) if exam != "—" else None

        with st.form("intake_form", clear_on_submit=True):
            c1, c2 = st.columns(2)
            with c1:
                name = st.text_input("Full name *")
                dob = st.date_input("Date of birth *", value=None, min_value=date(1900, 1, 1), max_value=date.today())
                phone = st.text_input("Phone")
                email = st.text_input("Email")
            with c2:
                address = st.text_area("Address", height=80)
                ref_type = st.selectbox("Referred by", ["doctor", "service", "center"])
                ref_name = st.text_input("Referrer name")
                ref_contact = st.text_input("Referrer phone")
            custom = custom_field_inputs(config.form_fields.request, "intake") if config else {}
            submitted = st.form_submit_button("Create patient", type="primary")

        if submitted:
            data = {
                "name": name,
                "date_of_birth": dob,
                "phone": phone,
                "email": email,
                "address": address,
                "referring_entity": {"type": ref_type, "name": ref_name, "contact_number": ref_contact},
            }
            request = {"requested_exam": exam, "custom_fields": custom} if config else None
            try:
                patient = db.create_patient(data, request, actor=user)
            except WorkflowError as exc:
                show_error(exc)
            else:
                st.success(f"Patient {patient.id} created ({room_label(patient.current_room_id)}).")


# ---------------------------------------------------------------------------
# Per-room completion forms
# ---------------------------------------------------------------------------


def _request_form(db, user, patient: Patient, key: str) -> dict[str, Any]:
    exams = db.exam_names()
    current = patient.requested_exam
    exam = st.selectbox("Requested exam", exams, index=exams.index(current) if current in exams else 0, key=key)
    config = db.exam_config_by_name(exam)
    existing = getattr(patient.room_data(RoomId.REQUEST), "custom_fields", {})
    custom = custom_field_inputs(config.form_fields.request, key, existing) if config else {}
    return {"requested_exam": exam, "custom_fields": custom}


def _appointment_form(db, user, patient: Patient, key: str) -> dict[str, Any]:
    c1, c2 = st.columns(2)
    with c1:
        day = st.date_input("Appointment date", value=None, key=f"{key}_d")
    with c2:
        at = st.time_input("Appointment time", value=None, step=900, key=f"{key}_t")
    notes = st.text_area("Specific instructions", key=f"{key}_n")
    return {"date_rdv": day, "heure_rdv": at, "consignes_specifiques": notes}


def _consultation_form(db, user, patient: Patient, key: str) -> dict[str, Any]:
    config = db.exam_config_by_name(patient.requested_exam)
    notes = st.text_area("Consultation notes", key=f"{key}_n")
    custom = custom_field_inputs(config.form_fields.consultation, key) if config else {}
    return {"notes": notes, "custom_fields": custom}


def _injection_form(db, user, patient: Patient, key: str) -> dict[str, Any]:
    products = list(RADIOPHARMACEUTICAL_PRODUCTS)
    product = st.selectbox("Injected product", products, format_func=lambda p: p.name, key=f"{key}_p")
    lots = [lot for lot in available_lots(db.lots.all()) if lot.product_id == product.id]
    lot = st.selectbox("Tracer lot", [None] + lots,
                       format_func=lambda lot: "—" if lot is None else lot.lot_number, key=f"{key}_l")
    c1, c2, c3 = st.columns(3)
    with c1:
        at = st.time_input("Injection time", value=datetime.now().time().replace(second=0, microsecond=0),
                           key=f"{key}_t")
    with c2:
        activity = st.number_input("Activity", min_value=0.0, step=10.0, key=f"{key}_a")
    with c3:
        unit = st.selectbox("Unit", ["MBq", "mCi", "GBq", "Ci"], key=f"{key}_u")
    volume = st.number_input("Volume (mL)", min_value=0.0, step=0.1, key=f"{key}_v")
    point = st.text_input("Injection site", key=f"{key}_s")
    notes = st.text_area("Notes", key=f"{key}_n")
    return {
        "produit_injecte": product.name,
        "heure_injection": at,
        "injected_activity": activity or None,
        "activity_unit": unit,
        "volume_injected": volume or None,
        "technician": st.text_input("Technician", value=user.name if user else "", key=f"{key}_tech"),
        "injection_point": point,
        "injection_notes": notes,
        "tracer_lot_id": lot.id if lot else None,
    }


def _examination_form(db, user, patient: Patient, key: str) -> dict[str, Any]:
    quality = st.selectbox("Image quality", IMAGE_QUALITY, key=f"{key}_q")
    params = st.text_area("Acquisition parameters", key=f"{key}_p")
    comments = st.text_area("Technician comments", key=f"{key}_c")
    return {"qualite_images": quality, "parametres_examen": params, "commentaires_technicien": comments}


def _report_form(db, user, patient: Patient, key: str) -> dict[str, Any]:
    templates = db.templates_for_exam(patient.requested_exam)
    template = st.selectbox("Template", [None] + templates,
                            format_func=lambda t: "— blank —" if t is None else t.name, key=f"{key}_tpl")
    tpl_key = template.id if template else "blank"
    text = st.text_area("Report", value=template.report_content if template else "", height=220,
                        key=f"{key}_r_{tpl_key}")
    conclusion = st.text_area("Conclusion", value=template.conclusion_content if template else "",
                              key=f"{key}_c_{tpl_key}")
    config = db.exam_config_by_name(patient.requested_exam)
    custom = custom_field_inputs(config.form_fields.report, key) if config else {}
    return {
        "texte_compte_rendu": text,
        "conclusion_cr": conclusion,
        "template_id": template.id if template else None,
        "custom_fields": custom,
    }


def _retrait_form(db, user, patient: Patient, key: str) -> dict[str, Any]:
    c1, c2 = st.columns(2)
    with c1:
        day = st.date_input("Collection date", value=date.today(), key=f"{key}_d")
    with c2:
        at = st.time_input("Collection time", value=time(datetime.now().hour, 0), key=f"{key}_t")
    by = st.text_input("Collected by", key=f"{key}_b")
    comments = st.text_area("Discharge comments", key=f"{key}_c")
    return {"date_retrait": day, "heure_retrait": at, "retire_par": by, "commentaires_sortie": comments}


def _archive_form(db, user, patient: Patient, key: str) -> dict[str, Any]:
    return {"notes": st.text_area("Archive notes", key=f"{key}_n")}


FORM_RENDERERS = {
    RoomId.REQUEST: _request_form,
    RoomId.APPOINTMENT: _appointment_form,
    RoomId.CONSULTATION: _consultation_form,
    RoomId.INJECTION: _injection_form,
    RoomId.EXAMINATION: _examination_form,
    RoomId.REPORT: _report_form,
    RoomId.RETRAIT_CR_SORTIE: _retrait_form,
    RoomId.ARCHIVE: _archive_form,
}


# ---------------------------------------------------------------------------
# Page
# ---------------------------------------------------------------------------


def render(room_id: RoomId) -> None:
    inject_theme()
    db, user, perms = page_context()
    room = get_room(room_id)

    st.title(room.name)
    st.caption(room.description)

    can_act = room in visible_rooms(user, role_of(db, user))
    if room.id == RoomId.REQUEST and Permission.CREATE_PATIENTS in perms:
        _intake_form(db, user)

    in_room = patients_in_room(db.patients.all(), room.id)
    waiting = [p for p in in_room if p.status_in_room == PatientStatus.WAITING]
    seen = [p for p in in_room if p.status_in_room == PatientStatus.SEEN]

    st.subheader(f"Waiting ({len(waiting)})")
    if not waiting:
        st.info("No patient is waiting in this room.")
        if seen:
            st.subheader(f"Done ({len(seen)})")
            st.dataframe(patient_rows(seen), use_container_width=True, hide_index=True)
        return

    patient = st.selectbox("Patient", waiting, format_func=lambda p: f"{p.id} · {p.name}")
    render_patient_card(patient)
    if st.button("Open dossier", key="open_dossier"):
        go(view_patient_detail(view_state(), patient.id))

    tab_complete, tab_move = st.tabs(["Complete", "Move"])

    with tab_complete:
        if not can_act:
            st.warning("Your role cannot complete this room.")
        else:
            key = f"form_{room.id.value}_{patient.id}"
            data = FORM_RENDERERS[room.id](db, user, patient, key)
            if st.button("Validate and continue", type="primary", key=f"{key}_submit"):
                try:
                    updated = db.complete_room(patient.id, room.id, data, actor=user)
                except WorkflowError as exc:
                    show_error(exc)
                else:
                    notify(f"{updated.name} → {room_label(updated.current_room_id)}")
                    st.rerun()

    with tab_move:
        if require(perms, Permission.MOVE_PATIENTS):
            targets = [r for r in ROOMS if r.id != room.id]
            target = st.selectbox("Move to", targets, format_func=lambda r: r.name, key="move_target")
            if st.button("Move patient", key="move_btn"):
                try:
                    db.move_patient(patient.id, target.id, actor=user)
                except WorkflowError as exc:
                    show_error(exc)
                else:
                    st.rerun()

    if seen:
        st.subheader(f"Done ({len(seen)})")
        st.dataframe(patient_rows(seen), use_container_width=True, hide_index=True)
