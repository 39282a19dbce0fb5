"""
app/pages/database.py

All patient records in one table, with identity editing, saved room data
correction and deletion.
"""

from __future__ import annotations

import json

import streamlit as st
from pydantic import ValidationError as SchemaError

from app.renderers import patient_rows
from app.ui import go, inject_theme, notify, page_context, require, show_error, view_state
from pipelines.errors import WorkflowError
from pipelines.rooms import ROOM_ORDER, find_room
from pipelines.schemas import Permission
from pipelines.views import view_patient_detail


def render() -> None:
    inject_theme()
    db, user, perms = page_context()
    st.title("Patient database")
    if not require(perms, Permission.EDIT_PATIENTS):
        return

    patients = sorted(db.patients.all(), key=lambda p: p.id)
    st.caption(f"{len(patients)} record(s)")
    st.dataframe(patient_rows(patients), use_container_width=True, hide_index=True)
    if not patients:
        return

    patient = st.selectbox("Record", patients, format_func=lambda p: f"{p.id} · {p.name}")
    if st.button("Open dossier"):
        go(view_patient_detail(view_state(), patient.id))

    tab_identity, tab_data, tab_delete = st.tabs(["Identity", "Room data", "Delete"])

    with tab_identity:
        with st.form(f"identity_{patient.id}"):
            name = st.text_input("Name", value=patient.name)
            dob = st.date_input("Date of birth", value=patient.date_of_birth)
            phone = st.text_input("Phone", value=patient.phone)
            email = st.text_input("Email", value=patient.email)
            address = st.text_area("Address", value=patient.address)
            submitted = st.form_submit_button("Save", type="primary")
        if submitted:
            try:
                db.update_patient_identity(
                    patient.id,
                    {"name": name, "date_of_birth": dob, "phone": phone, "email": email, "address": address},
                    actor=user,
                )
            except WorkflowError as exc:
                show_error(exc)
            else:
                notify("Saved.")
                st.rerun()

    with tab_data:
        rooms = sorted(patient.room_specific_data, key=lambda r: ROOM_ORDER.get(r, 99))
        if not rooms:
            st.caption("No room data saved yet.")
        else:
            room_id = st.selectbox("Room", rooms, format_func=lambda r: find_room(r).name)
            current = patient.room_specific_data[room_id].model_dump(mode="json", exclude={"room"})
            raw = st.text_area("Fields (JSON)", value=json.dumps(current, indent=2, ensure_ascii=False), height=260,
                               key=f"raw_{patient.id}_{room_id.value}")
            if st.button("Save room data"):
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError as exc:
                    st.error(f"Invalid JSON: {exc}")
                else:
                    try:
                        db.update_room_data(patient.id, room_id, data, actor=user)
                    except SchemaError as exc:
                        st.error(f"Invalid fields: {exc.error_count()} error(s)")
                    except WorkflowError as exc:
                        show_error(exc)
                    else:
                        st.rerun()

    with tab_delete:
        st.warning(f"Deleting {patient.name} removes the whole dossier and its documents.")
        confirm = st.checkbox("I understand", key=f"confirm_{patient.id}")
        if st.button("Delete record", disabled=not confirm):
            db.delete_patient(patient.id, actor=user)
            st.rerun()
