"""
app/pages/patient_detail.py

Patient dossier: identity, journey timeline, saved room data, documents
(upload, preview, removal) and JSON / PDF exports.
"""

from __future__ import annotations

import streamlit as st

from app.renderers import fmt_dt, render_patient_card, render_timeline, room_label
from app.ui import card_close, card_open, go, inject_theme, page_context, show_error, view_state
from pipelines.documents import MAX_UPLOAD_BYTES, decode_data_url, make_thumbnail
from pipelines.errors import WorkflowError
from pipelines.rooms import ROOM_ORDER
from pipelines.schemas import Permission
from pipelines.views import ActiveView, navigate_to_view
from storage.export import export_patient_json, export_patient_pdf, html_to_text


def render(patient_id: str) -> None:
    inject_theme()
    db, user, perms = page_context()

    patient = db.patients.find(patient_id)
    if patient is None:
        st.warning(f"Patient {patient_id} no longer exists.")
        if st.button("Back to overview"):
            go(navigate_to_view(view_state(), ActiveView.ROOMS_OVERVIEW))
        return

    st.title(patient.name)
    render_patient_card(patient)

    left, right = st.columns([1, 1], gap="large")

    with left:
        card_open("Identity")
        ref = patient.referring_entity
        st.markdown(
            f"""
- **Born:** {patient.date_of_birth.strftime('%d/%m/%Y')} ({patient.age if patient.age is not None else '—'} ans)
- **Phone:** {patient.phone or '—'}
- **Email:** {patient.email or '—'}
- **Address:** {patient.address or '—'}
- **Referred by:** {f'{ref.name} ({ref.type})' if ref and ref.name else '—'}
- **Created:** {fmt_dt(patient.creation_date)}
"""
        )
        card_close()

        for room_id in sorted(patient.room_specific_data, key=lambda r: ROOM_ORDER.get(r, 99)):
            form = patient.room_specific_data[room_id]
            data = form.model_dump(mode="json", exclude={"room"})
            with st.expander(f"Data · {room_label(room_id)}"):
                for k, v in data.items():
                    if v in (None, "", [], {}):
                        continue
                    if isinstance(v, str) and "<" in v:
                        v = html_to_text(v)
                    st.markdown(f"**{k}**: {v}")

    with right:
        render_timeline(patient)

    st.subheader("Documents")
    for doc in patient.documents:
        c1, c2, c3 = st.columns([1, 3, 1])
        with c1:
            thumb = make_thumbnail(doc.data_url)
            if thumb:
                st.image(thumb)
            else:
                st.caption(doc.file_type)
        with c2:
            _, raw = decode_data_url(doc.data_url)
            st.download_button(doc.name, data=raw, file_name=doc.name, mime=doc.file_type, key=f"dl_{doc.id}")
            st.caption(f"Added {fmt_dt(doc.upload_date)}")
        with c3:
            if Permission.EDIT_PATIENTS in perms and st.button("Remove", key=f"rm_{doc.id}"):
                db.remove_document(patient.id, doc.id, actor=user)
                st.rerun()

    if Permission.EDIT_PATIENTS in perms:
        upload = st.file_uploader(
            f"Attach a document (max {MAX_UPLOAD_BYTES // (1024 * 1024)} MB)",
            type=["png", "jpg", "jpeg", "pdf", "txt"],
            key=f"upload_{patient.id}",
        )
        if upload is not None and st.button("Attach", type="primary"):
            try:
                db.attach_document(patient.id, upload.name, upload.type or "application/octet-stream",
                                   upload.getvalue(), actor=user)
            except WorkflowError as exc:
                show_error(exc)
            else:
                st.rerun()

    st.subheader("Export")
    c1, c2 = st.columns(2)
    with c1:
        st.download_button(
            "Download JSON",
            data=export_patient_json(patient),
            file_name=f"{patient.id}.json",
            mime="application/json",
        )
    with c2:
        if st.button("Build PDF dossier"):
            st.session_state[f"pdf_{patient.id}"] = export_patient_pdf(patient, db=db, actor=user)
        pdf = st.session_state.get(f"pdf_{patient.id}")
        if pdf:
            st.download_button("Download PDF", data=pdf, file_name=f"{patient.id}.pdf", mime="application/pdf")
