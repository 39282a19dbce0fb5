"""
app/pages/exam_settings.py

Exam catalogue: each exam's extra fields for the request, consultation
and report forms.
"""

from __future__ import annotations

import re

import streamlit as st

from app.ui import card_close, card_open, inject_theme, page_context, require, show_error
from pipelines.errors import WorkflowError
from pipelines.schemas import ConfigurableField, ExamConfiguration, ExamFields, Permission

SECTIONS = {"request": "Request", "consultation": "Consultation", "report": "Report"}
FIELD_TYPES = ["text", "textarea", "select", "checkbox"]


def _slug(label: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", label.lower()).strip("_") or "field"


def render() -> None:
    inject_theme()
    db, user, perms = page_context()
    st.title("Exam settings")
    if not require(perms, Permission.MANAGE_ROLES):
        return

    configs = db.exam_configs.all()
    choice = st.selectbox("Exam", [None] + configs, format_func=lambda c: "➕ New exam" if c is None else c.name)

    if choice is None:
        with st.form("new_exam"):
            name = st.text_input("Exam name")
            submitted = st.form_submit_button("Create", type="primary")
        if submitted:
            try:
                db.save_exam_config(ExamConfiguration(name=name), actor=user)
            except WorkflowError as exc:
                show_error(exc)
            else:
                st.rerun()
        return

    name = st.text_input("Exam name", value=choice.name)
    fields = choice.form_fields.model_copy(deep=True)

    for section, label in SECTIONS.items():
        current: list[ConfigurableField] = getattr(fields, section)
        card_open(label, f"{len(current)} field(s)")
        for f in list(current):
            c1, c2 = st.columns([4, 1])
            with c1:
                opts = f" ({', '.join(f.options)})" if f.options else ""
                st.markdown(f"**{f.label}** · `{f.type}`{opts}")
            with c2:
                if st.button("Remove", key=f"rm_{choice.id}_{section}_{f.id}"):
                    setattr(fields, section, [x for x in current if x.id != f.id])
                    _save(db, choice, name, fields, user)
        with st.form(f"add_{choice.id}_{section}", clear_on_submit=True):
            c1, c2, c3 = st.columns([2, 1, 2])
            with c1:
                new_label = st.text_input("Label", key=f"lbl_{section}")
            with c2:
                new_type = st.selectbox("Type", FIELD_TYPES, key=f"typ_{section}")
            with c3:
                new_opts = st.text_input("Options (comma separated)", key=f"opt_{section}")
            if st.form_submit_button("Add field") and new_label.strip():
                options = [o.strip() for o in new_opts.split(",") if o.strip()] if new_type == "select" else []
                current.append(ConfigurableField(id=_slug(new_label), label=new_label.strip(),
                                                 type=new_type, options=options))
                _save(db, choice, name, fields, user)
        card_close()

    c1, c2 = st.columns(2)
    with c1:
        if st.button("Save exam", type="primary"):
            _save(db, choice, name, fields, user)
    with c2:
        if st.button("Delete exam"):
            try:
                db.delete_exam_config(choice.id, actor=user)
            except WorkflowError as exc:
                show_error(exc)
            else:
                st.rerun()


def _save(db, config: ExamConfiguration, name: str, fields: ExamFields, user) -> None:
    try:
        db.save_exam_config(config.model_copy(update={"name": name, "form_fields": fields}), actor=user)
    except WorkflowError as exc:
        show_error(exc)
    else:
        st.rerun()
