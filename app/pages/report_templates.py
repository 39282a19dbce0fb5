"""
app/pages/report_templates.py

Report templates per exam: the pre-filled report body and conclusion the
Compte Rendu room can start from.
"""

from __future__ import annotations

import streamlit as st

from app.ui import inject_theme, page_context, require, show_error
from pipelines.errors import WorkflowError
from pipelines.schemas import Permission, ReportTemplate


def render() -> None:
    inject_theme()
    db, user, perms = page_context()
    st.title("Report templates")
    if not require(perms, Permission.MANAGE_ROLES):
        return

    exams = db.exam_names()
    if not exams:
        st.info("Configure an exam first.")
        return

    exam = st.selectbox("Exam", exams)
    templates = db.templates_for_exam(exam)
    choice = st.selectbox("Template", [None] + templates,
                          format_func=lambda t: "➕ New template" if t is None else t.name)

    with st.form(f"tpl_{choice.id if choice else 'new'}"):
        name = st.text_input("Name", value=choice.name if choice else "")
        report = st.text_area("Report body (HTML allowed)", value=choice.report_content if choice else "", height=260)
        conclusion = st.text_area("Conclusion", value=choice.conclusion_content if choice else "")
        c1, c2 = st.columns(2)
        with c1:
            saved = st.form_submit_button("Save", type="primary")
        with c2:
            deleted = st.form_submit_button("Delete", disabled=choice is None)

    if saved:
        fields = {"name": name, "exam_name": exam, "report_content": report, "conclusion_content": conclusion}
        template = choice.model_copy(update=fields) if choice else ReportTemplate(**fields)
        try:
            db.save_report_template(template, actor=user)
        except WorkflowError as exc:
            show_error(exc)
        else:
            st.rerun()
    if deleted and choice is not None:
        db.delete_report_template(choice.id, actor=user)
        st.rerun()
