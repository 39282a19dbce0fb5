"""
app/pages/search.py

Patients whose name or id contains the sidebar search term.
"""

from __future__ import annotations

import streamlit as st

from app.renderers import render_patient_card
from app.ui import go, inject_theme, page_context, view_state
from pipelines.reporting import search_patients
from pipelines.views import view_patient_detail


def render(term: str) -> None:
    inject_theme()
    db, _, _ = page_context()
    results = search_patients(db.patients.all(), term)

    st.title("Search")
    st.caption(f'{len(results)} result(s) for "{term}"')

    for p in results:
        render_patient_card(p)
        if st.button("Open dossier", key=f"open_{p.id}"):
            go(view_patient_detail(view_state(), p.id))
