"""
app/pages/auth.py

Sign-in gate. Staff sign in with email and password or create an account
with one of the configured roles.
"""

from __future__ import annotations

import streamlit as st

from app.ui import _esc, inject_theme, show_error
from pipelines.errors import WorkflowError
from pipelines.rooms import ROOMS
from pipelines.storage import get_db
from storage.accounts import DEFAULT_ADMIN_EMAIL, login, register_user


def _intro() -> None:
    chain = " → ".join(r.name for r in ROOMS)
    st.markdown(
        f"""
<div class="mc-card" style="padding:28px;">
  <div style="font-size:34px; font-weight:800; color:#12324f;">☢️ Médecine Nucléaire</div>
  <div class="mc-sub" style="margin:8px 0 18px;">Department tracker</div>
  <div class="mc-title">Patient workflow</div>
  <div class="mc-sub" style="margin-bottom:12px;">{_esc(chain)}</div>
  <div class="mc-title">Hot lab</div>
  <div class="mc-sub" style="margin-bottom:12px;">Tracer lots, decay-corrected activity, preparations and safety alerts</div>
  <div class="mc-title">Patrimony</div>
  <div class="mc-sub">Equipment register, consumable stock ledgers and asset life sheets</div>
</div>
        """,
        unsafe_allow_html=True,
    )


def render() -> None:
    inject_theme()
    db = get_db()

    left, right = st.columns([1.1, 1], gap="large")
    with left:
        _intro()

    with right:
        tab_login, tab_register = st.tabs(["Sign in", "Create account"])

        with tab_login:
            with st.form("login_form"):
                email = st.text_input("Email", placeholder=DEFAULT_ADMIN_EMAIL)
                password = st.text_input("Password", type="password")
                submitted = st.form_submit_button("Sign in", type="primary", use_container_width=True)
            if submitted:
                try:
                    login(db, email, password, st.session_state)
                except WorkflowError as exc:
                    show_error(exc)
                else:
                    st.rerun()

        with tab_register:
            with st.form("register_form", clear_on_submit=True):
                name = st.text_input("Full name")
                new_email = st.text_input("Work email")
                new_password = st.text_input("Choose a password", type="password")
                role = st.selectbox("Role", db.roles.all(), format_func=lambda r: r.name)
                created = st.form_submit_button("Create account", use_container_width=True)
            if created:
                try:
                    register_user(db, name, new_email, new_password, role.id if role else "")
                except WorkflowError as exc:
                    show_error(exc)
                else:
                    st.success("Account created. You can now sign in.")

        st.caption("Demo deployment: do not enter real patient data.")
