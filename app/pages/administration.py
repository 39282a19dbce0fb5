"""
app/pages/administration.py

Users and roles management, plus the most recent audit entries.
"""

from __future__ import annotations

import streamlit as st

from app.renderers import fmt_dt
from app.ui import inject_theme, page_context, require, show_error
from pipelines.errors import WorkflowError
from pipelines.schemas import Permission, Role, User
from storage.accounts import delete_role, delete_user, save_role, save_user


def _users(db, actor) -> None:
    roles = {r.id: r for r in db.roles.all()}
    st.dataframe(
        [{"Name": u.name, "Email": u.email, "Role": roles[u.role_id].name if u.role_id in roles else u.role_id}
         for u in db.users.all()],
        use_container_width=True,
        hide_index=True,
    )

    users = db.users.all()
    choice = st.selectbox("Edit user", [None] + users,
                          format_func=lambda u: "➕ New user" if u is None else f"{u.name} <{u.email}>")
    with st.form("user_form"):
        name = st.text_input("Name", value=choice.name if choice else "")
        email = st.text_input("Email", value=choice.email if choice else "")
        role_ids = list(roles)
        role_id = st.selectbox(
            "Role", role_ids,
            index=role_ids.index(choice.role_id) if choice and choice.role_id in role_ids else 0,
            format_func=lambda rid: roles[rid].name,
        )
        password = st.text_input("New password" if choice else "Password", type="password")
        c1, c2 = st.columns(2)
        with c1:
            saved = st.form_submit_button("Save", type="primary")
        with c2:
            deleted = st.form_submit_button("Delete", disabled=choice is None)

    if saved:
        if choice is None:
            user = User(name=name, email=email, role_id=role_id, password_hash="")
        else:
            user = choice.model_copy(update={"name": name, "email": email, "role_id": role_id})
        try:
            save_user(db, user, password or None, actor=actor)
        except WorkflowError as exc:
            show_error(exc)
        else:
            st.rerun()
    if deleted and choice is not None:
        try:
            delete_user(db, choice.id, actor=actor)
        except WorkflowError as exc:
            show_error(exc)
        else:
            st.rerun()


def _roles(db, actor) -> None:
    roles = db.roles.all()
    st.dataframe(
        [{"Role": r.name, "Permissions": ", ".join(p.value for p in r.permissions)} for r in roles],
        use_container_width=True,
        hide_index=True,
    )

    choice = st.selectbox("Edit role", [None] + roles, format_func=lambda r: "➕ New role" if r is None else r.name)
    with st.form("role_form"):
        name = st.text_input("Role name", value=choice.name if choice else "")
        perms = st.multiselect(
            "Permissions",
            list(Permission),
            default=list(choice.permissions) if choice else [],
            format_func=lambda p: p.value,
        )
        c1, c2 = st.columns(2)
        with c1:
            saved = st.form_submit_button("Save", type="primary")
        with c2:
            deleted = st.form_submit_button("Delete", disabled=choice is None)

    if saved:
        role = Role(name=name, permissions=perms) if choice is None else choice.model_copy(
            update={"name": name, "permissions": perms}
        )
        try:
            save_role(db, role, actor=actor)
        except WorkflowError as exc:
            show_error(exc)
        else:
            st.rerun()
    if deleted and choice is not None:
        try:
            delete_role(db, choice.id, actor=actor)
        except WorkflowError as exc:
            show_error(exc)
        else:
            st.rerun()


def render() -> None:
    inject_theme()
    db, user, perms = page_context()
    st.title("Users & roles")
    if not require(perms, Permission.MANAGE_USERS):
        return

    tab_users, tab_roles, tab_audit = st.tabs(["Users", "Roles", "Audit log"])
    with tab_users:
        _users(db, user)
    with tab_roles:
        if require(perms, Permission.MANAGE_ROLES):
            _roles(db, user)
    with tab_audit:
        st.dataframe(
            [
                {"When": fmt_dt(e.timestamp), "Actor": e.actor, "Action": e.action, "Target": e.target or "",
                 "Details": ", ".join(f"{k}={v}" for k, v in e.details.items())}
                for e in db.audit_log(200)
            ],
            use_container_width=True,
            hide_index=True,
        )
