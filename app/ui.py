"""
app/ui.py

Shared look and feel for the department pages: theme CSS, cards, metric
tiles, status pills, and the session-held navigation state.
"""

from __future__ import annotations

import html
from typing import Optional

import streamlit as st

from pipelines.errors import ValidationError, WorkflowError
from pipelines.periods import Period
from pipelines.schemas import Permission, User
from pipelines.storage import Database, get_db
from pipelines.views import ViewState, pop_notice, push_notice
from storage.accounts import current_user, permissions_for


def inject_theme() -> None:
    st.markdown(
        """
<style>
[data-testid="stSidebarNav"] { display: none !important; }

:root{
  --mn-navy: #12324f;
  --mn-navy-dark: #0c2338;
  --mn-teal: #1f8a84;
  --mn-page: #f4f7fa;
  --mn-line: #dde4ec;
  --mn-ink: #1c2733;
  --mn-soft: #6b7a8c;
  --mn-green: #237a3b;
  --mn-amber: #b36b00;
  --mn-red: #b42318;
}

.stApp { background: var(--mn-page); }
.stApp h1, .stApp h2, .stApp h3 { color: var(--mn-navy); }
div.block-container { padding-top: 1.6rem; padding-bottom: 1.6rem; }

section[data-testid="stSidebar"] { background: var(--mn-navy-dark) !important; }
section[data-testid="stSidebar"] * { color: #e6edf5 !important; }
section[data-testid="stSidebar"] .stButton>button {
  background: transparent !important;
  border: 1px solid rgba(255,255,255,0.14);
  text-align: left;
}
section[data-testid="stSidebar"] .stButton>button[kind="primary"] {
  background: var(--mn-teal) !important;
  border-color: var(--mn-teal);
}

.stButton>button { border-radius: 8px; }
.stButton>button[kind="primary"] { background: var(--mn-teal); border-color: var(--mn-teal); color: #fff; }

.mc-card {
  background: #fff;
  border: 1px solid var(--mn-line);
  border-left: 4px solid var(--mn-teal);
  border-radius: 10px;
  padding: 12px 14px;
  margin-bottom: 10px;
}
.mc-title { font-weight: 700; font-size: 15px; color: var(--mn-ink); }
.mc-sub { color: var(--mn-soft); font-size: 13px; }
.mc-metric-label { color: var(--mn-soft); font-size: 12px; text-transform: uppercase; }
.mc-metric-value { font-size: 26px; font-weight: 800; color: var(--mn-navy); }
.mc-metric-foot { color: var(--mn-soft); font-size: 12px; margin-top: 4px; }

.mc-pill { display: inline-block; padding: 2px 9px; border-radius: 10px; font-size: 12px; font-weight: 700; }
.mc-pill-ok { background: #e3f3e7; color: var(--mn-green); }
.mc-pill-warn { background: #fdf0dc; color: var(--mn-amber); }
.mc-pill-danger { background: #fbe4e2; color: var(--mn-red); }
.mc-pill-muted { background: #edf1f5; color: var(--mn-soft); }

.mc-tl { border-left: 2px solid var(--mn-teal); margin-left: 6px; padding-left: 12px; }
.mc-tl-item { margin-bottom: 8px; }
.mc-tl-room { font-weight: 700; color: var(--mn-ink); }
.mc-tl-when { color: var(--mn-soft); font-size: 12px; }
</style>
        """,
        unsafe_allow_html=True,
    )


def _esc(x) -> str:
    return html.escape("" if x is None else str(x), quote=True)


def card_open(title: str, subtitle: str = "") -> None:
    sub = f'<div class="mc-sub">{_esc(subtitle)}</div>' if subtitle else ""
    st.markdown(
        f'<div class="mc-card"><div class="mc-title">{_esc(title)}</div>{sub}',
        unsafe_allow_html=True,
    )


def card_close() -> None:
    st.markdown("</div>", unsafe_allow_html=True)


def pill(text: str, tone: str = "muted") -> str:
    return f'<span class="mc-pill mc-pill-{tone}">{_esc(text)}</span>'


def status_pill(status) -> str:
    value = getattr(status, "value", status)
    return pill("Seen", "ok") if value == "SEEN" else pill("Waiting", "warn")


def metric_card(label: str, value, foot: Optional[str] = None) -> None:
    foot_html = f'<div class="mc-metric-foot">{_esc(foot)}</div>' if foot else ""
    st.markdown(
        f"""
<div class="mc-card">
  <div class="mc-metric-label">{_esc(label)}</div>
  <div class="mc-metric-value">{_esc(value)}</div>
  {foot_html}
</div>
        """,
        unsafe_allow_html=True,
    )


def show_error(exc: WorkflowError) -> None:
    if isinstance(exc, ValidationError):
        for msg in exc.messages:
            st.error(msg)
    else:
        st.error(exc.reason)


# ---------------------------------------------------------------------------
# Session helpers
# ---------------------------------------------------------------------------


def view_state() -> ViewState:
    if "view_state" not in st.session_state:
        st.session_state["view_state"] = ViewState()
    return st.session_state["view_state"]


def go(state: ViewState) -> None:
    """Store the new navigation state and re-run the script."""
    st.session_state["view_state"] = state
    st.rerun()


def notify(message: str) -> None:
    push_notice(st.session_state, message)


def show_notice() -> None:
    message = pop_notice(st.session_state)
    if message:
        st.success(message)


def current_period() -> Period:
    return st.session_state.get("period", "today")


def page_context() -> tuple[Database, Optional[User], set[Permission]]:
    db = get_db()
    user = current_user(db, st.session_state)
    return db, user, permissions_for(db, user)


def require(perms: set[Permission], permission: Permission) -> bool:
    """Show a warning and return False when *permission* is missing."""
    if permission in perms:
        return True
    st.warning("You do not have permission for this action.")
    return False
