"""
app/main.py

Nuclear-medicine department tracker: Streamlit entry point.
- Login gate (email / password, registration)
- Permission-filtered sidebar: rooms, views, search, period
- Routing through the view resolver to app/pages/<page>.render(**kwargs)
"""

from __future__ import annotations

import importlib
import logging
import sys
from pathlib import Path

import streamlit as st

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from app.ui import current_period, go, inject_theme, page_context, show_notice, view_state  # noqa: E402
from pipelines.config import get_settings  # noqa: E402
from pipelines.periods import PERIOD_LABELS, PERIODS  # noqa: E402
from pipelines.rooms import visible_rooms  # noqa: E402
from pipelines.schemas import RoomId  # noqa: E402
from pipelines.views import (  # noqa: E402
    ActiveView,
    apply_search,
    can_view,
    navigate_to_room,
    navigate_to_view,
    resolve_view,
)
from storage.accounts import logout, role_of  # noqa: E402

logging.basicConfig(
    level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Page config
# ---------------------------------------------------------------------------
st.set_page_config(
    page_title="Médecine Nucléaire",
    page_icon="☢️",
    layout="wide",
    initial_sidebar_state="expanded",
)

# ---------------------------------------------------------------------------
# Session defaults
# ---------------------------------------------------------------------------
if "period" not in st.session_state:
    st.session_state["period"] = "today"
state = view_state()


def _import_render(module_name: str):
    """Return `render` from app.pages.<module_name>."""
    return importlib.import_module(f"app.pages.{module_name}").render


inject_theme()
db, user, perms = page_context()

# ---------------------------------------------------------------------------
# Login gate
# ---------------------------------------------------------------------------
if user is None:
    _import_render("auth")()
    st.stop()

role = role_of(db, user)

# ---------------------------------------------------------------------------
# Sidebar
# ---------------------------------------------------------------------------
st.sidebar.title("☢️ Médecine Nucléaire")
st.sidebar.success(f"**{user.name}**\n\nRole: **{role.name if role else user.role_id}**")
if st.sidebar.button("↩️ Sign out"):
    logout(db, st.session_state)
    st.session_state.pop("view_state", None)
    st.rerun()

st.sidebar.divider()

term = st.sidebar.text_input("🔎 Search patients", value=state.search_term, placeholder="Name or ID")
if term != state.search_term:
    go(apply_search(state, term))

st.sidebar.selectbox(
    "Period",
    options=list(PERIODS),
    format_func=lambda p: PERIOD_LABELS[p],
    key="period",
)

st.sidebar.divider()

# Rooms (hot lab pseudo-room last)
rooms = visible_rooms(user, role)
room_options = [(r.name, r.id) for r in rooms]
if can_view(ActiveView.HOT_LAB, perms):
    room_options.append(("Laboratoire chaud", RoomId.GENERATOR))

st.sidebar.caption("Rooms")
for label, room_id in room_options:
    active = state.active_view == ActiveView.ROOM and state.active_room_id == room_id
    if st.sidebar.button(label, key=f"nav_room_{room_id.value}", use_container_width=True,
                         type="primary" if active else "secondary"):
        go(navigate_to_room(state, room_id))

# Views
NAV_VIEWS = [
    ("Overview", ActiveView.ROOMS_OVERVIEW),
    ("Daily worklist", ActiveView.DAILY_WORKLIST),
    ("Activity feed", ActiveView.ACTIVITY_FEED),
    ("Statistics", ActiveView.STATISTICS),
    ("Hot lab", ActiveView.HOT_LAB),
    ("Patient database", ActiveView.DATABASE),
    ("Users & roles", ActiveView.ADMINISTRATION),
    ("Exam settings", ActiveView.EXAM_SETTINGS),
    ("Report templates", ActiveView.REPORT_TEMPLATES_SETTINGS),
    ("Patrimony dashboard", ActiveView.PATRIMONY_DASHBOARD),
    ("Asset inventory", ActiveView.PATRIMONY_INVENTORY),
    ("Stock", ActiveView.PATRIMONY_STOCK),
    ("Life sheets", ActiveView.PATRIMONY_ASSET_STATUS),
]
nav_options = [(label, view) for label, view in NAV_VIEWS if can_view(view, perms)]

st.sidebar.caption("Views")
for label, view in nav_options:
    active = state.active_view == view
    if st.sidebar.button(label, key=f"nav_view_{view.value}", use_container_width=True,
                         type="primary" if active else "secondary"):
        go(navigate_to_view(state, view))

st.sidebar.divider()
st.sidebar.caption(f"Period: {PERIOD_LABELS[current_period()]}")

# ---------------------------------------------------------------------------
# Page routing
# ---------------------------------------------------------------------------
target = resolve_view(state)
if not can_view(target.view, perms):
    logger.warning("User %s denied view %s", user.id, target.view.value)
    st.warning("You do not have access to this view.")
    st.stop()

show_notice()
_import_render(target.page)(**target.kwargs)
