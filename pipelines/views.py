"""
pipelines/views.py

Which page to render for the current navigation state.

The UI keeps one ``ViewState`` in the Streamlit session. ``resolve_view``
maps it to a page module under app/pages plus the keyword arguments its
``render`` needs. Every ActiveView has exactly one resolver; a view whose
selection is missing falls back to its parent list view.

A confirmation shown just before ``st.rerun`` would be lost, so pages park
it with ``push_notice`` and the next run pops it.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, MutableMapping, NamedTuple, Optional

from pydantic import BaseModel

from pipelines.schemas import Permission, RoomId


class ActiveView(str, Enum):
    ROOM = "room"
    SEARCH = "search"
    DAILY_WORKLIST = "daily_worklist"
    PATIENT_DETAIL = "patient_detail"
    ROOMS_OVERVIEW = "rooms_overview"
    ACTIVITY_FEED = "activity_feed"
    STATISTICS = "statistics"
    HOT_LAB = "hot_lab"
    TRACERS_MANAGEMENT = "tracers_management"
    PREPARATIONS_MANAGEMENT = "preparations_management"
    ISOTOPES_MANAGEMENT = "isotopes_management"
    ADMINISTRATION = "administration"
    EXAM_SETTINGS = "exam_settings"
    DATABASE = "database"
    REPORT_TEMPLATES_SETTINGS = "report_templates_settings"
    PATRIMONY_DASHBOARD = "patrimony_dashboard"
    PATRIMONY_INVENTORY = "patrimony_inventory"
    PATRIMONY_STOCK = "patrimony_stock"
    PATRIMONY_STOCK_DETAIL = "patrimony_stock_detail"
    PATRIMONY_ASSET_STATUS = "patrimony_asset_status"


class ViewState(BaseModel):
    active_view: ActiveView = ActiveView.ROOMS_OVERVIEW
    active_room_id: Optional[RoomId] = None
    selected_patient_id: Optional[str] = None
    selected_stock_item_id: Optional[str] = None
    search_term: str = ""


class RenderTarget(NamedTuple):
    view: ActiveView
    page: str
    kwargs: dict[str, Any]


# ---------------------------------------------------------------------------
# Resolvers (one per view)
# ---------------------------------------------------------------------------


def _plain(view: ActiveView, page: str, **kwargs: Any) -> Callable[[ViewState], RenderTarget]:
    return lambda state: RenderTarget(view, page, dict(kwargs))


def _room(state: ViewState) -> RenderTarget:
    if state.active_room_id is None or state.active_room_id == RoomId.GENERATOR:
        return _RESOLVERS[ActiveView.ROOMS_OVERVIEW](state)
    return RenderTarget(ActiveView.ROOM, "room", {"room_id": state.active_room_id})


def _search(state: ViewState) -> RenderTarget:
    if not state.search_term.strip():
        return _RESOLVERS[ActiveView.ROOMS_OVERVIEW](state)
    return RenderTarget(ActiveView.SEARCH, "search", {"term": state.search_term.strip()})


def _patient_detail(state: ViewState) -> RenderTarget:
    if not state.selected_patient_id:
        return _RESOLVERS[ActiveView.ROOMS_OVERVIEW](state)
    return RenderTarget(ActiveView.PATIENT_DETAIL, "patient_detail", {"patient_id": state.selected_patient_id})


def _stock_detail(state: ViewState) -> RenderTarget:
    if not state.selected_stock_item_id:
        return _RESOLVERS[ActiveView.PATRIMONY_STOCK](state)
    return RenderTarget(
        ActiveView.PATRIMONY_STOCK_DETAIL, "patrimony_stock_detail", {"item_id": state.selected_stock_item_id}
    )


_RESOLVERS: dict[ActiveView, Callable[[ViewState], RenderTarget]] = {
    ActiveView.ROOM: _room,
    ActiveView.SEARCH: _search,
    ActiveView.DAILY_WORKLIST: _plain(ActiveView.DAILY_WORKLIST, "daily_worklist"),
    ActiveView.PATIENT_DETAIL: _patient_detail,
    ActiveView.ROOMS_OVERVIEW: _plain(ActiveView.ROOMS_OVERVIEW, "rooms_overview"),
    ActiveView.ACTIVITY_FEED: _plain(ActiveView.ACTIVITY_FEED, "activity_feed"),
    ActiveView.STATISTICS: _plain(ActiveView.STATISTICS, "statistics"),
    ActiveView.HOT_LAB: _plain(ActiveView.HOT_LAB, "hot_lab", tab="overview"),
    ActiveView.TRACERS_MANAGEMENT: _plain(ActiveView.TRACERS_MANAGEMENT, "hot_lab", tab="lots"),
    ActiveView.PREPARATIONS_MANAGEMENT: _plain(ActiveView.PREPARATIONS_MANAGEMENT, "hot_lab", tab="preparations"),
    ActiveView.ISOTOPES_MANAGEMENT: _plain(ActiveView.ISOTOPES_MANAGEMENT, "hot_lab", tab="isotopes"),
    ActiveView.ADMINISTRATION: _plain(ActiveView.ADMINISTRATION, "administration"),
    ActiveView.EXAM_SETTINGS: _plain(ActiveView.EXAM_SETTINGS, "exam_settings"),
    ActiveView.DATABASE: _plain(ActiveView.DATABASE, "database"),
    ActiveView.REPORT_TEMPLATES_SETTINGS: _plain(ActiveView.REPORT_TEMPLATES_SETTINGS, "report_templates"),
    ActiveView.PATRIMONY_DASHBOARD: _plain(ActiveView.PATRIMONY_DASHBOARD, "patrimony_dashboard"),
    ActiveView.PATRIMONY_INVENTORY: _plain(ActiveView.PATRIMONY_INVENTORY, "patrimony_inventory"),
    ActiveView.PATRIMONY_STOCK: _plain(ActiveView.PATRIMONY_STOCK, "patrimony_stock"),
    ActiveView.PATRIMONY_STOCK_DETAIL: _stock_detail,
    ActiveView.PATRIMONY_ASSET_STATUS: _plain(ActiveView.PATRIMONY_ASSET_STATUS, "patrimony_asset_status"),
}

_unhandled = set(ActiveView) - set(_RESOLVERS)
if _unhandled:
    raise RuntimeError(f"No resolver for views: {sorted(v.value for v in _unhandled)}")


def resolve_view(state: ViewState) -> RenderTarget:
    return _RESOLVERS[ActiveView(state.active_view)](state)


# ---------------------------------------------------------------------------
# Access
# ---------------------------------------------------------------------------

VIEW_PERMISSIONS: dict[ActiveView, Optional[Permission]] = {
    ActiveView.ROOM: Permission.VIEW_PATIENTS,
    ActiveView.SEARCH: Permission.VIEW_PATIENTS,
    ActiveView.DAILY_WORKLIST: Permission.VIEW_PATIENTS,
    ActiveView.PATIENT_DETAIL: Permission.VIEW_PATIENTS,
    ActiveView.ROOMS_OVERVIEW: None,
    ActiveView.ACTIVITY_FEED: Permission.VIEW_PATIENTS,
    ActiveView.STATISTICS: Permission.VIEW_STATISTICS,
    ActiveView.HOT_LAB: Permission.VIEW_HOT_LAB,
    ActiveView.TRACERS_MANAGEMENT: Permission.VIEW_HOT_LAB,
    ActiveView.PREPARATIONS_MANAGEMENT: Permission.VIEW_HOT_LAB,
    ActiveView.ISOTOPES_MANAGEMENT: Permission.VIEW_HOT_LAB,
    ActiveView.ADMINISTRATION: Permission.MANAGE_USERS,
    ActiveView.EXAM_SETTINGS: Permission.MANAGE_ROLES,
    ActiveView.DATABASE: Permission.EDIT_PATIENTS,
    ActiveView.REPORT_TEMPLATES_SETTINGS: Permission.MANAGE_ROLES,
    ActiveView.PATRIMONY_DASHBOARD: Permission.MANAGE_USERS,
    ActiveView.PATRIMONY_INVENTORY: Permission.MANAGE_USERS,
    ActiveView.PATRIMONY_STOCK: Permission.MANAGE_USERS,
    ActiveView.PATRIMONY_STOCK_DETAIL: Permission.MANAGE_USERS,
    ActiveView.PATRIMONY_ASSET_STATUS: Permission.MANAGE_USERS,
}


def can_view(view: ActiveView, permissions: set) -> bool:
    needed = VIEW_PERMISSIONS.get(ActiveView(view))
    return needed is None or needed in permissions


# ---------------------------------------------------------------------------
# Navigation
# ---------------------------------------------------------------------------


def navigate_to_view(state: ViewState, view: ActiveView) -> ViewState:
    return state.model_copy(update={"active_view": ActiveView(view)})


def navigate_to_room(state: ViewState, room_id: RoomId) -> ViewState:
    room_id = RoomId(room_id)
    if room_id == RoomId.GENERATOR:
        return state.model_copy(update={"active_view": ActiveView.HOT_LAB, "active_room_id": None})
    return state.model_copy(update={"active_view": ActiveView.ROOM, "active_room_id": room_id})


def view_patient_detail(state: ViewState, patient_id: str) -> ViewState:
    return state.model_copy(update={"active_view": ActiveView.PATIENT_DETAIL, "selected_patient_id": patient_id})


def view_stock_item(state: ViewState, item_id: str) -> ViewState:
    return state.model_copy(
        update={"active_view": ActiveView.PATRIMONY_STOCK_DETAIL, "selected_stock_item_id": item_id}
    )


def apply_search(state: ViewState, term: str) -> ViewState:
    """A non-blank term opens the search view; clearing it goes back to the overview."""
    term = term or ""
    if term.strip():
        return state.model_copy(update={"active_view": ActiveView.SEARCH, "search_term": term})
    if state.active_view == ActiveView.SEARCH:
        return state.model_copy(update={"active_view": ActiveView.ROOMS_OVERVIEW, "search_term": ""})
    return state.model_copy(update={"search_term": ""})


# ---------------------------------------------------------------------------
# Notices
# ---------------------------------------------------------------------------

NOTICE_KEY = "notice"


def push_notice(store: MutableMapping[str, Any], message: str) -> None:
    """Keep *message* for the next script run."""
    store[NOTICE_KEY] = message


def pop_notice(store: MutableMapping[str, Any]) -> Optional[str]:
    return store.pop(NOTICE_KEY, None)
