import pytest

from pipelines.schemas import Permission, RoomId
from pipelines.views import (
    VIEW_PERMISSIONS,
    ActiveView,
    ViewState,
    apply_search,
    can_view,
    navigate_to_room,
    navigate_to_view,
    pop_notice,
    push_notice,
    resolve_view,
    view_patient_detail,
    view_stock_item,
)


@pytest.mark.parametrize("view", list(ActiveView))
def test_every_view_resolves(view):
    state = ViewState(
        active_view=view,
        active_room_id=RoomId.CONSULTATION,
        selected_patient_id="PAT001",
        selected_stock_item_id="STOCK01",
        search_term="dupont",
    )
    target = resolve_view(state)
    assert target.view == view
    assert target.page


def test_every_view_has_a_permission_entry():
    assert set(VIEW_PERMISSIONS) == set(ActiveView)


def test_room_view_passes_room_id():
    target = resolve_view(navigate_to_room(ViewState(), RoomId.INJECTION))
    assert target.page == "room"
    assert target.kwargs == {"room_id": RoomId.INJECTION}


def test_generator_opens_the_hot_lab():
    state = navigate_to_room(ViewState(active_room_id=RoomId.REQUEST), RoomId.GENERATOR)
    assert state.active_view == ActiveView.HOT_LAB
    assert state.active_room_id is None
    assert resolve_view(state).kwargs == {"tab": "overview"}


def test_missing_selection_falls_back_to_list_view():
    assert resolve_view(ViewState(active_view=ActiveView.ROOM)).view == ActiveView.ROOMS_OVERVIEW
    assert resolve_view(ViewState(active_view=ActiveView.PATIENT_DETAIL)).view == ActiveView.ROOMS_OVERVIEW
    assert resolve_view(ViewState(active_view=ActiveView.SEARCH, search_term="  ")).view == ActiveView.ROOMS_OVERVIEW
    assert resolve_view(ViewState(active_view=ActiveView.PATRIMONY_STOCK_DETAIL)).view == ActiveView.PATRIMONY_STOCK


def test_hot_lab_sub_views_share_one_page():
    tabs = {
        resolve_view(ViewState(active_view=v)).kwargs["tab"]
        for v in (
            ActiveView.HOT_LAB,
            ActiveView.TRACERS_MANAGEMENT,
            ActiveView.PREPARATIONS_MANAGEMENT,
            ActiveView.ISOTOPES_MANAGEMENT,
        )
    }
    assert tabs == {"overview", "lots", "preparations", "isotopes"}


def test_selection_helpers():
    state = view_patient_detail(ViewState(), "PAT002")
    assert resolve_view(state).kwargs == {"patient_id": "PAT002"}
    state = view_stock_item(state, "STOCK02")
    assert resolve_view(state).kwargs == {"item_id": "STOCK02"}
    assert state.selected_patient_id == "PAT002"


def test_navigation_returns_a_new_state():
    state = ViewState()
    moved = navigate_to_view(state, ActiveView.STATISTICS)
    assert moved.active_view == ActiveView.STATISTICS
    assert state.active_view == ActiveView.ROOMS_OVERVIEW


def test_search_term_opens_and_clearing_closes_search():
    state = apply_search(ViewState(), "curie")
    assert state.active_view == ActiveView.SEARCH
    assert resolve_view(state).kwargs == {"term": "curie"}

    cleared = apply_search(state, "")
    assert cleared.active_view == ActiveView.ROOMS_OVERVIEW
    assert cleared.search_term == ""

    elsewhere = apply_search(ViewState(active_view=ActiveView.STATISTICS, search_term="x"), "")
    assert elsewhere.active_view == ActiveView.STATISTICS


def test_can_view():
    assert can_view(ActiveView.ROOMS_OVERVIEW, set())
    assert not can_view(ActiveView.HOT_LAB, {Permission.VIEW_PATIENTS})
    assert can_view(ActiveView.HOT_LAB, {Permission.VIEW_HOT_LAB})
    assert not can_view(ActiveView.PATRIMONY_STOCK, {Permission.EDIT_PATIENTS})


def test_notice_survives_one_rerun():
    store = {"view_state": ViewState()}
    push_notice(store, "Jean Dupont → Examen")
    assert pop_notice(store) == "Jean Dupont → Examen"
    assert pop_notice(store) is None
    assert list(store) == ["view_state"]
