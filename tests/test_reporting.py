from datetime import date, time, timedelta

import pytest

from pipelines.reporting import (
    WORKLIST_HOURS,
    activity_feed,
    compute_statistics,
    daily_worklist,
    patients_in_room,
    search_patients,
)
from pipelines.schemas import RoomId
from pipelines.workflow import advance, create_patient, move_patient

BONE = "Scintigraphie Osseuse"


def _identity(name: str) -> dict:
    return {"name": name, "date_of_birth": "1970-01-01"}


@pytest.fixture
def patients(noon):
    booked = create_patient(_identity("Jean Dupont"), {"requested_exam": BONE}, patient_id="PAT001",
                            now=noon - timedelta(hours=1))
    advance(booked, RoomId.APPOINTMENT, {"date_rdv": date.today(), "heure_rdv": time(9, 0)},
            now=noon - timedelta(minutes=30))
    walk_in = create_patient(_identity("Marie Curie"), patient_id="PAT002", now=noon)
    other = create_patient(_identity("Paul Martin"), patient_id="PAT003", now=noon)
    old = create_patient(_identity("Old Case"), {"requested_exam": BONE}, patient_id="PAT004",
                         now=noon - timedelta(days=40))
    return [booked, walk_in, other, old]


def test_activity_feed_is_newest_first(patients, noon):
    feed = activity_feed(patients, "today", now=noon)
    assert len(feed) == 6
    assert {i.patient_id for i in feed[:2]} == {"PAT002", "PAT003"}
    assert feed[-1].room_id == RoomId.REQUEST
    assert feed[-1].patient_id == "PAT001"
    assert all(i.patient_id != "PAT004" for i in feed)


def test_daily_worklist_groups_by_hour(patients):
    grid = daily_worklist(patients)
    assert list(grid) == list(WORKLIST_HOURS)
    (event,) = grid[9]
    assert event.kind == "appointment"
    assert event.patient_id == "PAT001"
    assert event.exam == BONE
    assert sum(len(v) for v in grid.values()) == 1


def test_worklist_adds_injection_and_estimated_exam(noon):
    p = create_patient(_identity("Anna"), {"requested_exam": BONE}, patient_id="PAT010", now=noon)
    advance(p, RoomId.APPOINTMENT, {"date_rdv": date.today(), "heure_rdv": time(8, 0)}, now=noon)
    move_patient(p, RoomId.INJECTION, now=noon)
    advance(p, RoomId.INJECTION, {"heure_injection": time(8, 30), "produit_injecte": "99mTc-MDP"}, now=noon)

    grid = daily_worklist([p])
    assert [e.kind for e in grid[8]] == ["appointment", "injection"]
    assert grid[8][1].label == "Injection (99mTc-MDP)"
    assert [(e.kind, e.at) for e in grid[9]] == [("exam", time(9, 30))]


def test_worklist_ignores_other_days(patients):
    assert not any(daily_worklist(patients, date.today() + timedelta(days=1)).values())


def test_search_and_room_filters(patients):
    assert [p.id for p in search_patients(patients, " curie ")] == ["PAT002"]
    assert [p.id for p in search_patients(patients, "pat00")] == ["PAT001", "PAT002", "PAT003", "PAT004"]
    assert search_patients(patients, "  ") == []
    assert [p.id for p in patients_in_room(patients, RoomId.CONSULTATION)] == ["PAT001"]


def test_statistics_for_today(patients, noon):
    stats = compute_statistics(patients, "today", now=noon)
    assert stats.total_patients == 3
    assert stats.exams_by_type == {BONE: 1}
    assert stats.total_exams == 1
    assert stats.busiest_room == RoomId.REQUEST
    assert stats.busiest_room_count == 3
    assert stats.average_wait_minutes == {RoomId.APPOINTMENT: pytest.approx(30.0)}
    assert stats.average_journey_hours is None

    flow = dict(stats.patient_flow)
    assert len(flow) == 13
    assert flow["11h"] == 4
    assert flow["12h"] == 2


def test_statistics_flow_labels(patients, noon):
    week = compute_statistics(patients, "thisWeek", now=noon)
    assert [label for label, _ in week.patient_flow] == ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]
    month = compute_statistics(patients, "thisMonth", now=noon)
    assert month.patient_flow[0][0] == "1"
    assert sum(count for _, count in month.patient_flow) == 6


def test_journey_ends_at_archive(noon):
    p = create_patient(_identity("Done"), {"requested_exam": BONE}, patient_id="PAT020",
                       now=noon - timedelta(hours=2))
    move_patient(p, RoomId.ARCHIVE, now=noon - timedelta(hours=1))
    advance(p, RoomId.ARCHIVE, {}, now=noon - timedelta(minutes=30))

    stats = compute_statistics([p], "today", now=noon)
    assert stats.average_journey_hours == 1.5
