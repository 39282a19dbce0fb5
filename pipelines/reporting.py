"""
pipelines/reporting.py

Read-only views over the patient list: activity feed, daily worklist,
search and department statistics. Nothing here mutates a patient.
"""

from __future__ import annotations

import calendar
from collections import Counter, defaultdict
from datetime import date, datetime, time, timedelta
from typing import Iterable, Literal, Optional

from pydantic import BaseModel, Field

from pipelines.periods import Period, is_date_in_period, to_local_naive
from pipelines.schemas import Patient, RoomId

WORKLIST_HOURS = range(7, 20)
FLOW_HOURS = range(7, 20)
WEEKDAY_LABELS = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")
ESTIMATED_EXAM_DELAY = timedelta(hours=1)


# ---------------------------------------------------------------------------
# Activity feed
# ---------------------------------------------------------------------------


class ActivityItem(BaseModel):
    patient_id: str
    patient_name: str
    room_id: RoomId
    entry_date: datetime
    exit_date: Optional[datetime] = None
    status_message: str = ""


def activity_feed(
    patients: Iterable[Patient],
    period: Period,
    now: Optional[datetime] = None,
) -> list[ActivityItem]:
    """Every history entry that started in *period*, newest first."""
    items = [
        ActivityItem(
            patient_id=p.id,
            patient_name=p.name,
            room_id=e.room_id,
            entry_date=e.entry_date,
            exit_date=e.exit_date,
            status_message=e.status_message,
        )
        for p in patients
        for e in p.history
        if is_date_in_period(e.entry_date, period, now)
    ]
    items.sort(key=lambda i: i.entry_date, reverse=True)
    return items


# ---------------------------------------------------------------------------
# Daily worklist
# ---------------------------------------------------------------------------


class WorklistEvent(BaseModel):
    at: time
    kind: Literal["appointment", "injection", "exam"]
    patient_id: str
    patient_name: str
    exam: str = ""
    label: str = ""


def _events_for(p: Patient, day: date) -> list[WorklistEvent]:
    appt = p.room_specific_data.get(RoomId.APPOINTMENT)
    if appt is None or getattr(appt, "date_rdv", None) != day:
        return []

    events: list[WorklistEvent] = []
    exam = p.requested_exam
    if appt.heure_rdv is not None:
        events.append(
            WorklistEvent(at=appt.heure_rdv, kind="appointment", patient_id=p.id, patient_name=p.name,
                          exam=exam, label="Rendez-vous")
        )

    inj = p.room_specific_data.get(RoomId.INJECTION)
    if inj is not None and getattr(inj, "heure_injection", None) is not None:
        product = inj.produit_injecte or "traceur"
        events.append(
            WorklistEvent(at=inj.heure_injection, kind="injection", patient_id=p.id, patient_name=p.name,
                          exam=exam, label=f"Injection ({product})")
        )
        exam_at = (datetime.combine(day, inj.heure_injection) + ESTIMATED_EXAM_DELAY).time()
        events.append(
            WorklistEvent(at=exam_at, kind="exam", patient_id=p.id, patient_name=p.name,
                          exam=exam, label="Examen (estimé)")
        )
    return events


def daily_worklist(patients: Iterable[Patient], day: Optional[date] = None) -> dict[int, list[WorklistEvent]]:
    """
    Today's appointments, injections and estimated exam slots, grouped by
    hour. Hours 07-19 are always present (possibly empty).
    """
    day = day or date.today()
    events = [ev for p in patients for ev in _events_for(p, day)]
    events.sort(key=lambda ev: (ev.at, ev.patient_name))

    grouped: dict[int, list[WorklistEvent]] = {h: [] for h in WORKLIST_HOURS}
    for ev in events:
        grouped.setdefault(ev.at.hour, []).append(ev)
    return dict(sorted(grouped.items()))


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def search_patients(patients: Iterable[Patient], term: str) -> list[Patient]:
    needle = (term or "").strip().lower()
    if not needle:
        return []
    return [p for p in patients if needle in p.name.lower() or needle in p.id.lower()]


def patients_in_room(patients: Iterable[Patient], room_id: RoomId) -> list[Patient]:
    return [p for p in patients if p.current_room_id == room_id]


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


class Statistics(BaseModel):
    period: str
    total_patients: int = 0
    total_exams: int = 0
    exams_by_type: dict[str, int] = Field(default_factory=dict)
    average_journey_hours: Optional[float] = None
    busiest_room: Optional[RoomId] = None
    busiest_room_count: int = 0
    patient_flow: list[tuple[str, int]] = Field(default_factory=list)
    average_wait_minutes: dict[RoomId, float] = Field(default_factory=dict)


def _flow_labels(period: Period, ref: datetime) -> list[str]:
    if period == "today":
        return [f"{h:02d}h" for h in FLOW_HOURS]
    if period == "thisWeek":
        return list(WEEKDAY_LABELS)
    days = calendar.monthrange(ref.year, ref.month)[1]
    return [str(d) for d in range(1, days + 1)]


def _flow_label(period: Period, when: datetime) -> str:
    if period == "today":
        return f"{when.hour:02d}h"
    if period == "thisWeek":
        return WEEKDAY_LABELS[(when.weekday() + 1) % 7]
    return str(when.day)


def compute_statistics(
    patients: Iterable[Patient],
    period: Period,
    now: Optional[datetime] = None,
) -> Statistics:
    patients = list(patients)
    ref = to_local_naive(now) if now is not None else datetime.now()
    stats = Statistics(period=period)

    # Patients with any movement in the period
    stats.total_patients = sum(
        1 for p in patients if any(is_date_in_period(e.entry_date, period, now) for e in p.history)
    )

    # Exams: requests completed in the period
    exams: Counter = Counter()
    for p in patients:
        exam = p.requested_exam
        if not exam:
            continue
        if any(
            e.room_id == RoomId.REQUEST and e.exit_date is not None and is_date_in_period(e.exit_date, period, now)
            for e in p.history
        ):
            exams[exam] += 1
    stats.exams_by_type = dict(exams.most_common())
    stats.total_exams = sum(exams.values())

    # Journey: creation -> leaving the department (retrieval or archive)
    journeys: list[float] = []
    for p in patients:
        if not p.history:
            continue
        last = p.history[-1]
        if last.room_id not in (RoomId.ARCHIVE, RoomId.RETRAIT_CR_SORTIE):
            continue
        end = last.exit_date or last.entry_date
        if is_date_in_period(end, period, now):
            journeys.append((end - p.creation_date).total_seconds() / 3600)
    if journeys:
        stats.average_journey_hours = round(sum(journeys) / len(journeys), 1)

    # Busiest room, flow and waits
    per_room: Counter = Counter()
    flow: Counter = Counter()
    waits: dict[RoomId, list[float]] = defaultdict(list)
    for p in patients:
        for e in p.history:
            if not is_date_in_period(e.entry_date, period, now):
                continue
            per_room[e.room_id] += 1
            flow[_flow_label(period, to_local_naive(e.entry_date))] += 1
            if e.room_id != RoomId.ARCHIVE and e.exit_date is not None:
                minutes = (e.exit_date - e.entry_date).total_seconds() / 60
                if minutes > 0:
                    waits[e.room_id].append(minutes)

    if per_room:
        room, count = per_room.most_common(1)[0]
        stats.busiest_room, stats.busiest_room_count = room, count

    stats.patient_flow = [(label, flow.get(label, 0)) for label in _flow_labels(period, ref)]
    stats.average_wait_minutes = {room: round(sum(v) / len(v), 1) for room, v in waits.items()}
    return stats
