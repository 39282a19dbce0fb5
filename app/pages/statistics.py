"""
app/pages/statistics.py

Period statistics: patient and exam counts, journey time, busiest room,
patient flow and average wait per room.
"""

from __future__ import annotations

import streamlit as st

from app.renderers import room_label
from app.ui import current_period, inject_theme, metric_card, page_context
from pipelines.periods import PERIOD_LABELS
from pipelines.reporting import compute_statistics


def render() -> None:
    inject_theme()
    db, _, _ = page_context()
    period = current_period()
    stats = compute_statistics(db.patients.all(), period)

    st.title("Statistics")
    st.caption(PERIOD_LABELS[period])

    c1, c2, c3, c4 = st.columns(4)
    with c1:
        metric_card("Patients", stats.total_patients)
    with c2:
        metric_card("Exams", stats.total_exams)
    with c3:
        metric_card(
            "Average journey",
            f"{stats.average_journey_hours:g} h" if stats.average_journey_hours is not None else "—",
        )
    with c4:
        metric_card(
            "Busiest room",
            room_label(stats.busiest_room) if stats.busiest_room else "—",
            f"{stats.busiest_room_count} entries" if stats.busiest_room else None,
        )

    st.subheader("Patient flow")
    st.bar_chart({label: count for label, count in stats.patient_flow})

    left, right = st.columns(2)
    with left:
        st.subheader("Exams by type")
        if stats.exams_by_type:
            st.dataframe(
                [{"Exam": k, "Count": v} for k, v in stats.exams_by_type.items()],
                use_container_width=True,
                hide_index=True,
            )
        else:
            st.caption("No exam requested in this period.")
    with right:
        st.subheader("Average wait (minutes)")
        if stats.average_wait_minutes:
            st.bar_chart({room_label(r): m for r, m in stats.average_wait_minutes.items()})
        else:
            st.caption("No completed stay in this period.")
