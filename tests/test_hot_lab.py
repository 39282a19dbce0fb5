from datetime import date, timedelta

import pytest

from pipelines.errors import ReferentialIntegrityError, ValidationError
from pipelines.hot_lab import (
    calculate_current_activity,
    convert_activity,
    dose_by_weight,
    find_product,
    hot_lab_stats,
    is_lot_expired,
    lot_current_activity,
    percent_remaining,
    safety_alerts,
    validate_lot,
    validate_preparation,
)
from pipelines.schemas import PreparationLog, TracerLot


def _lot(**kw) -> TracerLot:
    fields = {"id": "lot_a", "product_id": "prod_tc99m_mdp", "lot_number": "A1",
              "expiry_date": date.today() + timedelta(days=30)}
    fields.update(kw)
    return TracerLot(**fields)


def test_activity_halves_after_one_half_life(noon):
    activity = calculate_current_activity(1000, noon, "99mTc", now=noon + timedelta(hours=6.01))
    assert activity == pytest.approx(500)


def test_unknown_isotope_is_not_decayed(noon):
    assert calculate_current_activity(1000, noon, "999Xx", now=noon + timedelta(hours=10)) == 1000


def test_uncalibrated_lot_has_no_activity(noon):
    product = find_product("prod_tc99m_mdp")
    lot = _lot(initial_activity=1000)
    assert lot_current_activity(lot, product, noon) == 0
    assert percent_remaining(lot, product, noon) is None


def test_percent_remaining(noon):
    lot = _lot(product_id="prod_f18_fdg", initial_activity=400, calibration_date_time=noon)
    pct = percent_remaining(lot, find_product("prod_f18_fdg"), noon + timedelta(hours=1.83 * 2))
    assert pct == pytest.approx(25)


def test_units_and_dose():
    assert convert_activity(1, "GBq", "MBq") == 1000
    assert convert_activity(37, "MBq", "mCi") == pytest.approx(1)
    assert dose_by_weight(700, 35) == pytest.approx(350)
    with pytest.raises(ValueError):
        convert_activity(1, "Bq", "MBq")


def test_expiry_is_strictly_before_today():
    today = date(2024, 5, 10)
    assert not is_lot_expired(_lot(expiry_date=today), today)
    assert is_lot_expired(_lot(expiry_date=today - timedelta(days=1)), today)


def test_validate_lot_collects_errors():
    with pytest.raises(ValidationError) as exc:
        validate_lot(_lot(product_id="nope", lot_number=" ", expiry_date=date.today() - timedelta(days=1),
                          initial_activity=-1))
    assert len(exc.value.messages) == 4


def test_validate_preparation(noon):
    lot = _lot()
    validate_preparation(
        PreparationLog(tracer_lot_id=lot.id, activity_prepared=10, prepared_by="Tech", preparation_date_time=noon),
        [lot],
        now=noon,
    )
    with pytest.raises(ValidationError) as exc:
        validate_preparation(
            PreparationLog(tracer_lot_id="missing", activity_prepared=0, prepared_by="",
                           preparation_date_time=noon + timedelta(hours=1)),
            [lot],
            now=noon,
        )
    assert len(exc.value.messages) == 4


def test_stats_count_todays_preparations(noon):
    lots = [_lot(), _lot(id="lot_b", lot_number="B", expiry_date=date.today() - timedelta(days=2))]
    preps = [
        PreparationLog(tracer_lot_id="lot_a", activity_prepared=300, prepared_by="T", preparation_date_time=noon),
        PreparationLog(tracer_lot_id="lot_a", activity_prepared=50, prepared_by="T",
                       preparation_date_time=noon - timedelta(days=2)),
    ]
    stats = hot_lab_stats(lots, preps)
    assert (stats.total_lots, stats.available_lots, stats.expired_lots) == (2, 1, 1)
    assert stats.todays_preparations == 1
    assert stats.todays_total_activity == 300


def test_safety_alerts(noon):
    lots = [
        _lot(id="soon", lot_number="SOON", expiry_date=date.today() + timedelta(days=1)),
        _lot(id="weak", lot_number="WEAK", product_id="prod_tc99m_pertech", initial_activity=20,
             unit="GBq", calibration_date_time=noon - timedelta(hours=30)),
        _lot(id="old", lot_number="OLD", expiry_date=date.today() - timedelta(days=1)),
    ]
    preps = [PreparationLog(id="big", tracer_lot_id="soon", activity_prepared=1500, prepared_by="T",
                            preparation_date_time=noon)]
    alerts = safety_alerts(lots, preps, now=noon)
    kinds = {(a.type, a.lot_id or a.prep_id) for a in alerts}
    assert kinds == {("warning", "soon"), ("info", "big"), ("warning", "weak")}


def test_demo_lab_raises_expected_alerts(demo_db):
    alerts = safety_alerts(demo_db.lots.all(), demo_db.preparations.all())
    flagged = {a.lot_id for a in alerts if a.lot_id}
    assert {"lot_fdg_1", "lot_tc_1"} <= flagged


def test_database_lot_and_preparation_rules(demo_db):
    with pytest.raises(ReferentialIntegrityError):
        demo_db.delete_lot("lot_fdg_1")

    with pytest.raises(ValidationError):
        demo_db.add_preparation(
            PreparationLog(tracer_lot_id="lot_mdp_1", activity_prepared=100, prepared_by="T", patient_id="PAT999")
        )

    prep = demo_db.add_preparation(
        PreparationLog(tracer_lot_id="lot_mdp_1", activity_prepared=100, prepared_by="T", patient_id="PAT003")
    )
    demo_db.delete_preparation(prep.id)
    demo_db.delete_lot("lot_mdp_1")
    assert "lot_mdp_1" not in demo_db.lots
