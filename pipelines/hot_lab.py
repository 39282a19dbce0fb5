"""
pipelines/hot_lab.py

Hot-lab arithmetic: radioactive decay of tracer lots, expiry, validation
of new lots / preparations, daily statistics and safety alerts.
"""

from __future__ import annotations

import logging
import math
from datetime import date, datetime, timedelta
from typing import Iterable, Literal, Optional

from pydantic import BaseModel

from pipelines.errors import ValidationError
from pipelines.periods import to_local_naive
from pipelines.schemas import PreparationLog, RadiopharmaceuticalProduct, TracerLot, utcnow

logger = logging.getLogger(__name__)

# Half-lives in hours
HALF_LIVES_HOURS: dict[str, float] = {
    "99mTc": 6.01,
    "18F": 1.83,
    "68Ga": 1.13,
    "131I": 192.8,
    "123I": 13.2,
    "111In": 67.3,
}

RADIOPHARMACEUTICAL_PRODUCTS: tuple[RadiopharmaceuticalProduct, ...] = (
    RadiopharmaceuticalProduct(id="prod_tc99m_pertech", name="99mTc-Pertechnetate (Éluat)", isotope="99mTc", unit="GBq"),
    RadiopharmaceuticalProduct(id="prod_tc99m_mdp", name="99mTc-MDP (Kit)", isotope="99mTc", unit="MBq"),
    RadiopharmaceuticalProduct(id="prod_f18_fdg", name="18F-FDG", isotope="18F", unit="MBq"),
    RadiopharmaceuticalProduct(id="prod_ga68_dotatate", name="68Ga-DOTATATE", isotope="68Ga", unit="MBq"),
    RadiopharmaceuticalProduct(id="prod_i131_iodure", name="131I-Iodure de Sodium", isotope="131I", unit="MBq"),
)

EXPIRY_WARNING_DAYS = 3
HIGH_ACTIVITY_THRESHOLD = 1000
LOW_RESIDUAL_PERCENT = 10.0

# Conversion factors to MBq
_TO_MBQ: dict[str, float] = {"MBq": 1.0, "mCi": 37.0, "GBq": 1000.0, "Ci": 37000.0}


def find_product(product_id: str, products: Iterable[RadiopharmaceuticalProduct] = RADIOPHARMACEUTICAL_PRODUCTS):
    return next((p for p in products if p.id == product_id), None)


# ---------------------------------------------------------------------------
# Decay
# ---------------------------------------------------------------------------


def decayed_activity(initial_activity: float, half_life_hours: float, elapsed_hours: float) -> float:
    """A(t) = A0 * 0.5 ** (t / T)"""
    return initial_activity * math.pow(0.5, elapsed_hours / half_life_hours)


def calculate_current_activity(
    initial_activity: float,
    calibration: datetime,
    isotope: str,
    now: Optional[datetime] = None,
) -> float:
    half_life = HALF_LIVES_HOURS.get(isotope)
    if half_life is None:
        logger.warning("Unknown half-life for isotope %s; activity left undecayed.", isotope)
        return initial_activity
    now = now or utcnow()
    elapsed = (to_local_naive(now) - to_local_naive(calibration)).total_seconds() / 3600
    return decayed_activity(initial_activity, half_life, elapsed)


def lot_current_activity(
    lot: TracerLot,
    product: Optional[RadiopharmaceuticalProduct],
    now: Optional[datetime] = None,
) -> float:
    """Decay-corrected activity of *lot*; 0 when it was never calibrated."""
    if not lot.initial_activity or lot.calibration_date_time is None or product is None:
        return 0.0
    return calculate_current_activity(lot.initial_activity, lot.calibration_date_time, product.isotope, now)


def percent_remaining(
    lot: TracerLot,
    product: Optional[RadiopharmaceuticalProduct],
    now: Optional[datetime] = None,
) -> Optional[float]:
    if not lot.initial_activity or lot.calibration_date_time is None or product is None:
        return None
    return lot_current_activity(lot, product, now) / lot.initial_activity * 100


def dose_by_weight(base_activity: float, patient_weight: float, standard_weight: float = 70) -> float:
    return base_activity * patient_weight / standard_weight


def convert_activity(value: float, from_unit: str, to_unit: str) -> float:
    try:
        return value * _TO_MBQ[from_unit] / _TO_MBQ[to_unit]
    except KeyError as exc:
        raise ValueError(f"Unknown activity unit: {exc.args[0]}") from exc


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------


def is_lot_expired(lot: TracerLot, today: Optional[date] = None) -> bool:
    return lot.expiry_date < (today or date.today())


def available_lots(lots: Iterable[TracerLot], today: Optional[date] = None) -> list[TracerLot]:
    return [lot for lot in lots if not is_lot_expired(lot, today)]


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_lot(lot: TracerLot, today: Optional[date] = None) -> None:
    errors: list[str] = []
    today = today or date.today()

    if not lot.product_id:
        errors.append("Le produit est requis")
    elif find_product(lot.product_id) is None:
        errors.append("Le produit sélectionné est inconnu")
    if not lot.lot_number.strip():
        errors.append("Le numéro de lot est requis")
    if lot.expiry_date < today:
        errors.append("La date d'expiration ne peut pas être dans le passé")
    if lot.initial_activity is not None and lot.initial_activity <= 0:
        errors.append("L'activité initiale doit être positive")
    if lot.quantity_received <= 0:
        errors.append("La quantité reçue doit être positive")

    if errors:
        raise ValidationError(errors)


def validate_preparation(
    prep: PreparationLog,
    lots: Iterable[TracerLot],
    now: Optional[datetime] = None,
) -> None:
    errors: list[str] = []
    now = now or utcnow()

    if not prep.tracer_lot_id:
        errors.append("Le lot de traceur est requis")
    elif not any(lot.id == prep.tracer_lot_id for lot in lots):
        errors.append("Le lot de traceur sélectionné n'existe pas")
    if prep.activity_prepared <= 0:
        errors.append("L'activité préparée doit être positive")
    if to_local_naive(prep.preparation_date_time) > to_local_naive(now):
        errors.append("La date de préparation ne peut pas être dans le futur")
    if not prep.prepared_by.strip():
        errors.append("Le nom du préparateur est requis")

    if errors:
        raise ValidationError(errors)


# ---------------------------------------------------------------------------
# Stats / alerts
# ---------------------------------------------------------------------------


class HotLabStats(BaseModel):
    total_lots: int
    available_lots: int
    expired_lots: int
    total_preparations: int
    todays_preparations: int
    todays_total_activity: float


class SafetyAlert(BaseModel):
    type: Literal["warning", "danger", "info"]
    message: str
    lot_id: Optional[str] = None
    prep_id: Optional[str] = None


def _is_today(when: datetime, today: date) -> bool:
    return to_local_naive(when).date() == today


def hot_lab_stats(
    lots: list[TracerLot],
    preparations: list[PreparationLog],
    today: Optional[date] = None,
) -> HotLabStats:
    today = today or date.today()
    available = len(available_lots(lots, today))
    todays = [p for p in preparations if _is_today(p.preparation_date_time, today)]
    return HotLabStats(
        total_lots=len(lots),
        available_lots=available,
        expired_lots=len(lots) - available,
        total_preparations=len(preparations),
        todays_preparations=len(todays),
        todays_total_activity=sum(p.activity_prepared for p in todays),
    )


def safety_alerts(
    lots: list[TracerLot],
    preparations: list[PreparationLog],
    products: Iterable[RadiopharmaceuticalProduct] = RADIOPHARMACEUTICAL_PRODUCTS,
    now: Optional[datetime] = None,
) -> list[SafetyAlert]:
    """
    - warning: a usable lot expires within 3 days
    - info: a preparation made today above 1000 (in its own unit)
    - warning: a calibrated lot has less than 10% of its activity left
    """
    products = list(products)
    now = now or utcnow()
    today = to_local_naive(now).date()
    horizon = today + timedelta(days=EXPIRY_WARNING_DAYS)
    alerts: list[SafetyAlert] = []

    for lot in lots:
        if not is_lot_expired(lot, today) and lot.expiry_date <= horizon:
            alerts.append(
                SafetyAlert(
                    type="warning",
                    message=f"Le lot {lot.lot_number} expire dans moins de {EXPIRY_WARNING_DAYS} jours",
                    lot_id=lot.id,
                )
            )

    for prep in preparations:
        if _is_today(prep.preparation_date_time, today) and prep.activity_prepared > HIGH_ACTIVITY_THRESHOLD:
            alerts.append(
                SafetyAlert(
                    type="info",
                    message=f"Préparation d'activité élevée : {prep.activity_prepared:g} {prep.unit}",
                    prep_id=prep.id,
                )
            )

    for lot in lots:
        pct = percent_remaining(lot, find_product(lot.product_id, products), now)
        if pct is not None and 0 < pct < LOW_RESIDUAL_PERCENT:
            alerts.append(
                SafetyAlert(
                    type="warning",
                    message=f"Activité résiduelle faible pour le lot {lot.lot_number} ({pct:.1f}%)",
                    lot_id=lot.id,
                )
            )

    return alerts
