"""
pipelines/patrimony.py

Equipment and consumable inventory ("patrimony").

Stock items keep an append-only movement ledger. ``current_stock`` is a
derived value: every movement is appended first and the stock is then
recomputed from the whole ledger, never adjusted incrementally.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from pipelines.errors import InsufficientStockError, ReferentialIntegrityError, ValidationError
from pipelines.schemas import (
    Asset,
    LifeSheetLot,
    LifeSheetLotMovement,
    LifeSheetUnit,
    LifeSheetUnitMovement,
    MovementType,
    StockItem,
    StockMovement,
    utcnow,
)

logger = logging.getLogger(__name__)

LOW_STOCK_THRESHOLD = 10

_OUTGOING = (MovementType.EXIT, MovementType.CONSUMPTION)


def _ordered(movements: Iterable[StockMovement]) -> list[StockMovement]:
    # stable: same-date movements keep insertion order
    return sorted(movements, key=lambda m: m.date)


def _doc_ref(prefix: str, when: datetime) -> str:
    return f"{prefix}-{str(int(when.timestamp() * 1000))[-6:]}"


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


def compute_stock(movements: Iterable[StockMovement]) -> float:
    stock = 0.0
    for m in _ordered(movements):
        if m.type == MovementType.ENTRY:
            stock += m.quantity
        elif m.type in _OUTGOING:
            stock -= m.quantity
        elif m.type == MovementType.INVENTORY:
            stock = m.quantity
    return stock


def recompute_stock(item: StockItem) -> float:
    item.current_stock = compute_stock(item.movements)
    return item.current_stock


def stock_drift(item: StockItem) -> float:
    """Stored stock minus ledger stock; non-zero means the stored value drifted."""
    return item.current_stock - compute_stock(item.movements)


class LedgerRow(BaseModel):
    movement: StockMovement
    stock_after: float
    unit_price: float
    value_after: float


def stock_ledger(item: StockItem) -> list[LedgerRow]:
    """Movements in date order with the running stock and its value."""
    rows: list[LedgerRow] = []
    stock = 0.0
    price = 0.0
    for m in _ordered(item.movements):
        if m.type == MovementType.ENTRY:
            stock += m.quantity
            price = m.unit_price or price
        elif m.type in _OUTGOING:
            stock -= m.quantity
        else:
            stock = m.quantity
        rows.append(LedgerRow(movement=m, stock_after=stock, unit_price=price, value_after=stock * price))
    return rows


# ---------------------------------------------------------------------------
# Movements
# ---------------------------------------------------------------------------


def record_entry(
    item: StockItem,
    quantity: float,
    unit_price: float,
    *,
    document_ref: str = "",
    source: str = "",
    ordonnateur: str = "",
    when: Optional[datetime] = None,
) -> StockMovement:
    if quantity <= 0:
        raise ValidationError(["La quantité doit être positive."])
    if unit_price < 0:
        raise ValidationError(["Le prix unitaire ne peut pas être négatif."])

    when = when or utcnow()
    movement = StockMovement(
        date=when,
        type=MovementType.ENTRY,
        quantity=quantity,
        unit_price=unit_price,
        document_ref=document_ref or _doc_ref("BE", when),
        destination_or_source=source,
        ordonnateur=ordonnateur,
    )
    item.movements.append(movement)
    item.unit_price = unit_price
    recompute_stock(item)
    logger.info("Stock entry %s: +%g %s (now %g)", item.id, quantity, item.unit, item.current_stock)
    return movement


def record_exit(
    item: StockItem,
    quantity: float,
    *,
    destination: str = "",
    kind: MovementType = MovementType.EXIT,
    document_ref: str = "",
    ordonnateur: str = "",
    when: Optional[datetime] = None,
) -> StockMovement:
    """
    Raises:
        InsufficientStockError: If *quantity* exceeds the current stock.
    """
    if kind not in _OUTGOING:
        raise ValueError(f"{kind} is not an outgoing movement")
    if quantity <= 0:
        raise ValidationError(["La quantité doit être positive."])

    available = compute_stock(item.movements)
    if quantity > available:
        logger.warning("Rejected stock exit on %s: %g requested, %g available", item.id, quantity, available)
        raise InsufficientStockError(item.designation, available, quantity)

    when = when or utcnow()
    movement = StockMovement(
        date=when,
        type=kind,
        quantity=quantity,
        unit_price=item.unit_price,
        document_ref=document_ref or _doc_ref("BS", when),
        destination_or_source=destination,
        ordonnateur=ordonnateur,
    )
    item.movements.append(movement)
    recompute_stock(item)
    logger.info("Stock exit %s: -%g %s (now %g)", item.id, quantity, item.unit, item.current_stock)
    return movement


def record_inventory(
    item: StockItem,
    counted: float,
    *,
    ordonnateur: str = "",
    when: Optional[datetime] = None,
) -> StockMovement:
    """Physical count: resets the stock to *counted*."""
    if counted < 0:
        raise ValidationError(["Le stock compté ne peut pas être négatif."])
    when = when or utcnow()
    movement = StockMovement(
        date=when,
        type=MovementType.INVENTORY,
        quantity=counted,
        unit_price=item.unit_price,
        document_ref=_doc_ref("INV", when),
        ordonnateur=ordonnateur,
    )
    item.movements.append(movement)
    recompute_stock(item)
    logger.info("Inventory count %s: %g %s", item.id, counted, item.unit)
    return movement


def ensure_stock_item_deletable(item: StockItem) -> None:
    if item.movements:
        raise ReferentialIntegrityError(
            "Impossible de supprimer un article qui a des mouvements de stock.",
            {"item_id": item.id, "movements": len(item.movements)},
        )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_asset(asset: Asset) -> None:
    errors = []
    if not asset.family.strip():
        errors.append("La famille est requise.")
    if not asset.designation.strip():
        errors.append("La désignation est requise.")
    if asset.quantity < 1:
        errors.append("La quantité doit être au moins 1.")
    if asset.acquisition_cost < 0:
        errors.append("Le coût d'acquisition ne peut pas être négatif.")
    if errors:
        raise ValidationError(errors)


def validate_stock_item(item: StockItem) -> None:
    errors = []
    if not item.designation.strip():
        errors.append("La désignation est requise.")
    if not item.unit.strip():
        errors.append("L'unité est requise.")
    if errors:
        raise ValidationError(errors)


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


class PatrimonySummary(BaseModel):
    total_asset_value: float = 0.0
    total_stock_value: float = 0.0
    asset_count: int = 0
    functional_assets: int = 0
    non_functional_assets: int = 0
    assets_by_family: dict[str, int] = Field(default_factory=dict)
    stock_item_count: int = 0
    low_stock_items: list[StockItem] = Field(default_factory=list)


def patrimony_summary(
    assets: Iterable[Asset],
    items: Iterable[StockItem],
    low_stock_threshold: float = LOW_STOCK_THRESHOLD,
) -> PatrimonySummary:
    assets = list(assets)
    items = list(items)
    families: dict[str, int] = {}
    for a in assets:
        families[a.family] = families.get(a.family, 0) + 1

    return PatrimonySummary(
        total_asset_value=sum((a.acquisition_cost or 0) * a.quantity for a in assets),
        total_stock_value=sum(i.current_stock * i.unit_price for i in items),
        asset_count=len(assets),
        functional_assets=sum(1 for a in assets if a.is_functional),
        non_functional_assets=sum(1 for a in assets if not a.is_functional),
        assets_by_family=dict(sorted(families.items())),
        stock_item_count=len(items),
        low_stock_items=[i for i in items if i.current_stock <= low_stock_threshold],
    )


# ---------------------------------------------------------------------------
# Life sheets
# ---------------------------------------------------------------------------


class LifeSheetRow(BaseModel):
    movement_date: str
    nature: str
    entry: str = ""
    exit: str = ""
    units_balance: float = 0
    value_balance: float = 0


def life_sheet_lot_rows(sheet: LifeSheetLot) -> list[LifeSheetRow]:
    """Running balance in units and value for a lot sheet."""
    rows: list[LifeSheetRow] = []
    units = 0.0
    value = 0.0
    for m in sorted(sheet.movements, key=lambda m: m.movement_date):
        units += m.entry_units - m.exit_units
        value += m.entry_amount - m.exit_amount
        rows.append(
            LifeSheetRow(
                movement_date=m.movement_date.isoformat(),
                nature=m.nature,
                entry=_lot_side(m.entry_units, m.entry_amount, m.entry_destination),
                exit=_lot_side(m.exit_units, m.exit_amount, m.exit_destination),
                units_balance=units,
                value_balance=value,
            )
        )
    return rows


def _lot_side(units: float, amount: float, where: str) -> str:
    if not units and not amount:
        return ""
    parts = [f"{units:g} u", f"{amount:,.2f}"]
    if where:
        parts.append(where)
    return " / ".join(parts)


def life_sheet_unit_rows(sheet: LifeSheetUnit) -> list[LifeSheetRow]:
    """Running value for a single-unit sheet; the unit is present while value > 0."""
    rows: list[LifeSheetRow] = []
    value = 0.0
    for m in sorted(sheet.movements, key=lambda m: m.movement_date):
        value += m.entry_amount - m.exit_amount
        rows.append(
            LifeSheetRow(
                movement_date=m.movement_date.isoformat(),
                nature=m.nature,
                entry=_unit_side(m.entry_amount, m.entry_state, m.entry_destination),
                exit=_unit_side(m.exit_amount, m.exit_state, m.exit_destination),
                units_balance=1 if value > 0 else 0,
                value_balance=value,
            )
        )
    return rows


def _unit_side(amount: float, state: Optional[str], where: str) -> str:
    if not amount and not state:
        return ""
    parts = [f"{amount:,.2f}"]
    if state:
        parts.append(state)
    if where:
        parts.append(where)
    return " / ".join(parts)


def add_lot_movement(sheet: LifeSheetLot, movement: LifeSheetLotMovement) -> None:
    held = sum(m.entry_units - m.exit_units for m in sheet.movements)
    if movement.exit_units > held + movement.entry_units:
        raise ValidationError([f"Sortie de {movement.exit_units:g} unités supérieure au solde ({held:g})."])
    sheet.movements.append(movement)


def add_unit_movement(sheet: LifeSheetUnit, movement: LifeSheetUnitMovement) -> None:
    sheet.movements.append(movement)
