# erp_engine/services/inventory_reconciler.py
"""
Box/packet stock reconciliation.

Stock is held as ``box_quantity`` (2 dp) on the item's active detail row, with
``packet_quantity`` meaning packets-per-box. Every movement is done in units:

    units      = box_quantity * packets_per_box
    new_units  = units + delta            (INCREASE)
               = max(0, units - delta)    (DECREASE)
    new_boxes  = round(new_units / packets_per_box, 2)

Fractional boxes are kept on every path so an apply followed by the reversal
lands back on the starting box count (within 0.01).
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import case, select, update
from sqlalchemy.orm import Session

from erp_engine.core.money import D, ZERO, money2
from erp_engine.models.inventory import InventoryItem, InventoryItemDetail
from erp_engine.services.side_effects import SideEffectResult

logger = logging.getLogger(__name__)

ONE = Decimal("1")


class Direction(str, enum.Enum):
    INCREASE = "INCREASE"
    DECREASE = "DECREASE"

    def flipped(self) -> "Direction":
        return Direction.DECREASE if self is Direction.INCREASE else Direction.INCREASE


@dataclass
class StockDelta:
    item_code: str
    units: Decimal
    packets_hint: Optional[Decimal] = None  # e.g. the PO line's packet count


def compute_box_quantity(box_quantity, packets_per_box, delta_units, direction: Direction) -> Decimal:
    ppb = D(packets_per_box)
    if ppb <= 0:
        ppb = ONE
    units = D(box_quantity) * ppb
    if direction is Direction.INCREASE:
        new_units = units + D(delta_units)
    else:
        new_units = max(ZERO, units - D(delta_units))
    return money2(new_units / ppb)


def _merge(deltas: Iterable[StockDelta]) -> Dict[str, StockDelta]:
    merged: Dict[str, StockDelta] = {}
    for d in deltas:
        code = (d.item_code or "").strip()
        units = D(d.units)
        if not code or units <= 0:
            continue
        cur = merged.get(code)
        if cur is None:
            merged[code] = StockDelta(code, units, d.packets_hint)
        else:
            cur.units += units
            if (cur.packets_hint is None or D(cur.packets_hint) <= 0) and d.packets_hint:
                cur.packets_hint = d.packets_hint
    return merged


def _load_active_details(db: Session, codes: List[str]) -> Dict[str, InventoryItemDetail]:
    rows = db.execute(
        select(InventoryItem.item_code, InventoryItemDetail)
        .join(InventoryItemDetail, InventoryItemDetail.inventory_item_id == InventoryItem.id)
        .where(
            InventoryItem.item_code.in_(codes),
            InventoryItemDetail.is_active.is_(True),
            InventoryItemDetail.effective_end_date.is_(None),
        )
        .with_for_update()
    ).all()
    return {code: detail for code, detail in rows}


def _plan(
    details: Dict[str, InventoryItemDetail],
    merged: Dict[str, StockDelta],
    direction: Direction,
) -> Tuple[Dict[int, Decimal], Dict[int, Decimal], List[str]]:
    new_boxes: Dict[int, Decimal] = {}
    ppb_fix: Dict[int, Decimal] = {}
    missing: List[str] = []

    for code, delta in merged.items():
        detail = details.get(code)
        if detail is None:
            logger.warning("Inventory item not found for item_code=%s, skipping", code)
            missing.append(code)
            continue

        ppb = D(detail.packet_quantity)
        if ppb <= 0:
            hint = D(delta.packets_hint)
            ppb = hint if hint > 0 else ONE
            ppb_fix[detail.id] = ppb
            logger.info("Established packets_per_box=%s for %s", ppb, code)

        new_boxes[detail.id] = compute_box_quantity(detail.box_quantity, ppb, delta.units, direction)

    return new_boxes, ppb_fix, missing


def apply_inventory_batch(
    db: Session,
    deltas: Iterable[StockDelta],
    direction: Direction,
    *,
    is_reversal: bool = False,
) -> SideEffectResult:
    """
    Move stock for a whole document's lines: one lookup, one UPDATE.

    is_reversal flips the direction (undoing an earlier apply). Runs inside a
    savepoint; a failure is logged and returned, the caller's transaction goes on.
    """
    effective = direction.flipped() if is_reversal else direction
    merged = _merge(deltas)
    if not merged:
        return SideEffectResult.skip("inventory", "no stock lines", direction=effective.value)

    try:
        with db.begin_nested():
            details = _load_active_details(db, list(merged))
            new_boxes, ppb_fix, missing = _plan(details, merged, effective)

            if new_boxes:
                values = {"box_quantity": case(new_boxes, value=InventoryItemDetail.id)}
                if ppb_fix:
                    values["packet_quantity"] = case(
                        ppb_fix,
                        value=InventoryItemDetail.id,
                        else_=InventoryItemDetail.packet_quantity,
                    )
                db.execute(
                    update(InventoryItemDetail)
                    .where(InventoryItemDetail.id.in_(list(new_boxes)))
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                for detail in details.values():
                    db.expire(detail)
    except Exception as exc:
        logger.exception("Inventory reconciliation failed (%s, %s items)", effective.value, len(merged))
        return SideEffectResult.failure("inventory", exc, direction=effective.value)

    return SideEffectResult.success(
        "inventory",
        direction=effective.value,
        updated={code: str(new_boxes[details[code].id]) for code in merged if code in details},
        missing=missing,
    )


def apply_inventory_delta(
    db: Session,
    item_code: str,
    delta_units,
    direction: Direction,
    *,
    packets_hint=None,
    is_reversal: bool = False,
) -> SideEffectResult:
    return apply_inventory_batch(
        db,
        [StockDelta(item_code, D(delta_units), D(packets_hint) if packets_hint is not None else None)],
        direction,
        is_reversal=is_reversal,
    )
