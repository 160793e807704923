# erp_engine/services/inventory_items.py
from __future__ import annotations

import logging
from datetime import date
from typing import List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

from erp_engine.core.errors import DuplicateNumber, NotFound
from erp_engine.core.money import D, money2, qty4
from erp_engine.db.capabilities import SchemaCapabilities
from erp_engine.models.inventory import InventoryItem, InventoryItemDetail
from erp_engine.schemas.inventory import InventoryItemCreate, InventoryItemUpdate
from erp_engine.services.audit_trail import record_audit, serialize_for_audit
from erp_engine.services.side_effects import SideEffectResult, report

logger = logging.getLogger(__name__)


def _load(db: Session, item_id: int, *, lock: bool = False) -> InventoryItem:
    q = db.query(InventoryItem).options(selectinload(InventoryItem.details)).filter(InventoryItem.id == item_id)
    if lock:
        q = q.with_for_update()
    item = q.first()
    if not item:
        raise NotFound(f"Inventory item {item_id} not found")
    return item


def _audit(db, caps, actor_id, action, item, before=None) -> SideEffectResult:
    return record_audit(
        db,
        caps,
        actor_id=actor_id,
        action=action,
        document_type="INVENTORY_ITEM",
        document_id=item.id,
        old_values=before,
        new_values=serialize_for_audit(item, children=("details",)),
    )


def create_item(
    db: Session,
    caps: SchemaCapabilities,
    payload: InventoryItemCreate,
    actor_id: Optional[int],
) -> Tuple[InventoryItem, List[SideEffectResult]]:
    code = payload.item_code.strip()
    if db.query(InventoryItem.id).filter(InventoryItem.item_code == code).first():
        raise DuplicateNumber(f"Item code {code} already exists", details={"item_code": code})

    item = InventoryItem(
        item_code=code,
        item_name=payload.item_name.strip(),
        description=payload.description or "",
        uom=payload.uom or "EA",
        is_active=True,
    )
    item.details.append(InventoryItemDetail(
        box_quantity=money2(payload.box_quantity),
        packet_quantity=qty4(payload.packet_quantity),
        version=1,
        effective_start_date=date.today(),
        is_active=True,
    ))
    db.add(item)
    db.flush()

    return item, report([_audit(db, caps, actor_id, "CREATE", item)], "create item", item.id)


def update_item(
    db: Session,
    caps: SchemaCapabilities,
    item_id: int,
    payload: InventoryItemUpdate,
    actor_id: Optional[int],
) -> Tuple[InventoryItem, List[SideEffectResult]]:
    """
    Header fields are updated in place. A change to box or packet quantity closes
    the active detail and opens version + 1, when the schema keeps history.
    """
    item = _load(db, item_id, lock=True)
    before = serialize_for_audit(item, children=("details",))
    data = payload.model_dump(exclude_unset=True)

    for field in ("item_name", "description", "uom"):
        if data.get(field) is not None:
            setattr(item, field, data[field])

    current = item.active_detail
    box = money2(data["box_quantity"]) if data.get("box_quantity") is not None else None
    packets = qty4(data["packet_quantity"]) if data.get("packet_quantity") is not None else None

    if current is None:
        if box is not None or packets is not None:
            last = max((d.version for d in item.details), default=0)
            item.details.append(InventoryItemDetail(
                box_quantity=box if box is not None else D(0),
                packet_quantity=packets if packets is not None else D(0),
                version=last + 1,
                effective_start_date=date.today(),
                is_active=True,
            ))
    else:
        new_box = box if box is not None else D(current.box_quantity)
        new_packets = packets if packets is not None else D(current.packet_quantity)
        changed = new_box != D(current.box_quantity) or new_packets != D(current.packet_quantity)

        if changed and caps.has_item_detail_versions:
            current.is_active = False
            current.effective_end_date = date.today()
            item.details.append(InventoryItemDetail(
                box_quantity=new_box,
                packet_quantity=new_packets,
                version=current.version + 1,
                effective_start_date=date.today(),
                is_active=True,
            ))
            logger.info("Item %s detail versioned to v%s", item.item_code, current.version + 1)
        elif changed:
            current.box_quantity = new_box
            current.packet_quantity = new_packets

    db.flush()
    return item, report([_audit(db, caps, actor_id, "UPDATE", item, before)], "update item", item.id)


def deactivate_item(
    db: Session,
    caps: SchemaCapabilities,
    item_id: int,
    actor_id: Optional[int],
) -> Tuple[InventoryItem, List[SideEffectResult]]:
    item = _load(db, item_id, lock=True)
    before = serialize_for_audit(item, children=("details",))
    item.is_active = False
    db.flush()
    return item, report([_audit(db, caps, actor_id, "DELETE", item, before)], "delete item", item.id)


def get_item(db: Session, item_id: int) -> InventoryItem:
    return _load(db, item_id)


def list_items(db: Session, *, q: Optional[str] = None, active_only: bool = True, limit: int = 100):
    query = db.query(InventoryItem).options(selectinload(InventoryItem.details)).order_by(InventoryItem.item_code)
    if active_only:
        query = query.filter(InventoryItem.is_active.is_(True))
    if q and q.strip():
        like = f"%{q.strip()}%"
        query = query.filter(or_(InventoryItem.item_code.ilike(like), InventoryItem.item_name.ilike(like)))
    return query.limit(limit).all()
