# erp_engine/api/routes_inventory_items.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from erp_engine.api.deps import Actor, current_actor, get_database
from erp_engine.api.response import ok, side_effects_meta
from erp_engine.db.session import Database
from erp_engine.schemas.inventory import InventoryItemCreate, InventoryItemOut, InventoryItemUpdate
from erp_engine.services import inventory_items as svc

router = APIRouter(prefix="/inventory-items", tags=["Inventory - Items"])


def _out(item) -> dict:
    return InventoryItemOut.model_validate(item).model_dump()


@router.get("")
def list_items(
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
    q: Optional[str] = Query(None),
    include_inactive: bool = Query(False),
    limit: int = Query(100, ge=1, le=500),
):
    with database.session() as db:
        rows = svc.list_items(db, q=q, active_only=not include_inactive, limit=limit)
        return ok([_out(r) for r in rows])


@router.get("/{item_id}")
def get_item(item_id: int, database: Database = Depends(get_database), me: Actor = Depends(current_actor)):
    with database.session() as db:
        return ok(_out(svc.get_item(db, item_id)))


@router.post("", status_code=201)
def create_item(
    payload: InventoryItemCreate,
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
):
    with database.transaction() as db:
        item, effects = svc.create_item(db, database.capabilities, payload, me.id)
        data = _out(item)
    return ok(data, meta=side_effects_meta(effects), status_code=201)


@router.put("/{item_id}")
def update_item(
    item_id: int,
    payload: InventoryItemUpdate,
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
):
    with database.transaction() as db:
        item, effects = svc.update_item(db, database.capabilities, item_id, payload, me.id)
        data = _out(item)
    return ok(data, meta=side_effects_meta(effects))


@router.delete("/{item_id}")
def delete_item(item_id: int, database: Database = Depends(get_database), me: Actor = Depends(current_actor)):
    with database.transaction() as db:
        item, effects = svc.deactivate_item(db, database.capabilities, item_id, me.id)
        data = _out(item)
    return ok(data, meta=side_effects_meta(effects))
