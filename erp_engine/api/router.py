# erp_engine/api/router.py
from fastapi import APIRouter
from erp_engine.api import (
    # Procurement
    routes_procurement,
    routes_inventory_items,

    # Settlement
    routes_invoices,
    routes_ap_payments,
    routes_ar_receipts,
)

api_router = APIRouter()

api_router.include_router(routes_procurement.router)
api_router.include_router(routes_inventory_items.router)
api_router.include_router(routes_invoices.router)
api_router.include_router(routes_ap_payments.router)
api_router.include_router(routes_ar_receipts.router)
