"""Centralized v1 API router: all module routers are included here."""

from fastapi import APIRouter

from src.modules.assignment.router import router as delivery_partner_router
from src.modules.orders.router import items_router as order_items_router
from src.modules.orders.router import router as orders_router
from src.modules.vendor.router import router as vendor_router

v1_router = APIRouter(prefix="/api/v1")
v1_router.include_router(orders_router)
v1_router.include_router(order_items_router)
v1_router.include_router(vendor_router)
v1_router.include_router(delivery_partner_router)
