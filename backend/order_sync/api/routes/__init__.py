"""API routes."""

from fastapi import APIRouter

from order_sync.api.routes import business_day, loyalty, orders, sync

api_router = APIRouter()

api_router.include_router(sync.router, prefix="/sync", tags=["sync"])
api_router.include_router(orders.router, prefix="/orders", tags=["orders"])
api_router.include_router(loyalty.router, prefix="/loyalty", tags=["loyalty"])
api_router.include_router(business_day.router, prefix="/business-day", tags=["business-day"])
