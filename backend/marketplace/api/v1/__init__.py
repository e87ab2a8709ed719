"""
API v1 package.

Aggregates the v1 routers under a single router mounted at the
configured API prefix.
"""

from fastapi import APIRouter

from marketplace.api.v1.inventory import router as inventory_router
from marketplace.api.v1.orders import router as orders_router
from marketplace.api.v1.payments import router as payments_router
from marketplace.api.v1.webhooks import router as webhooks_router

api_router = APIRouter()
api_router.include_router(orders_router)
api_router.include_router(inventory_router)
api_router.include_router(payments_router)
api_router.include_router(webhooks_router)

__all__ = ["api_router"]
