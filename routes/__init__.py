"""
API route modules.

Each module defines routes for one area.
"""

from routes.sync import router as sync_router
from routes.sources import router as sources_router
from routes.orders import router as orders_router

__all__ = [
    "sync_router",
    "sources_router",
    "orders_router",
]
