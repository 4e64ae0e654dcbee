"""Routers package."""

from services.payments_service.routers.sessions import router as sessions_router
from services.payments_service.routers.webhooks import router as webhooks_router

__all__ = [
    "sessions_router",
    "webhooks_router",
]
