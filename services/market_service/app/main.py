"""FastAPI application for the Market Service."""

from fastapi import FastAPI
from libs.common.error_handler import add_exception_handlers
from libs.common.middleware import add_observability_middleware
from services.market_service.routers import (
    cart_router,
    checkout_router,
    offers_router,
    orders_router,
)


def create_app() -> FastAPI:
    """Create and configure the Market Service FastAPI app."""
    app = FastAPI(
        title="Perfume Market Service",
        version="0.1.0",
        description="Offers, carts, checkout settlement and orders.",
    )

    add_observability_middleware(app)
    add_exception_handlers(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "market"}

    app.include_router(offers_router, prefix="/market")
    app.include_router(cart_router, prefix="/market")
    app.include_router(checkout_router, prefix="/market")
    app.include_router(orders_router, prefix="/market")

    return app


app = create_app()
