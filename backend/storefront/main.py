"""Main FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from storefront.api.dependencies import create_payment_service
from storefront.api.middleware import LoggingMiddleware, RateLimitMiddleware
from storefront.api.routes import router
from storefront.config import get_settings
from storefront.database.mongodb import mongodb
from storefront.models.request import ErrorResponse
from storefront.services.gateway import RazorpayGateway
from storefront.services.notification_service import NotificationService
from storefront.utils.logger import setup_logging

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting application...")
    gateway = RazorpayGateway(settings)
    notifier = NotificationService(settings)
    try:
        await mongodb.connect()
        if not gateway.is_configured:
            logger.warning("Razorpay credentials not set - payment endpoints will fail")

        app.state.gateway = gateway
        app.state.notifier = notifier
        app.state.payment_service = create_payment_service(mongodb, gateway, notifier, settings)
        logger.info("Application services initialized")

        yield

    finally:
        logger.info("Shutting down application...")
        await gateway.close()
        await notifier.close()
        await mongodb.disconnect()
        logger.info("All connections closed")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Order payments with Razorpay: checkout verification, webhooks and stock reservation",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add custom middleware
app.add_middleware(LoggingMiddleware)
app.add_middleware(
    RateLimitMiddleware,
    requests_per_period=settings.rate_limit_requests,
    period_seconds=settings.rate_limit_period,
    exempt_paths=settings.rate_limit_exempt_paths,
)

# Include routers
app.include_router(router)


# Exception handlers
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler."""
    logger.error("Unhandled exception: %s", exc, exc_info=True)
    body = ErrorResponse(error="Internal Server Error", detail="An unexpected error occurred")
    return JSONResponse(status_code=500, content=body.model_dump())


# Root endpoint
@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "status": "running",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "storefront.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
