"""FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError

from price_sync.api.routers import campaigns, products
from price_sync.config import get_settings
from price_sync.db.base import translate_store_error
from price_sync.errors import (
    ConflictError,
    NotFoundError,
    PriceSyncError,
    TransientIOError,
    ValidationError,
)
from price_sync.services.scheduler import ScheduleTrigger

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConflictError: status.HTTP_409_CONFLICT,
    TransientIOError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def error_status_code(error: PriceSyncError) -> int:
    for error_class, code in ERROR_STATUS_CODES.items():
        if isinstance(error, error_class):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the price sync scheduler when enabled."""
    trigger = None
    if settings.scheduler_enabled:
        trigger = ScheduleTrigger()
        trigger.start()

    yield

    if trigger is not None:
        await trigger.stop()


app = FastAPI(
    title="price-sync API",
    description="Campaign discounts and sale price synchronization",
    version="0.1.0",
    docs_url="/api/docs" if settings.debug else None,
    redoc_url="/api/redoc" if settings.debug else None,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PriceSyncError)
async def price_sync_error_handler(request: Request, exc: PriceSyncError) -> JSONResponse:
    return JSONResponse(
        status_code=error_status_code(exc),
        content={"detail": exc.message},
    )


@app.exception_handler(DBAPIError)
async def store_error_handler(request: Request, exc: DBAPIError) -> JSONResponse:
    translated = translate_store_error(exc)
    if translated is None:
        logger.error(
            f"Unhandled database error on {request.method} {request.url.path}",
            exc_info=exc,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal database error"},
        )

    logger.warning(f"{request.method} {request.url.path} failed: {translated.message}")
    return JSONResponse(
        status_code=error_status_code(translated),
        content={"detail": translated.message},
    )


# Include routers
app.include_router(campaigns.router, prefix=settings.api_prefix)
app.include_router(products.router, prefix=settings.api_prefix)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}
