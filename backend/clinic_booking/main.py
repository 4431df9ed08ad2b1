# backend/clinic_booking/main.py
"""
Clinic booking API.

Mounts the versioned routes under /api/v1, registers the problem+json
error handlers and exposes health and Prometheus endpoints.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging
import os
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI, Response

from .core.config import is_running_tests, settings
from .errors import register_error_handlers
from .monitoring.prometheus_metrics import prometheus_metrics
from .routes.v1 import (
    admin as admin_v1,
    bookings as bookings_v1,
    checkin as checkin_v1,
    reservations as reservations_v1,
    slots as slots_v1,
)

API_TITLE = "Clinic Booking API"
API_VERSION = "1.0.0"

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup/shutdown without deprecated events."""
    logger.info(f"{API_TITLE} starting up...")
    logger.info(
        f"Environment: {settings.environment} (SITE_MODE={os.getenv('SITE_MODE', '') or 'unset'})"
    )
    logger.info(
        "Booking policy: initial status %s, reservation backend %s, timezone %s",
        settings.initial_booking_status,
        settings.reservation_backend,
        settings.clinic_timezone,
    )
    if is_running_tests():
        logger.info("Running under pytest (test mode active)")
    yield
    logger.info(f"{API_TITLE} shutting down...")


app = FastAPI(
    title=API_TITLE,
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=app_lifespan,
)
register_error_handlers(app)

api_v1 = APIRouter(prefix="/api/v1")
api_v1.include_router(reservations_v1.router, prefix="/reservations")
api_v1.include_router(bookings_v1.router, prefix="/bookings")
api_v1.include_router(checkin_v1.router, prefix="/checkin")
api_v1.include_router(slots_v1.router, prefix="/slots")
api_v1.include_router(admin_v1.router, prefix="/admin")
app.include_router(api_v1)


@app.get("/health", include_in_schema=False)
def health_check(response: Response) -> dict:
    response.headers["Cache-Control"] = "no-store"
    return {
        "status": "healthy",
        "service": "clinic-booking-api",
        "version": API_VERSION,
        "environment": settings.environment,
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    }


@app.get("/metrics", include_in_schema=False)
def metrics_endpoint() -> Response:
    return Response(
        content=prometheus_metrics.get_metrics(),
        media_type=prometheus_metrics.content_type,
        headers={"Cache-Control": "no-store", "Pragma": "no-cache"},
    )
