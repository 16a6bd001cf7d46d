"""
FastAPI application factory.

* Registers routes for rides, wallets and admin.
* Starts / stops the background reconciliation worker via lifespan events.
* Maps the core's error taxonomy onto HTTP status codes.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from ridecore.api.middleware import limiter
from ridecore.api.routes import admin, rides, wallets
from ridecore.domain.errors import (
    ConcurrencyError,
    GatewayError,
    InsufficientFunds,
    NotFound,
    PolicyMissing,
    RideCoreError,
    StateError,
    ValidationError,
)
from ridecore.workers import reconciler as _reconciler

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Most specific first; the first isinstance match wins
ERROR_STATUS: tuple[tuple[type[RideCoreError], int], ...] = (
    (ValidationError, 422),
    (NotFound, 404),
    (StateError, 409),
    (InsufficientFunds, 402),
    (GatewayError, 502),
    (PolicyMissing, 503),
    (ConcurrencyError, 409),
)


def status_for(exc: RideCoreError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status
    return 500


async def ridecore_error_handler(request: Request, exc: RideCoreError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.warning("%s %s -> %d: %s", request.method, request.url.path, status, exc)
    return JSONResponse(
        status_code=status,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the reconciliation worker on startup; stop on shutdown."""
    await _reconciler.start_reconcile_loop()
    yield
    await _reconciler.stop_reconcile_loop()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Ride Brokerage Core API",
        description=(
            "Brokers rides between passengers and drivers: lifecycle, "
            "demand- and time-based fares, policy-driven cancellations "
            "and wallet settlement."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Domain errors
    app.add_exception_handler(RideCoreError, ridecore_error_handler)

    # Routers
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(wallets.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
