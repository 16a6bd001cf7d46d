"""
Ride endpoints
==============

POST /api/v1/rides/estimate            -- price a trip without booking it
POST /api/v1/rides                     -- request a ride (201 Created)
GET  /api/v1/rides/{ride_id}           -- ride status, pricing and payment
POST /api/v1/rides/{ride_id}/assign    -- driver accepts a pending ride
POST /api/v1/rides/{ride_id}/advance   -- next forward status
POST /api/v1/rides/{ride_id}/cancel    -- cancel under the active policy
POST /api/v1/rides/{ride_id}/capture   -- pre-capture the estimated fare
POST /api/v1/rides/{ride_id}/settle    -- retry a failed settlement
POST /api/v1/rides/{ride_id}/refund    -- retry an outstanding refund

Every handler is a thin translation onto ``RideLifecycle``; domain errors
are mapped to status codes by the application's exception handler.
"""

from fastapi import APIRouter, Depends, Request

from ridecore.api.dependencies import get_lifecycle
from ridecore.api.middleware import RATE_LIMIT, limiter
from ridecore.api.schemas import (
    AdvanceRequest,
    AssignDriverRequest,
    CancelRequest,
    ErrorResponse,
    FareBreakdownResponse,
    FareEstimateRequest,
    RideCreateRequest,
    RideResponse,
    SettleRequest,
)
from ridecore.services.ride_lifecycle import RideLifecycle

router = APIRouter(prefix="/rides", tags=["rides"])

_errors = {
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}


@router.post(
    "/estimate",
    response_model=FareBreakdownResponse,
    summary="Estimate a fare",
)
@limiter.limit(RATE_LIMIT)
async def estimate_fare(
    request: Request,
    body: FareEstimateRequest,
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.quote(
        body.pickup.to_domain(),
        body.destination.to_domain(),
        body.vehicle_class,
        traffic=body.traffic,
    )


@router.post(
    "",
    status_code=201,
    response_model=RideResponse,
    summary="Request a ride",
    responses=_errors,
)
@limiter.limit(RATE_LIMIT)
async def create_ride(
    request: Request,
    body: RideCreateRequest,
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.request_ride(
        body.passenger_id,
        body.pickup.to_domain(),
        body.destination.to_domain(),
        body.vehicle_class,
        body.payment_method,
        traffic=body.traffic,
        idempotency_key=body.idempotency_key,
    )


@router.get(
    "/{ride_id}",
    response_model=RideResponse,
    summary="Get a ride",
    responses=_errors,
)
@limiter.limit(RATE_LIMIT)
async def get_ride(
    request: Request,
    ride_id: str,
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.get_ride(ride_id)


@router.post(
    "/{ride_id}/assign",
    response_model=RideResponse,
    summary="Assign a driver to a pending ride",
    responses=_errors,
)
@limiter.limit(RATE_LIMIT)
async def assign_driver(
    request: Request,
    ride_id: str,
    body: AssignDriverRequest,
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.assign_driver(ride_id, body.driver_id)


@router.post(
    "/{ride_id}/advance",
    response_model=RideResponse,
    summary="Move a ride to its next status",
    description=(
        "Only the forward edge accepted -> driver_en_route -> arrived -> "
        "in_progress -> completed is allowed.  Completion recomputes the "
        "fare from the actual metrics and settles payment."
    ),
    responses=_errors,
)
@limiter.limit(RATE_LIMIT)
async def advance_ride(
    request: Request,
    ride_id: str,
    body: AdvanceRequest,
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.advance(
        ride_id,
        body.status,
        actual_distance_km=body.actual_distance_km,
        actual_duration_min=body.actual_duration_min,
    )


@router.post(
    "/{ride_id}/cancel",
    response_model=RideResponse,
    summary="Cancel a ride",
    responses={**_errors, 503: {"model": ErrorResponse}},
)
@limiter.limit(RATE_LIMIT)
async def cancel_ride(
    request: Request,
    ride_id: str,
    body: CancelRequest,
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.cancel(ride_id, body.cancelled_by, body.reason)


@router.post(
    "/{ride_id}/capture",
    response_model=RideResponse,
    summary="Pre-capture the estimated fare",
    responses={**_errors, 402: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
@limiter.limit(RATE_LIMIT)
async def capture_payment(
    request: Request,
    ride_id: str,
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.capture_payment(ride_id)


@router.post(
    "/{ride_id}/settle",
    response_model=RideResponse,
    summary="Retry settlement, optionally with another payment method",
    responses=_errors,
)
@limiter.limit(RATE_LIMIT)
async def settle_ride(
    request: Request,
    ride_id: str,
    body: SettleRequest,
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.retry_settlement(ride_id, body.payment_method)


@router.post(
    "/{ride_id}/refund",
    response_model=RideResponse,
    summary="Process an outstanding cancellation refund",
    responses=_errors,
)
@limiter.limit(RATE_LIMIT)
async def refund_ride(
    request: Request,
    ride_id: str,
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.process_refund(ride_id)
