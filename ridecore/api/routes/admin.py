"""
Admin / observability endpoints
===============================

GET /api/v1/admin/cancellation-policy -- the active cancellation policy
GET /api/v1/admin/rates               -- fare rate table per vehicle class
GET /api/v1/admin/health              -- simple health check
"""

from fastapi import APIRouter, Depends, Request

from ridecore.api.dependencies import get_lifecycle, get_policies
from ridecore.api.middleware import RATE_LIMIT, limiter
from ridecore.api.schemas import (
    CancellationPolicyResponse,
    ErrorResponse,
    HealthResponse,
    VehicleRatesResponse,
)
from ridecore.domain.errors import PolicyMissing
from ridecore.domain.ports import PolicyRepository
from ridecore.services.ride_lifecycle import RideLifecycle

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/cancellation-policy",
    response_model=CancellationPolicyResponse,
    summary="Show the active cancellation policy",
    responses={503: {"model": ErrorResponse}},
)
@limiter.limit(RATE_LIMIT)
async def get_active_policy(
    request: Request,
    policies: PolicyRepository = Depends(get_policies),
):
    policy = await policies.get_active()
    if policy is None:
        raise PolicyMissing("No active cancellation policy")
    return policy


@router.get(
    "/rates",
    response_model=list[VehicleRatesResponse],
    summary="List the fare rate table",
)
@limiter.limit(RATE_LIMIT)
async def get_rates(
    request: Request,
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    return [
        VehicleRatesResponse(
            vehicle_class=vehicle_class,
            base_fare=rates.base_fare,
            per_km_rate=rates.per_km_rate,
            per_minute_rate=rates.per_minute_rate,
            minimum_fare=rates.minimum_fare,
        )
        for vehicle_class, rates in lifecycle.pricing.rates().items()
    ]


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
