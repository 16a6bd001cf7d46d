"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from ridecore.domain.entities import Location
from ridecore.domain.enums import (
    AppliesTo,
    CancelledBy,
    FeeType,
    PaymentMethod,
    PaymentStatus,
    RefundStatus,
    RideStatus,
    TrafficCondition,
    TransactionStatus,
    TransactionType,
    VehicleClass,
)


# ── Requests ──────────────────────────────────────────────────────────


class LocationIn(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    address: str = Field("", max_length=255)

    def to_domain(self) -> Location:
        return Location(self.latitude, self.longitude, self.address)


class FareEstimateRequest(BaseModel):
    pickup: LocationIn
    destination: LocationIn
    vehicle_class: VehicleClass = VehicleClass.STANDARD
    traffic: Optional[TrafficCondition] = None


class RideCreateRequest(FareEstimateRequest):
    passenger_id: str = Field(..., min_length=1, max_length=64)
    payment_method: PaymentMethod = PaymentMethod.CASH
    idempotency_key: Optional[str] = Field(
        None,
        max_length=64,
        description="Client-generated UUID to prevent double-booking on retries.",
    )


class AssignDriverRequest(BaseModel):
    driver_id: str = Field(..., min_length=1, max_length=64)


class AdvanceRequest(BaseModel):
    status: RideStatus
    actual_distance_km: Optional[float] = Field(None, ge=0)
    actual_duration_min: Optional[int] = Field(None, ge=0)


class CancelRequest(BaseModel):
    cancelled_by: CancelledBy
    reason: str = Field(..., max_length=500)


class SettleRequest(BaseModel):
    payment_method: Optional[PaymentMethod] = None


class AmountRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    reference: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=255)


# ── Responses ─────────────────────────────────────────────────────────


class LocationOut(BaseModel):
    latitude: float
    longitude: float
    address: str = ""

    model_config = {"from_attributes": True}


class FareBreakdownResponse(BaseModel):
    vehicle_class: VehicleClass
    base_fare: Decimal
    distance_km: float
    distance_fare: Decimal
    duration_min: int
    time_fare: Decimal
    surge_multiplier: float
    time_multiplier: float
    total_fare: Decimal
    currency: str
    minimum_fare_applied: bool = False

    model_config = {"from_attributes": True}


class PaymentResponse(BaseModel):
    method: PaymentMethod
    status: PaymentStatus
    amount: Decimal
    currency: str
    captured_amount: Decimal
    captured_method: Optional[PaymentMethod] = None
    gateway_transaction_id: Optional[str] = None
    wallet_transaction_id: Optional[str] = None
    receipt_number: Optional[str] = None
    failure_reason: Optional[str] = None
    refund_amount: Decimal
    settlement_attempts: int = 0
    paid_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class CancellationResponse(BaseModel):
    cancelled_by: CancelledBy
    reason: str
    cancelled_at: datetime
    fee: Decimal
    refund_amount: Decimal
    penalty_applied: bool
    penalty_amount: Decimal
    free_cancellation: bool
    policy_name: str
    policy_version: str
    is_refund_processed: bool
    refund_status: RefundStatus
    refund_attempts: int = 0
    refund_processed_at: Optional[datetime] = None
    refund_transaction_id: Optional[str] = None

    model_config = {"from_attributes": True}


class TimestampsResponse(BaseModel):
    requested: Optional[datetime] = None
    accepted: Optional[datetime] = None
    driver_en_route: Optional[datetime] = None
    arrived: Optional[datetime] = None
    started: Optional[datetime] = None
    completed: Optional[datetime] = None
    cancelled: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RideResponse(BaseModel):
    id: str
    passenger_id: str
    driver_id: Optional[str] = None
    status: RideStatus
    vehicle_class: VehicleClass
    pickup: LocationOut
    destination: LocationOut
    pickup_cell: Optional[str] = None
    pricing: FareBreakdownResponse
    payment: PaymentResponse
    cancellation: Optional[CancellationResponse] = None
    timestamps: TimestampsResponse
    actual_distance_km: Optional[float] = None
    actual_duration_min: Optional[int] = None

    model_config = {"from_attributes": True}


class VehicleRatesResponse(BaseModel):
    vehicle_class: VehicleClass
    base_fare: Decimal
    per_km_rate: Decimal
    per_minute_rate: Decimal
    minimum_fare: Decimal


class WalletResponse(BaseModel):
    user_id: str
    currency: str
    balance: Decimal
    is_active: bool

    model_config = {"from_attributes": True}


class WalletTransactionResponse(BaseModel):
    id: str
    type: TransactionType
    amount: Decimal
    reference: str
    description: str
    balance_after: Decimal
    status: TransactionStatus
    created_at: datetime

    model_config = {"from_attributes": True}


class LedgerCheckResponse(BaseModel):
    user_id: str
    consistent: bool


class CancellationRuleResponse(BaseModel):
    time_threshold: float
    fee: Decimal
    fee_type: FeeType
    applies_to: AppliesTo
    refund_percentage: Decimal
    description: str = ""

    model_config = {"from_attributes": True}


class CancellationPolicyResponse(BaseModel):
    name: str
    version: str
    description: str = ""
    free_cancellation_window: float
    max_cancellation_fee: Decimal
    rules: list[CancellationRuleResponse]

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
    error: str
