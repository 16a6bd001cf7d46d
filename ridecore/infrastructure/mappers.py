"""
Row <-> aggregate mapping.

Sub-records (pricing snapshot, payment, cancellation, timestamps, policy
rules) are stored as JSON documents.  Decimals travel as strings and
datetimes as ISO-8601 so nothing is lost through a float.
"""

from __future__ import annotations

import enum
import types
from dataclasses import asdict, fields, is_dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Union, get_args, get_origin, get_type_hints

from ridecore.domain.entities import (
    AutoRefund,
    Cancellation,
    CancellationPolicy,
    CancellationRule,
    FareBreakdown,
    Location,
    NoShowPenalty,
    Payment,
    Ride,
    RideTimestamps,
    Wallet,
    WalletTransaction,
)

from .models import CancellationPolicyModel, RideModel, WalletModel, WalletTransactionModel


def to_json(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return to_json(asdict(value))
    if isinstance(value, dict):
        return {key: to_json(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json(item) for item in value]
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, enum.Enum):
        return value.value
    return value


def _coerce(hint: Any, value: Any) -> Any:
    if value is None:
        return None
    if get_origin(hint) in (Union, types.UnionType):
        hint = next(arg for arg in get_args(hint) if arg is not type(None))
    if hint is Decimal:
        return Decimal(str(value))
    if hint is datetime:
        return datetime.fromisoformat(value)
    if isinstance(hint, type) and issubclass(hint, enum.Enum):
        return hint(value)
    return value


def from_json(cls: type, data: Optional[dict[str, Any]]):
    """Build a flat dataclass *cls* from its ``to_json`` form."""
    if data is None:
        return None
    hints = get_type_hints(cls)
    return cls(**{
        f.name: _coerce(hints[f.name], data[f.name])
        for f in fields(cls)
        if f.name in data
    })


# ── Rides ─────────────────────────────────────────────────────────────


def ride_columns(ride: Ride) -> dict[str, Any]:
    """Column values for INSERT / UPDATE (everything but the version)."""
    cancellation = ride.cancellation
    return {
        "passenger_id": ride.passenger_id,
        "driver_id": ride.driver_id,
        "pickup_lat": ride.pickup.latitude,
        "pickup_lng": ride.pickup.longitude,
        "pickup_address": ride.pickup.address,
        "destination_lat": ride.destination.latitude,
        "destination_lng": ride.destination.longitude,
        "destination_address": ride.destination.address,
        "pickup_cell": ride.pickup_cell,
        "vehicle_class": ride.vehicle_class,
        "status": ride.status,
        "idempotency_key": ride.idempotency_key,
        "pricing": to_json(ride.pricing),
        "payment": to_json(ride.payment),
        "cancellation": to_json(cancellation) if cancellation else None,
        "timestamps": to_json(ride.timestamps),
        "total_fare": ride.pricing.total_fare,
        "payment_status": ride.payment.status,
        "refund_status": cancellation.refund_status if cancellation else None,
        "settlement_attempts": ride.payment.settlement_attempts,
        "refund_attempts": cancellation.refund_attempts if cancellation else 0,
        "actual_distance_km": ride.actual_distance_km,
        "actual_duration_min": ride.actual_duration_min,
    }


def ride_from_row(row: RideModel) -> Ride:
    return Ride(
        id=row.id,
        passenger_id=row.passenger_id,
        driver_id=row.driver_id,
        pickup=Location(row.pickup_lat, row.pickup_lng, row.pickup_address or ""),
        destination=Location(
            row.destination_lat, row.destination_lng, row.destination_address or ""
        ),
        pickup_cell=row.pickup_cell,
        vehicle_class=row.vehicle_class,
        status=row.status,
        idempotency_key=row.idempotency_key,
        pricing=from_json(FareBreakdown, row.pricing),
        payment=from_json(Payment, row.payment),
        cancellation=from_json(Cancellation, row.cancellation),
        timestamps=from_json(RideTimestamps, row.timestamps),
        actual_distance_km=row.actual_distance_km,
        actual_duration_min=row.actual_duration_min,
        version=row.version,
    )


# ── Wallets ───────────────────────────────────────────────────────────


def transaction_from_row(row: WalletTransactionModel) -> WalletTransaction:
    return WalletTransaction(
        id=row.id,
        type=row.type,
        amount=Decimal(row.amount),
        reference=row.reference,
        description=row.description,
        balance_after=Decimal(row.balance_after),
        created_at=row.created_at,
        status=row.status,
    )


def wallet_from_rows(
    row: WalletModel, transactions: list[WalletTransactionModel]
) -> Wallet:
    return Wallet(
        user_id=row.user_id,
        currency=row.currency,
        balance=Decimal(row.balance),
        is_active=row.is_active,
        transactions=[transaction_from_row(t) for t in transactions],
        version=row.version,
    )


# ── Cancellation policies ─────────────────────────────────────────────


def policy_columns(policy: CancellationPolicy) -> dict[str, Any]:
    return {
        "name": policy.name,
        "version": policy.version,
        "description": policy.description,
        "free_cancellation_window": policy.free_cancellation_window,
        "rules": to_json(list(policy.rules)),
        "no_show_penalty": to_json(policy.no_show_penalty),
        "max_cancellation_fee": policy.max_cancellation_fee,
        "auto_refund": to_json(policy.auto_refund),
    }


def policy_from_row(row: CancellationPolicyModel) -> CancellationPolicy:
    return CancellationPolicy(
        id=row.id,
        name=row.name,
        version=row.version,
        description=row.description or "",
        is_active=row.is_active,
        free_cancellation_window=row.free_cancellation_window,
        rules=tuple(from_json(CancellationRule, r) for r in row.rules),
        no_show_penalty={
            role: from_json(NoShowPenalty, p) for role, p in row.no_show_penalty.items()
        },
        max_cancellation_fee=Decimal(row.max_cancellation_fee),
        auto_refund=from_json(AutoRefund, row.auto_refund),
    )
