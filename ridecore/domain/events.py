"""Events emitted for the external notification / analytics dispatcher."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from .enums import PaymentEventType, RideStatus


@dataclass(frozen=True)
class RideStateChanged:
    ride_id: str
    from_status: Optional[RideStatus]
    to_status: RideStatus
    at: datetime

    name = "ride_state_changed"


@dataclass(frozen=True)
class PaymentEvent:
    ride_id: str
    type: PaymentEventType
    amount: Decimal
    status: str
    at: datetime

    name = "payment_event"


def event_payload(event: RideStateChanged | PaymentEvent) -> dict[str, Any]:
    """JSON-safe dict with the event name under ``event``."""
    payload: dict[str, Any] = {"event": event.name}
    for key, value in asdict(event).items():
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, Decimal):
            value = str(value)
        elif hasattr(value, "value"):
            value = value.value
        payload[key] = value
    return payload
