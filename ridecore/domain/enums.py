"""Domain enumerations and state-transition rules."""

import enum


class RideStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DRIVER_EN_ROUTE = "driver_en_route"
    ARRIVED = "arrived"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({RideStatus.COMPLETED, RideStatus.CANCELLED})

# Forward edge driven by ``advance``: current status -> the only legal next one
FORWARD_EDGES: dict[RideStatus, RideStatus] = {
    RideStatus.ACCEPTED: RideStatus.DRIVER_EN_ROUTE,
    RideStatus.DRIVER_EN_ROUTE: RideStatus.ARRIVED,
    RideStatus.ARRIVED: RideStatus.IN_PROGRESS,
    RideStatus.IN_PROGRESS: RideStatus.COMPLETED,
}

# State machine: maps current status -> set of valid next statuses
RIDE_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.PENDING: {RideStatus.ACCEPTED, RideStatus.CANCELLED},
    RideStatus.ACCEPTED: {RideStatus.DRIVER_EN_ROUTE, RideStatus.CANCELLED},
    RideStatus.DRIVER_EN_ROUTE: {RideStatus.ARRIVED, RideStatus.CANCELLED},
    RideStatus.ARRIVED: {RideStatus.IN_PROGRESS, RideStatus.CANCELLED},
    RideStatus.IN_PROGRESS: {RideStatus.COMPLETED, RideStatus.CANCELLED},
    RideStatus.COMPLETED: set(),
    RideStatus.CANCELLED: set(),
}

# Which ``RideTimestamps`` attribute each status stamps
STATUS_TIMESTAMP_FIELD: dict[RideStatus, str] = {
    RideStatus.PENDING: "requested",
    RideStatus.ACCEPTED: "accepted",
    RideStatus.DRIVER_EN_ROUTE: "driver_en_route",
    RideStatus.ARRIVED: "arrived",
    RideStatus.IN_PROGRESS: "started",
    RideStatus.COMPLETED: "completed",
    RideStatus.CANCELLED: "cancelled",
}


class VehicleClass(str, enum.Enum):
    STANDARD = "standard"
    PREMIUM = "premium"
    LUXURY = "luxury"


class TrafficCondition(str, enum.Enum):
    LIGHT = "light"
    MODERATE = "moderate"
    HEAVY = "heavy"


class PaymentMethod(str, enum.Enum):
    WALLET = "wallet"
    CARD = "card"
    CASH = "cash"
    MOBILE_MONEY = "mobile_money"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class CancelledBy(str, enum.Enum):
    DRIVER = "driver"
    PASSENGER = "passenger"
    SYSTEM = "system"
    ADMIN = "admin"


class RefundStatus(str, enum.Enum):
    NOT_REQUIRED = "not_required"
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class FeeType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class AppliesTo(str, enum.Enum):
    DRIVER = "driver"
    PASSENGER = "passenger"
    BOTH = "both"


class TransactionType(str, enum.Enum):
    TOPUP = "topup"
    RIDE_PAYMENT = "ride_payment"
    REFUND = "refund"
    WITHDRAWAL = "withdrawal"


CREDIT_TYPES = frozenset({TransactionType.TOPUP, TransactionType.REFUND})
DEBIT_TYPES = frozenset({TransactionType.RIDE_PAYMENT, TransactionType.WITHDRAWAL})


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PaymentEventType(str, enum.Enum):
    PAYMENT = "payment"
    REFUND = "refund"
