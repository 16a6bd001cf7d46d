"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``Ride``: enforces valid lifecycle transitions
  (pending -> accepted -> driver_en_route -> arrived -> in_progress ->
  completed, with cancelled reachable from every non-terminal state).
- ``Wallet`` is an append-only ledger: every mutation appends exactly one
  ``WalletTransaction`` carrying the post-operation balance, so the whole
  history can be replayed and verified.
- ``CancellationPolicy`` is a read-only rule document; the arithmetic that
  uses it lives in ``cancellation.calculate_charges``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from .enums import (
    CREDIT_TYPES,
    DEBIT_TYPES,
    RIDE_TRANSITIONS,
    STATUS_TIMESTAMP_FIELD,
    TERMINAL_STATUSES,
    AppliesTo,
    CancelledBy,
    FeeType,
    PaymentMethod,
    PaymentStatus,
    RefundStatus,
    RideStatus,
    TransactionStatus,
    TransactionType,
    VehicleClass,
)
from .errors import AlreadyTerminal, InsufficientFunds, InvalidTransition, ValidationError
from .money import ZERO


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float
    address: str = ""


@dataclass(frozen=True)
class FareBreakdown:
    """Pricing snapshot stored on the ride at request time (and on completion)."""

    vehicle_class: VehicleClass
    base_fare: Decimal
    distance_km: float
    distance_fare: Decimal
    duration_min: int
    time_fare: Decimal
    surge_multiplier: float
    time_multiplier: float
    total_fare: Decimal
    currency: str = "ZAR"
    minimum_fare_applied: bool = False


# ── Ride sub-records ──────────────────────────────────────────────────


@dataclass
class Payment:
    method: PaymentMethod = PaymentMethod.CASH
    status: PaymentStatus = PaymentStatus.PENDING
    amount: Decimal = ZERO  # always the last computed fare
    currency: str = "ZAR"
    captured_amount: Decimal = ZERO  # money actually taken from the passenger
    captured_method: Optional[PaymentMethod] = None  # channel refunds go back through
    gateway_transaction_id: Optional[str] = None
    wallet_transaction_id: Optional[str] = None
    receipt_number: Optional[str] = None
    failure_reason: Optional[str] = None
    refund_amount: Decimal = ZERO
    settlement_attempts: int = 0  # failed settlement attempts so far
    paid_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None

    @property
    def is_captured(self) -> bool:
        return self.captured_amount > ZERO

    @property
    def refund_channel(self) -> PaymentMethod:
        return self.captured_method or self.method

    def record_capture(self, amount: Decimal) -> None:
        if self.captured_method is None:
            self.captured_method = self.method
        self.captured_amount = amount

    def mark_paid(
        self,
        at: datetime,
        *,
        transaction_id: Optional[str] = None,
        channel: Optional[PaymentMethod] = None,
    ) -> None:
        self.status = PaymentStatus.PAID
        self.paid_at = at
        self.failure_reason = None
        if transaction_id:
            if (channel or self.method) == PaymentMethod.WALLET:
                self.wallet_transaction_id = transaction_id
            else:
                self.gateway_transaction_id = transaction_id

    def mark_failed(self, at: datetime, reason: str) -> None:
        self.status = PaymentStatus.FAILED
        self.failed_at = at
        self.failure_reason = reason
        self.settlement_attempts += 1


@dataclass
class Cancellation:
    cancelled_by: CancelledBy
    reason: str
    cancelled_at: datetime
    fee: Decimal = ZERO
    refund_amount: Decimal = ZERO
    penalty_applied: bool = False
    penalty_amount: Decimal = ZERO
    free_cancellation: bool = False
    policy_name: str = ""
    policy_version: str = ""
    is_refund_processed: bool = False
    refund_status: RefundStatus = RefundStatus.NOT_REQUIRED
    refund_attempts: int = 0
    refund_processed_at: Optional[datetime] = None
    refund_transaction_id: Optional[str] = None

    def mark_refund_failed(self) -> None:
        self.refund_status = RefundStatus.FAILED
        self.refund_attempts += 1


@dataclass
class RideTimestamps:
    requested: Optional[datetime] = None
    accepted: Optional[datetime] = None
    driver_en_route: Optional[datetime] = None
    arrived: Optional[datetime] = None
    started: Optional[datetime] = None
    completed: Optional[datetime] = None
    cancelled: Optional[datetime] = None


# ── Ride ──────────────────────────────────────────────────────────────


def new_ride_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Ride:
    passenger_id: str
    pickup: Location
    destination: Location
    vehicle_class: VehicleClass
    pricing: FareBreakdown
    id: str = field(default_factory=new_ride_id)
    driver_id: Optional[str] = None
    status: RideStatus = RideStatus.PENDING
    payment: Payment = field(default_factory=Payment)
    cancellation: Optional[Cancellation] = None
    timestamps: RideTimestamps = field(default_factory=RideTimestamps)
    idempotency_key: Optional[str] = None
    pickup_cell: Optional[str] = None
    actual_distance_km: Optional[float] = None
    actual_duration_min: Optional[int] = None
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transition_to(self, new_status: RideStatus, at: datetime) -> None:
        """Move to *new_status* if the transition is legal, else raise."""
        if self.is_terminal:
            raise AlreadyTerminal(f"Ride {self.id} is already {self.status.value}")
        allowed = RIDE_TRANSITIONS.get(self.status, set())
        if new_status not in allowed:
            raise InvalidTransition(
                f"Cannot transition from {self.status.value} to {new_status.value}"
            )
        self.status = new_status
        setattr(self.timestamps, STATUS_TIMESTAMP_FIELD[new_status], at)

    def minutes_since_acceptance(self, now: datetime) -> float:
        """Elapsed minutes since acceptance, or since the request if never accepted."""
        reference = self.timestamps.accepted or self.timestamps.requested or now
        return max(0.0, (now - reference).total_seconds() / 60)

    def trip_minutes(self) -> Optional[int]:
        if self.timestamps.started and self.timestamps.completed:
            elapsed = self.timestamps.completed - self.timestamps.started
            return round(elapsed.total_seconds() / 60)
        return None


# ── Cancellation policy ───────────────────────────────────────────────


@dataclass(frozen=True)
class CancellationRule:
    time_threshold: float  # minutes after acceptance
    fee: Decimal  # percentage or fixed amount, depending on fee_type
    fee_type: FeeType = FeeType.PERCENTAGE
    applies_to: AppliesTo = AppliesTo.BOTH
    refund_percentage: Decimal = Decimal(100)
    description: str = ""

    def applies(self, cancelled_by: CancelledBy) -> bool:
        return (
            self.applies_to == AppliesTo.BOTH
            or self.applies_to.value == cancelled_by.value
        )


@dataclass(frozen=True)
class NoShowPenalty:
    amount: Decimal
    fee_type: FeeType = FeeType.FIXED
    applies_after: float = 0  # minutes


@dataclass(frozen=True)
class AutoRefund:
    enabled: bool = True
    process_after_hours: int = 24


@dataclass(frozen=True)
class CancellationPolicy:
    name: str
    version: str
    free_cancellation_window: float = 2  # minutes
    rules: tuple[CancellationRule, ...] = ()
    no_show_penalty: dict[str, NoShowPenalty] = field(default_factory=dict)
    max_cancellation_fee: Decimal = Decimal(50)  # % of fare
    auto_refund: AutoRefund = field(default_factory=AutoRefund)
    description: str = ""
    is_active: bool = True
    id: Optional[int] = None

    def applicable_rule(self, elapsed_minutes: float) -> Optional[CancellationRule]:
        """The rule with the largest threshold not exceeding *elapsed_minutes*."""
        candidates = [r for r in self.rules if r.time_threshold <= elapsed_minutes]
        if not candidates:
            return None
        # max() keeps the first of equal thresholds, i.e. declaration order
        return max(candidates, key=lambda r: r.time_threshold)

    def penalty_for(self, cancelled_by: CancelledBy) -> Optional[NoShowPenalty]:
        return self.no_show_penalty.get(cancelled_by.value)


# ── Wallet ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class WalletTransaction:
    type: TransactionType
    amount: Decimal  # signed: credits positive, debits negative
    reference: str
    description: str
    balance_after: Decimal
    created_at: datetime
    status: TransactionStatus = TransactionStatus.COMPLETED
    id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass
class Wallet:
    user_id: str
    currency: str = "ZAR"
    balance: Decimal = ZERO
    is_active: bool = True
    transactions: list[WalletTransaction] = field(default_factory=list)
    version: int = 0

    def credit(
        self,
        amount: Decimal,
        *,
        type: TransactionType,
        reference: str,
        description: str,
        at: datetime,
    ) -> WalletTransaction:
        if type not in CREDIT_TYPES:
            raise ValidationError(f"{type.value} is not a credit transaction")
        return self._append(amount, type, reference, description, at)

    def debit(
        self,
        amount: Decimal,
        *,
        type: TransactionType,
        reference: str,
        description: str,
        at: datetime,
    ) -> WalletTransaction:
        if type not in DEBIT_TYPES:
            raise ValidationError(f"{type.value} is not a debit transaction")
        self._check_amount(amount)
        self._check_active()
        if amount > self.balance:
            # No partial debits and no overdraft
            raise InsufficientFunds(self.user_id, amount, self.balance)
        return self._append(-amount, type, reference, description, at)

    def find(self, reference: str, type: TransactionType) -> Optional[WalletTransaction]:
        for txn in self.transactions:
            if txn.reference == reference and txn.type == type:
                return txn
        return None

    def verify(self) -> bool:
        """Replay the ledger: every ``balance_after`` and the cached balance must match."""
        running = ZERO
        for txn in self.transactions:
            running += txn.amount
            if running < ZERO or running != txn.balance_after:
                return False
        return running == self.balance

    def _append(
        self,
        signed_amount: Decimal,
        type: TransactionType,
        reference: str,
        description: str,
        at: datetime,
    ) -> WalletTransaction:
        self._check_amount(abs(signed_amount))
        self._check_active()
        new_balance = self.balance + signed_amount
        txn = WalletTransaction(
            type=type,
            amount=signed_amount,
            reference=reference,
            description=description,
            balance_after=new_balance,
            created_at=at,
        )
        self.transactions.append(txn)
        self.balance = new_balance
        return txn

    def _check_active(self) -> None:
        if not self.is_active:
            raise ValidationError(f"Wallet of {self.user_id} is inactive")

    @staticmethod
    def _check_amount(amount: Decimal) -> None:
        if amount <= ZERO:
            raise ValidationError("Amount must be positive")
