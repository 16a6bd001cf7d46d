"""
Ride Lifecycle
==============

Drives a ride from request to a terminal state:

    pending -> accepted -> driver_en_route -> arrived -> in_progress -> completed
                      \\_______________________________________________/
                                  cancelled (from any non-terminal state)

Concurrency safety
------------------
* Every mutation of a ride runs under the ``ride:<id>`` lock; driver
  assignment additionally holds ``driver:<id>`` so one driver cannot be
  given two rides.  Lock order is always ride before driver.
* Stores reject stale writes by version, so a "complete" racing a
  "cancel" leaves exactly one of them applied.
* The optional ``commit`` callback (the SQL session's ``commit``) runs
  before a lock is released, so the next holder always reads what the
  previous one wrote.  Completion and cancellation are committed before
  any money moves.

Money
-----
Completion recomputes the fare from actual metrics (keeping the request-time
multipliers) and settles the difference between the fare and whatever was
pre-captured: wallet rides through the ``WalletLedger``, card / mobile-money
through the gateway (bounded retries), cash is confirmed on the spot.  A
settlement failure never rolls back the ride: any core error is recorded on
the payment as ``failed`` with a reason and an attempt count, and the
reconciler retries it up to a limit.  Money taken is only ever given back
through the channel that took it, even if the passenger later settles the
rest another way.

Cancellation asks ``calculate_charges`` for the split and refunds the
captured amount owed through the same channel it was taken from.  The
``is_refund_processed`` flag and per-reference wallet refunds keep
cancel-then-refund idempotent.
"""

from __future__ import annotations

import enum
import logging
import math
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncIterator, Awaitable, Callable, Optional, TypeVar

import h3

from ridecore.domain.cancellation import calculate_charges
from ridecore.domain.distance import in_range
from ridecore.domain.entities import (
    Cancellation,
    FareBreakdown,
    Location,
    Payment,
    Ride,
    utcnow,
)
from ridecore.domain.enums import (
    FORWARD_EDGES,
    CancelledBy,
    PaymentEventType,
    PaymentMethod,
    PaymentStatus,
    RefundStatus,
    RideStatus,
    TrafficCondition,
    TransactionType,
    VehicleClass,
)
from ridecore.domain.errors import (
    AlreadyTerminal,
    DriverUnavailable,
    InvalidTransition,
    PolicyMissing,
    RideCoreError,
    RideNotFound,
    RideNotPending,
    StateError,
    ValidationError,
)
from ridecore.domain.events import PaymentEvent, RideStateChanged
from ridecore.domain.money import ZERO
from ridecore.domain.ports import (
    DemandSignalProvider,
    DirectoryService,
    EventSink,
    LockProvider,
    PolicyRepository,
    RideRepository,
)
from ridecore.domain.pricing import FarePricingEngine, PricingContext
from ridecore.services.settlement import GatewayCaller
from ridecore.services.wallet_ledger import WalletLedger

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=enum.Enum)


def _parse(enum_cls: type[E], value: E | str, label: str) -> E:
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(f"Unknown {label}: {value}") from None


def _check_location(location: Location, label: str) -> None:
    lat, lng = location.latitude, location.longitude
    if not (math.isfinite(lat) and math.isfinite(lng)):
        raise ValidationError(f"{label} coordinates must be finite")
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        raise ValidationError(f"{label} coordinates out of range: ({lat}, {lng})")


def _receipt_number(ride: Ride, at: datetime) -> str:
    return f"RCPT-{at:%Y%m%d}-{ride.id[:8].upper()}"


class RideLifecycle:
    def __init__(
        self,
        *,
        rides: RideRepository,
        policies: PolicyRepository,
        ledger: WalletLedger,
        directory: DirectoryService,
        demand: DemandSignalProvider,
        gateway: GatewayCaller,
        events: EventSink,
        locks: LockProvider,
        pricing: Optional[FarePricingEngine] = None,
        clock: Callable[[], datetime] = utcnow,
        currency: str = "ZAR",
        h3_resolution: int = 7,
        default_traffic: TrafficCondition | str = TrafficCondition.MODERATE,
        utc_offset_hours: float = 0.0,
        max_pickup_distance_km: float = 10.0,
        commit: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self.rides = rides
        self.policies = policies
        self.ledger = ledger
        self.directory = directory
        self.demand = demand
        self.gateway = gateway
        self.events = events
        self.locks = locks
        self.pricing = pricing or FarePricingEngine(currency=currency)
        self.clock = clock
        self.currency = currency
        self.h3_resolution = h3_resolution
        self.default_traffic = TrafficCondition(default_traffic)
        self.local_tz = timezone(timedelta(hours=utc_offset_hours))
        self.max_pickup_distance_km = max_pickup_distance_km
        self.commit = commit

    async def _commit(self) -> None:
        if self.commit is not None:
            await self.commit()

    @asynccontextmanager
    async def _ride_lock(self, ride_id: str) -> AsyncIterator[None]:
        """Hold ``ride:<id>`` and commit the unit of work before letting go."""
        async with self.locks.lock(f"ride:{ride_id}"):
            yield
            await self._commit()

    # ── Request / assign ──────────────────────────────────────────────

    async def request_ride(
        self,
        passenger_id: str,
        pickup: Location,
        destination: Location,
        vehicle_class: VehicleClass | str,
        payment_method: PaymentMethod | str = PaymentMethod.CASH,
        *,
        traffic: Optional[TrafficCondition | str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Ride:
        if idempotency_key:
            existing = await self.rides.get_by_idempotency_key(idempotency_key)
            if existing is not None:
                return existing

        vehicle_class = _parse(VehicleClass, vehicle_class, "vehicle class")
        method = _parse(PaymentMethod, payment_method, "payment method")
        traffic = _parse(TrafficCondition, traffic or self.default_traffic, "traffic condition")
        _check_location(pickup, "Pickup")
        _check_location(destination, "Destination")

        passenger = await self.directory.get_user(passenger_id)
        if not passenger.exists:
            raise ValidationError(f"Passenger {passenger_id} not found")

        now = self.clock()
        cell, pricing = await self._price(pickup, destination, vehicle_class, traffic, now)

        ride = Ride(
            passenger_id=passenger_id,
            pickup=pickup,
            destination=destination,
            vehicle_class=vehicle_class,
            pricing=pricing,
            payment=Payment(
                method=method, amount=pricing.total_fare, currency=pricing.currency
            ),
            idempotency_key=idempotency_key,
            pickup_cell=cell,
        )
        ride.timestamps.requested = now
        await self.rides.add(ride)

        logger.info(
            "Ride %s requested by %s: %s %.2f km fare=%s surge=%.2f",
            ride.id, passenger_id, vehicle_class.value,
            pricing.distance_km, pricing.total_fare, pricing.surge_multiplier,
        )
        await self._emit_state(ride, None, now)
        return ride

    async def quote(
        self,
        pickup: Location,
        destination: Location,
        vehicle_class: VehicleClass | str,
        *,
        traffic: Optional[TrafficCondition | str] = None,
    ) -> FareBreakdown:
        """Price a trip right now without creating a ride."""
        vehicle_class = _parse(VehicleClass, vehicle_class, "vehicle class")
        traffic = _parse(TrafficCondition, traffic or self.default_traffic, "traffic condition")
        _check_location(pickup, "Pickup")
        _check_location(destination, "Destination")
        _, pricing = await self._price(
            pickup, destination, vehicle_class, traffic, self.clock()
        )
        return pricing

    async def _price(
        self,
        pickup: Location,
        destination: Location,
        vehicle_class: VehicleClass,
        traffic: TrafficCondition,
        now: datetime,
    ) -> tuple[str, FareBreakdown]:
        cell = h3.latlng_to_cell(pickup.latitude, pickup.longitude, self.h3_resolution)
        demand = await self.demand.get_demand_context(cell)
        at = demand.time_of_day if demand and demand.time_of_day else now
        context = PricingContext(
            requested_at=at.astimezone(self.local_tz), traffic=traffic, demand=demand
        )
        return cell, self.pricing.estimate(pickup, destination, vehicle_class, context)

    async def assign_driver(self, ride_id: str, driver_id: str) -> Ride:
        async with self._ride_lock(ride_id):
            async with self.locks.lock(f"driver:{driver_id}"):
                ride = await self._load(ride_id)
                if ride.status != RideStatus.PENDING:
                    raise RideNotPending(
                        f"Ride {ride_id} is {ride.status.value}, not pending"
                    )

                driver = await self.directory.get_user(driver_id)
                if not driver.exists or not driver.is_available:
                    raise DriverUnavailable(f"Driver {driver_id} is not available")
                if driver.latitude is not None and driver.longitude is not None:
                    if not in_range(
                        ride.pickup.latitude, ride.pickup.longitude,
                        driver.latitude, driver.longitude,
                        max_km=self.max_pickup_distance_km,
                    ):
                        raise DriverUnavailable(
                            f"Driver {driver_id} is out of range of the pickup"
                        )

                now = self.clock()
                ride.driver_id = driver_id
                ride.transition_to(RideStatus.ACCEPTED, now)
                await self.rides.save(ride)
                await self.directory.set_availability(driver_id, False)
                await self._commit()

        logger.info("Ride %s accepted by driver %s", ride_id, driver_id)
        await self._emit_state(ride, RideStatus.PENDING, now)
        return ride

    # ── Forward transitions ───────────────────────────────────────────

    async def advance(
        self,
        ride_id: str,
        next_status: RideStatus | str,
        *,
        actual_distance_km: Optional[float] = None,
        actual_duration_min: Optional[int] = None,
    ) -> Ride:
        next_status = _parse(RideStatus, next_status, "ride status")
        if actual_distance_km is not None and actual_distance_km < 0:
            raise ValidationError("Actual distance must be non-negative")
        if actual_duration_min is not None and actual_duration_min < 0:
            raise ValidationError("Actual duration must be non-negative")

        async with self._ride_lock(ride_id):
            ride = await self._load(ride_id)
            if ride.is_terminal:
                raise AlreadyTerminal(f"Ride {ride_id} is already {ride.status.value}")
            if FORWARD_EDGES.get(ride.status) != next_status:
                raise InvalidTransition(
                    f"Cannot advance from {ride.status.value} to {next_status.value}"
                )

            previous = ride.status
            now = self.clock()
            ride.transition_to(next_status, now)
            if next_status == RideStatus.COMPLETED:
                self._finalise_fare(ride, actual_distance_km, actual_duration_min)
            await self.rides.save(ride)
            if next_status == RideStatus.COMPLETED and ride.driver_id:
                await self.directory.set_availability(ride.driver_id, True)
            # The trip has ended whatever settlement does next
            await self._commit()
            logger.info(
                "Ride %s: %s -> %s", ride_id, previous.value, next_status.value
            )
            await self._emit_state(ride, previous, now)

            if next_status == RideStatus.COMPLETED:
                await self._settle(ride)
                await self._record_earnings(ride)
        return ride

    def _finalise_fare(
        self,
        ride: Ride,
        actual_distance_km: Optional[float],
        actual_duration_min: Optional[int],
    ) -> None:
        distance = (
            actual_distance_km if actual_distance_km is not None
            else ride.pricing.distance_km
        )
        duration = actual_duration_min
        if duration is None:
            duration = ride.trip_minutes()
        if duration is None:
            duration = ride.pricing.duration_min

        ride.actual_distance_km = round(distance, 2)
        ride.actual_duration_min = duration
        ride.pricing = self.pricing.recompute_actual(ride.pricing, distance, duration)
        ride.payment.amount = ride.pricing.total_fare

    # ── Cancellation ──────────────────────────────────────────────────

    async def cancel(
        self, ride_id: str, cancelled_by: CancelledBy | str, reason: str
    ) -> Ride:
        cancelled_by = _parse(CancelledBy, cancelled_by, "canceller")
        if not reason or not reason.strip():
            raise ValidationError("A cancellation reason is required")

        async with self._ride_lock(ride_id):
            ride = await self._load(ride_id)
            if ride.is_terminal:
                raise AlreadyTerminal(f"Ride {ride_id} is already {ride.status.value}")
            policy = await self.policies.get_active()
            if policy is None:
                raise PolicyMissing("No active cancellation policy")

            now = self.clock()
            elapsed = ride.minutes_since_acceptance(now)
            charges = calculate_charges(
                policy, ride.pricing.total_fare, elapsed, cancelled_by, self.currency
            )
            # Only money actually taken can be given back
            refund_owed = min(charges.refund, ride.payment.captured_amount)

            previous = ride.status
            ride.transition_to(RideStatus.CANCELLED, now)
            ride.cancellation = Cancellation(
                cancelled_by=cancelled_by,
                reason=reason.strip(),
                cancelled_at=now,
                fee=charges.fee,
                refund_amount=refund_owed,
                penalty_applied=charges.penalty_applied,
                penalty_amount=charges.penalty_amount,
                free_cancellation=charges.free_cancellation,
                policy_name=policy.name,
                policy_version=policy.version,
                refund_status=(
                    RefundStatus.PENDING if refund_owed > ZERO
                    else RefundStatus.NOT_REQUIRED
                ),
            )
            await self.rides.save(ride)
            logger.info(
                "Ride %s cancelled by %s after %.1f min: fee=%s refund=%s penalty=%s (%s v%s)",
                ride_id, cancelled_by.value, elapsed, charges.fee, refund_owed,
                charges.penalty_amount, policy.name, policy.version,
            )

            if ride.driver_id:
                await self.directory.set_availability(ride.driver_id, True)
            if cancelled_by == CancelledBy.DRIVER and ride.driver_id:
                await self.directory.record_cancellation(
                    ride.driver_id, cancelled_by, charges.penalty_amount
                )
            elif cancelled_by == CancelledBy.PASSENGER:
                await self.directory.record_cancellation(
                    ride.passenger_id, cancelled_by, charges.penalty_amount
                )
            await self._commit()
            await self._emit_state(ride, previous, now)

            if ride.cancellation.refund_status == RefundStatus.PENDING:
                await self._refund(ride)
        return ride

    async def process_refund(self, ride_id: str) -> Ride:
        """Complete an outstanding cancellation refund; no-op once processed."""
        async with self._ride_lock(ride_id):
            ride = await self._load(ride_id)
            if ride.status != RideStatus.CANCELLED or ride.cancellation is None:
                raise StateError(f"Ride {ride_id} is not cancelled")
            await self._refund(ride)
        return ride

    async def _refund(self, ride: Ride) -> None:
        cancellation = ride.cancellation
        if (
            cancellation is None
            or cancellation.is_refund_processed
            or cancellation.refund_amount <= ZERO
        ):
            return

        amount = cancellation.refund_amount
        now = self.clock()
        try:
            transaction_id = await self._return_funds(
                ride, amount, f"ride:{ride.id}:refund", "Cancellation refund"
            )
        except RideCoreError as exc:
            cancellation.mark_refund_failed()
            await self.rides.save(ride)
            logger.warning("Refund for ride %s failed: %s", ride.id, exc)
            await self._emit_payment(ride, PaymentEventType.REFUND, amount, "failed", now)
            return

        cancellation.is_refund_processed = True
        cancellation.refund_status = RefundStatus.COMPLETED
        cancellation.refund_processed_at = now
        cancellation.refund_transaction_id = transaction_id

        payment = ride.payment
        payment.refund_amount += amount
        payment.refunded_at = now
        payment.status = (
            PaymentStatus.REFUNDED if payment.refund_amount >= payment.captured_amount
            else PaymentStatus.PARTIALLY_REFUNDED
        )
        await self.rides.save(ride)
        logger.info(
            "Refunded %s for ride %s via %s", amount, ride.id, payment.refund_channel.value
        )
        await self._emit_payment(ride, PaymentEventType.REFUND, amount, "completed", now)

    # ── Payment ───────────────────────────────────────────────────────

    async def capture_payment(self, ride_id: str) -> Ride:
        """Pre-capture the estimated fare; completion settles the difference."""
        async with self._ride_lock(ride_id):
            ride = await self._load(ride_id)
            if ride.is_terminal:
                raise AlreadyTerminal(f"Ride {ride_id} is already {ride.status.value}")
            payment = ride.payment
            if payment.method == PaymentMethod.CASH:
                raise ValidationError("Cash payments cannot be pre-captured")
            if payment.is_captured:
                return ride

            amount = payment.amount
            transaction_id = await self._collect(
                ride, amount, f"ride:{ride.id}:capture", "Ride fare pre-capture"
            )
            now = self.clock()
            payment.record_capture(amount)
            payment.mark_paid(now, transaction_id=transaction_id)
            payment.receipt_number = payment.receipt_number or _receipt_number(ride, now)
            await self.rides.save(ride)
        logger.info("Captured %s for ride %s via %s", amount, ride_id, payment.method.value)
        await self._emit_payment(ride, PaymentEventType.PAYMENT, amount, "captured", now)
        return ride

    async def retry_settlement(
        self, ride_id: str, payment_method: Optional[PaymentMethod | str] = None
    ) -> Ride:
        """Settle a completed ride again, optionally collecting the rest another way.

        A new ``payment_method`` only changes how an outstanding balance is
        collected; over-captured money still goes back through the channel
        that captured it.
        """
        method = (
            _parse(PaymentMethod, payment_method, "payment method")
            if payment_method is not None else None
        )
        async with self._ride_lock(ride_id):
            ride = await self._load(ride_id)
            if ride.status != RideStatus.COMPLETED:
                raise StateError(f"Ride {ride_id} is not completed")
            if self._is_settled(ride):
                return ride
            if method is not None and method != ride.payment.method:
                logger.info(
                    "Ride %s payment method %s -> %s",
                    ride_id, ride.payment.method.value, method.value,
                )
                ride.payment.method = method
            await self._settle(ride)
            await self._record_earnings(ride)
        return ride

    @staticmethod
    def _is_settled(ride: Ride) -> bool:
        payment = ride.payment
        return (
            payment.status == PaymentStatus.PAID
            and payment.captured_amount == payment.amount
        )

    async def _settle(self, ride: Ride) -> None:
        """Collect (or give back) the difference between fare and captured amount."""
        if self._is_settled(ride):
            return
        payment = ride.payment
        due = payment.amount - payment.captured_amount
        channel = payment.method if due >= ZERO else payment.refund_channel
        now = self.clock()
        try:
            if due > ZERO:
                transaction_id = await self._collect(
                    ride, due, f"ride:{ride.id}:fare", "Ride fare"
                )
            elif due < ZERO:
                transaction_id = await self._return_funds(
                    ride, -due, f"ride:{ride.id}:adjust", "Fare adjustment"
                )
                payment.refund_amount += -due
            else:
                transaction_id = None
        except RideCoreError as exc:
            # The ride stays completed; the reconciler picks the payment up
            payment.mark_failed(now, str(exc))
            await self.rides.save(ride)
            logger.warning(
                "Settlement of ride %s failed (attempt %d): %s",
                ride.id, payment.settlement_attempts, exc,
            )
            await self._emit_payment(ride, PaymentEventType.PAYMENT, due, "failed", now)
            return

        if due > ZERO:
            payment.record_capture(payment.amount)
        else:
            payment.captured_amount = payment.amount
        payment.mark_paid(now, transaction_id=transaction_id, channel=channel)
        payment.receipt_number = payment.receipt_number or _receipt_number(ride, now)
        await self.rides.save(ride)
        logger.info(
            "Ride %s settled: %s via %s", ride.id, payment.amount, channel.value
        )
        await self._emit_payment(ride, PaymentEventType.PAYMENT, payment.amount, "paid", now)

    async def _record_earnings(self, ride: Ride) -> None:
        if ride.driver_id and ride.payment.status == PaymentStatus.PAID:
            await self.directory.record_trip(ride.driver_id, ride.payment.amount)

    async def _collect(
        self, ride: Ride, amount: Decimal, reference: str, description: str
    ) -> Optional[str]:
        method = ride.payment.method
        if method == PaymentMethod.CASH:
            # Collected by the driver at drop-off
            return None
        if method == PaymentMethod.WALLET:
            existing = await self.ledger.find(
                ride.passenger_id, reference, TransactionType.RIDE_PAYMENT
            )
            if existing is not None:
                return existing.id
            txn = await self.ledger.debit(
                ride.passenger_id, amount, reference, f"{description} {ride.id}",
                type=TransactionType.RIDE_PAYMENT,
            )
            return txn.id
        result = await self.gateway.charge(amount, method, reference)
        return result.transaction_id

    async def _return_funds(
        self, ride: Ride, amount: Decimal, reference: str, description: str
    ) -> Optional[str]:
        method = ride.payment.refund_channel
        if method == PaymentMethod.CASH:
            # Handed back by the driver
            return None
        if method == PaymentMethod.WALLET:
            txn = await self.ledger.refund(
                ride.passenger_id, amount, reference, f"{description} {ride.id}"
            )
            return txn.id
        result = await self.gateway.refund(amount, method, reference)
        return result.transaction_id

    # ── Queries ───────────────────────────────────────────────────────

    async def get_ride(self, ride_id: str) -> Ride:
        return await self._load(ride_id)

    async def _load(self, ride_id: str) -> Ride:
        ride = await self.rides.get(ride_id)
        if ride is None:
            raise RideNotFound(ride_id)
        return ride

    # ── Events ────────────────────────────────────────────────────────

    async def _emit_state(
        self, ride: Ride, previous: Optional[RideStatus], at: datetime
    ) -> None:
        await self.events.publish(
            RideStateChanged(
                ride_id=ride.id, from_status=previous, to_status=ride.status, at=at
            )
        )

    async def _emit_payment(
        self,
        ride: Ride,
        type: PaymentEventType,
        amount: Decimal,
        status: str,
        at: datetime,
    ) -> None:
        await self.events.publish(
            PaymentEvent(ride_id=ride.id, type=type, amount=amount, status=status, at=at)
        )
