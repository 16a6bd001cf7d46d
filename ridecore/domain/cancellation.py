"""
Cancellation Policy Engine
==========================

Pure function over (policy, fare, elapsed minutes, who cancelled) -> charges.
No I/O, so every branch is covered by table-driven tests.

Order of evaluation
-------------------
1. Inside the free-cancellation window: no fee, full refund, no penalty.
2. Pick the rule with the largest ``time_threshold <= elapsed``.  No rule, or
   a rule that does not apply to the canceller: free cancellation.
3. Fee: percentage of fare capped at ``max_cancellation_fee`` percent of
   the fare, or a fixed amount bounded by the fare itself.
4. Refund = fare - fee.
5. No-show penalty for the canceller's role once ``applies_after`` minutes
   have passed; it stacks on top of the fee and comes out of the refund,
   which never drops below zero.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from .entities import CancellationPolicy, CancellationRule, NoShowPenalty
from .enums import AppliesTo, CancelledBy, FeeType
from .errors import ValidationError
from .money import ZERO, percent_of, quantize, to_decimal


@dataclass(frozen=True)
class CancellationCharges:
    fee: Decimal
    refund: Decimal
    penalty_applied: bool = False
    penalty_amount: Decimal = ZERO
    within_free_window: bool = False
    rule: Optional[CancellationRule] = None

    @property
    def free_cancellation(self) -> bool:
        return self.fee == ZERO and not self.penalty_applied


def _free(fare: Decimal, *, within_window: bool) -> CancellationCharges:
    return CancellationCharges(fee=ZERO, refund=fare, within_free_window=within_window)


def calculate_charges(
    policy: CancellationPolicy,
    ride_fare: Decimal | float | int,
    elapsed_minutes: float,
    cancelled_by: CancelledBy | str,
    currency: str = "ZAR",
) -> CancellationCharges:
    fare = quantize(ride_fare, currency)
    cancelled_by = CancelledBy(cancelled_by)
    if fare < ZERO:
        raise ValidationError("Ride fare must be non-negative")
    if elapsed_minutes < 0:
        raise ValidationError("Elapsed time must be non-negative")

    if elapsed_minutes <= policy.free_cancellation_window:
        return _free(fare, within_window=True)

    rule = policy.applicable_rule(elapsed_minutes)
    if rule is None or not rule.applies(cancelled_by):
        return _free(fare, within_window=False)

    if rule.fee_type == FeeType.PERCENTAGE:
        cap = percent_of(fare, policy.max_cancellation_fee)
        fee = min(percent_of(fare, rule.fee), cap)
    else:
        fee = min(to_decimal(rule.fee), fare)
    fee = quantize(fee, currency)
    refund = fare - fee

    penalty_applied = False
    penalty_amount = ZERO
    penalty = policy.penalty_for(cancelled_by)
    if penalty and elapsed_minutes > penalty.applies_after and penalty.amount > ZERO:
        penalty_applied = True
        if penalty.fee_type == FeeType.PERCENTAGE:
            penalty_amount = quantize(percent_of(fare, penalty.amount), currency)
        else:
            penalty_amount = quantize(penalty.amount, currency)

    refund = max(ZERO, refund - penalty_amount)

    return CancellationCharges(
        fee=fee,
        refund=refund,
        penalty_applied=penalty_applied,
        penalty_amount=penalty_amount,
        rule=rule,
    )


def default_policy() -> CancellationPolicy:
    """The policy every fresh deployment is seeded with."""
    return CancellationPolicy(
        name="Standard Cancellation Policy",
        version="1.0",
        description="Default cancellation policy for all rides",
        free_cancellation_window=2,
        rules=(
            CancellationRule(
                time_threshold=2, fee=Decimal(0), fee_type=FeeType.FIXED,
                applies_to=AppliesTo.BOTH,
                description="Free cancellation within 2 minutes of acceptance",
            ),
            CancellationRule(
                time_threshold=5, fee=Decimal(10), applies_to=AppliesTo.PASSENGER,
                refund_percentage=Decimal(90),
                description="10% fee for passenger cancellations after 5 minutes",
            ),
            CancellationRule(
                time_threshold=5, fee=Decimal(20), applies_to=AppliesTo.DRIVER,
                refund_percentage=Decimal(100),
                description="20% fee for driver cancellations after 5 minutes",
            ),
            CancellationRule(
                time_threshold=10, fee=Decimal(25), applies_to=AppliesTo.BOTH,
                refund_percentage=Decimal(75),
                description="25% fee for any cancellation after 10 minutes",
            ),
        ),
        no_show_penalty={
            CancelledBy.DRIVER.value: NoShowPenalty(
                amount=Decimal(50), fee_type=FeeType.FIXED, applies_after=10
            ),
            CancelledBy.PASSENGER.value: NoShowPenalty(
                amount=Decimal(25), fee_type=FeeType.FIXED, applies_after=5
            ),
        },
        max_cancellation_fee=Decimal(50),
    )
