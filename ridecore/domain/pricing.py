"""
Fare Pricing Engine  (Strategy Pattern)
=======================================

Formula
-------
Fare = (Base_Fare + Distance x Per_KM + Duration x Per_Minute)
       x Surge_Multiplier x Time_Multiplier,   floored at Minimum_Fare

* **Distance**         = haversine km, rounded to 2 decimals
* **Duration**         = ceil(distance / traffic speed), in minutes
* **Surge_Multiplier** = clamp(pending_requests / available_drivers, 1.0, 3.0)
* **Time_Multiplier**  = first matching schedule rule (weekday peak,
  weekend night, late night), 1.0 for trips under 2 km

The total is rounded half-up to the currency's minor unit.  On completion
the fare is recomputed from actual distance/duration but keeps the
multipliers captured at request time, so a long trip never re-prices its
surge.

Complexity: O(1) per price calculation.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Optional

from .distance import trip_distance_km
from .entities import FareBreakdown, Location
from .enums import TrafficCondition, VehicleClass
from .errors import ValidationError
from .money import quantize, to_decimal

MAX_SURGE = 3.0
SHORT_TRIP_KM = 2.0


@dataclass(frozen=True)
class VehicleRates:
    base_fare: Decimal
    per_km_rate: Decimal
    per_minute_rate: Decimal
    minimum_fare: Decimal


DEFAULT_RATES: dict[VehicleClass, VehicleRates] = {
    VehicleClass.STANDARD: VehicleRates(
        Decimal("20"), Decimal("10"), Decimal("1.7"), Decimal("35")
    ),
    VehicleClass.PREMIUM: VehicleRates(
        Decimal("40"), Decimal("12"), Decimal("2.5"), Decimal("70")
    ),
    VehicleClass.LUXURY: VehicleRates(
        Decimal("60"), Decimal("18"), Decimal("4.0"), Decimal("120")
    ),
}

# Average urban speed in km/h for each traffic condition
TRAFFIC_SPEED_KMH: dict[TrafficCondition, float] = {
    TrafficCondition.LIGHT: 40.0,
    TrafficCondition.MODERATE: 30.0,
    TrafficCondition.HEAVY: 18.0,
}


@dataclass(frozen=True)
class DemandContext:
    """Demand signal for a pickup area, supplied by an external provider."""

    available_drivers: int
    pending_requests: int
    time_of_day: Optional[datetime] = None


@dataclass(frozen=True)
class PricingContext:
    requested_at: datetime
    traffic: TrafficCondition = TrafficCondition.MODERATE
    demand: Optional[DemandContext] = None
    surge_override: Optional[float] = None


# ── Strategy hierarchy (schedule-based time multipliers) ─────────────


class TimeMultiplierRule(ABC):
    multiplier: float

    @abstractmethod
    def matches(self, at: datetime) -> bool: ...


class WeekdayPeakRule(TimeMultiplierRule):
    """Mon-Fri, 07:00-09:59 and 16:00-19:59."""

    multiplier = 1.2

    def matches(self, at: datetime) -> bool:
        is_weekday = at.weekday() <= 4
        return is_weekday and (7 <= at.hour <= 9 or 16 <= at.hour <= 19)


class WeekendNightRule(TimeMultiplierRule):
    """Friday from 18:00 through Sunday 02:59."""

    multiplier = 1.3

    def matches(self, at: datetime) -> bool:
        day, hour = at.weekday(), at.hour
        return (day == 4 and hour >= 18) or day == 5 or (day == 6 and hour <= 2)


class LateNightRule(TimeMultiplierRule):
    multiplier = 1.2

    def matches(self, at: datetime) -> bool:
        return at.hour >= 22 or at.hour <= 5


# Evaluated in order; the first match wins
TIME_RULES: tuple[TimeMultiplierRule, ...] = (
    WeekdayPeakRule(),
    WeekendNightRule(),
    LateNightRule(),
)


def time_multiplier(at: datetime, distance_km: float) -> float:
    if distance_km < SHORT_TRIP_KM:
        return 1.0
    for rule in TIME_RULES:
        if rule.matches(at):
            return rule.multiplier
    return 1.0


# ── Engine facade ─────────────────────────────────────────────────────


class FarePricingEngine:
    """High-level API used by the ride lifecycle and the API layer."""

    def __init__(
        self,
        rates: Optional[dict[VehicleClass, VehicleRates]] = None,
        currency: str = "ZAR",
    ):
        self._rates = dict(rates or DEFAULT_RATES)
        self.currency = currency

    def rates(self) -> dict[VehicleClass, VehicleRates]:
        return dict(self._rates)

    def rates_for(self, vehicle_class: VehicleClass | str) -> VehicleRates:
        try:
            return self._rates[VehicleClass(vehicle_class)]
        except (KeyError, ValueError):
            raise ValidationError(f"Unknown vehicle class: {vehicle_class}") from None

    @staticmethod
    def compute_surge(demand: Optional[DemandContext]) -> float:
        if demand is None:
            return 1.0
        if demand.available_drivers <= 0:
            return MAX_SURGE
        ratio = demand.pending_requests / demand.available_drivers
        return round(min(MAX_SURGE, max(1.0, ratio)), 2)

    @staticmethod
    def estimated_minutes(
        distance_km: float, traffic: TrafficCondition = TrafficCondition.MODERATE
    ) -> int:
        speed = TRAFFIC_SPEED_KMH[TrafficCondition(traffic)]
        return math.ceil(distance_km / speed * 60)

    def estimate(
        self,
        pickup: Location,
        destination: Location,
        vehicle_class: VehicleClass | str,
        context: PricingContext,
    ) -> FareBreakdown:
        distance = trip_distance_km(
            pickup.latitude, pickup.longitude,
            destination.latitude, destination.longitude,
        )
        duration = self.estimated_minutes(distance, context.traffic)

        if context.surge_override is not None:
            surge = round(min(MAX_SURGE, max(1.0, context.surge_override)), 2)
        else:
            surge = self.compute_surge(context.demand)

        return self.calculate(
            vehicle_class,
            distance,
            duration,
            surge_multiplier=surge,
            time_multiplier=time_multiplier(context.requested_at, distance),
        )

    def recompute_actual(
        self,
        estimate: FareBreakdown,
        actual_distance_km: float,
        actual_duration_min: int,
    ) -> FareBreakdown:
        """Re-price with actual measurements, keeping the request-time multipliers."""
        actual = self.calculate(
            estimate.vehicle_class,
            round(actual_distance_km, 2),
            actual_duration_min,
            surge_multiplier=estimate.surge_multiplier,
            time_multiplier=estimate.time_multiplier,
        )
        return replace(actual, currency=estimate.currency)

    def calculate(
        self,
        vehicle_class: VehicleClass | str,
        distance_km: float,
        duration_min: int,
        *,
        surge_multiplier: float = 1.0,
        time_multiplier: float = 1.0,
    ) -> FareBreakdown:
        if distance_km < 0 or duration_min < 0:
            raise ValidationError("Distance and duration must be non-negative")
        rates = self.rates_for(vehicle_class)

        distance_fare = to_decimal(distance_km) * rates.per_km_rate
        time_fare = to_decimal(duration_min) * rates.per_minute_rate
        subtotal = rates.base_fare + distance_fare + time_fare
        total = subtotal * to_decimal(surge_multiplier) * to_decimal(time_multiplier)

        minimum_applied = total < rates.minimum_fare
        total = max(total, rates.minimum_fare)

        return FareBreakdown(
            vehicle_class=VehicleClass(vehicle_class),
            base_fare=quantize(rates.base_fare, self.currency),
            distance_km=distance_km,
            distance_fare=quantize(distance_fare, self.currency),
            duration_min=duration_min,
            time_fare=quantize(time_fare, self.currency),
            surge_multiplier=surge_multiplier,
            time_multiplier=time_multiplier,
            total_fare=quantize(total, self.currency),
            currency=self.currency,
            minimum_fare_applied=minimum_applied,
        )
