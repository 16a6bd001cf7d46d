"""Unit tests for the fare pricing engine."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from ridecore.domain.distance import haversine_km, in_range, trip_distance_km
from ridecore.domain.enums import TrafficCondition, VehicleClass
from ridecore.domain.errors import ValidationError
from ridecore.domain.pricing import (
    DemandContext,
    FarePricingEngine,
    PricingContext,
    time_multiplier,
)
from tests.conftest import ROSEBANK, SANDTON, WEDNESDAY_MORNING


def at(day: int, hour: int) -> datetime:
    """A time in the week of Monday 12 Oct 2026."""
    return datetime(2026, 10, day, hour, 0, tzinfo=timezone.utc)


class TestCalculate:
    def setup_method(self):
        self.engine = FarePricingEngine()

    def test_standard_fare_off_peak(self):
        fare = self.engine.calculate(VehicleClass.STANDARD, 8, 20)
        assert fare.total_fare == Decimal("134.00")  # 20 + 8*10 + 20*1.7
        assert fare.distance_fare == Decimal("80.00")
        assert fare.time_fare == Decimal("34.00")
        assert not fare.minimum_fare_applied

    def test_minimum_fare_floor(self):
        fare = self.engine.calculate(VehicleClass.STANDARD, 0.5, 1)
        assert fare.total_fare == Decimal("35.00")
        assert fare.minimum_fare_applied

    def test_surge_and_time_multipliers_compound(self):
        fare = self.engine.calculate(
            "standard", 8, 20, surge_multiplier=1.5, time_multiplier=1.2
        )
        assert fare.total_fare == Decimal("241.20")  # 134 * 1.5 * 1.2

    def test_premium_rates(self):
        fare = self.engine.calculate(VehicleClass.PREMIUM, 10, 15)
        assert fare.total_fare == Decimal("197.50")  # 40 + 120 + 37.5

    def test_rounds_half_up_to_minor_unit(self):
        fare = self.engine.calculate(VehicleClass.STANDARD, 3.333, 7)
        # 20 + 33.33 + 11.9 = 65.23
        assert fare.total_fare == Decimal("65.23")
        assert fare.total_fare.as_tuple().exponent == -2

    def test_unknown_vehicle_class_rejected(self):
        with pytest.raises(ValidationError):
            self.engine.calculate("helicopter", 8, 20)

    def test_negative_distance_rejected(self):
        with pytest.raises(ValidationError):
            self.engine.calculate(VehicleClass.STANDARD, -1, 20)

    def test_every_class_respects_its_minimum(self):
        for vehicle_class, rates in self.engine.rates().items():
            fare = self.engine.calculate(vehicle_class, 0, 0)
            assert fare.total_fare == rates.minimum_fare


class TestSurge:
    def test_no_demand_signal_means_no_surge(self):
        assert FarePricingEngine.compute_surge(None) == 1.0

    def test_balanced_demand(self):
        assert FarePricingEngine.compute_surge(DemandContext(10, 10)) == 1.0

    def test_low_demand_never_discounts(self):
        assert FarePricingEngine.compute_surge(DemandContext(10, 5)) == 1.0

    def test_high_demand(self):
        assert FarePricingEngine.compute_surge(DemandContext(10, 15)) == 1.5

    def test_capped_at_three(self):
        assert FarePricingEngine.compute_surge(DemandContext(10, 50)) == 3.0

    def test_no_drivers_is_max_surge(self):
        assert FarePricingEngine.compute_surge(DemandContext(0, 4)) == 3.0


class TestDuration:
    def test_moderate_traffic(self):
        assert FarePricingEngine.estimated_minutes(15, TrafficCondition.MODERATE) == 30

    def test_rounds_up(self):
        assert FarePricingEngine.estimated_minutes(4.54, TrafficCondition.LIGHT) == 7

    def test_heavy_traffic_is_slower(self):
        light = FarePricingEngine.estimated_minutes(12, TrafficCondition.LIGHT)
        heavy = FarePricingEngine.estimated_minutes(12, TrafficCondition.HEAVY)
        assert heavy > light


class TestTimeMultiplier:
    def test_short_trip_ignores_peak(self):
        assert time_multiplier(at(12, 8), 1.5) == 1.0

    def test_weekday_morning_peak(self):
        assert time_multiplier(at(12, 8), 5) == 1.2

    def test_weekday_evening_peak(self):
        assert time_multiplier(at(13, 17), 5) == 1.2

    def test_off_peak(self):
        assert time_multiplier(WEDNESDAY_MORNING, 5) == 1.0

    def test_friday_evening_peak_wins_over_weekend_night(self):
        assert time_multiplier(at(16, 18), 5) == 1.2

    def test_friday_late_is_weekend_night(self):
        assert time_multiplier(at(16, 21), 5) == 1.3

    def test_saturday_afternoon_is_weekend_night(self):
        assert time_multiplier(at(17, 14), 5) == 1.3

    def test_early_sunday(self):
        assert time_multiplier(at(18, 2), 5) == 1.3

    def test_weekday_late_night(self):
        assert time_multiplier(at(13, 23), 5) == 1.2


class TestEstimate:
    def setup_method(self):
        self.engine = FarePricingEngine()

    def test_estimate_uses_haversine_distance(self):
        fare = self.engine.estimate(
            SANDTON, ROSEBANK, VehicleClass.STANDARD,
            PricingContext(requested_at=WEDNESDAY_MORNING),
        )
        expected_km = trip_distance_km(
            SANDTON.latitude, SANDTON.longitude, ROSEBANK.latitude, ROSEBANK.longitude
        )
        assert fare.distance_km == expected_km
        assert fare.duration_min == FarePricingEngine.estimated_minutes(expected_km)
        assert fare.surge_multiplier == 1.0
        assert fare.time_multiplier == 1.0
        assert fare.total_fare >= Decimal("35")

    def test_estimate_applies_demand(self):
        fare = self.engine.estimate(
            SANDTON, ROSEBANK, VehicleClass.STANDARD,
            PricingContext(
                requested_at=WEDNESDAY_MORNING,
                demand=DemandContext(available_drivers=4, pending_requests=10),
            ),
        )
        assert fare.surge_multiplier == 2.5

    def test_surge_override_is_clamped(self):
        fare = self.engine.estimate(
            SANDTON, ROSEBANK, VehicleClass.STANDARD,
            PricingContext(requested_at=WEDNESDAY_MORNING, surge_override=7.0),
        )
        assert fare.surge_multiplier == 3.0

    def test_same_point_trip_costs_the_minimum(self):
        fare = self.engine.estimate(
            SANDTON, SANDTON, VehicleClass.LUXURY,
            PricingContext(requested_at=WEDNESDAY_MORNING),
        )
        assert fare.distance_km == 0
        assert fare.total_fare == Decimal("120.00")
        assert fare.minimum_fare_applied


class TestRecomputeActual:
    def test_keeps_request_time_multipliers(self):
        engine = FarePricingEngine()
        estimate = engine.calculate(
            VehicleClass.STANDARD, 8, 20, surge_multiplier=2.0, time_multiplier=1.2
        )
        actual = engine.recompute_actual(estimate, 10, 25)
        # (20 + 100 + 42.5) * 2.0 * 1.2
        assert actual.total_fare == Decimal("390.00")
        assert actual.surge_multiplier == 2.0
        assert actual.time_multiplier == 1.2


class TestDistance:
    def test_same_point_is_zero(self):
        assert haversine_km(-26.2, 28.0, -26.2, 28.0) == pytest.approx(0.0)

    def test_one_degree_of_latitude(self):
        assert haversine_km(0, 0, 1, 0) == pytest.approx(111.19, abs=0.01)

    def test_in_range(self):
        assert in_range(-26.1076, 28.0567, -26.1080, 28.0570, max_km=1)
        assert not in_range(-26.1076, 28.0567, -26.1337, 28.2420, max_km=10)
