"""Unit tests for the driver / trip compatibility predicates."""

from datetime import datetime, timedelta

import pytest

from brokerage.domain.entities import DriverAvailability
from brokerage.domain.matching import (
    capacity_ok,
    evaluate_candidate,
    normalize_location,
    pickup_location_matches,
    schedule_conflicts,
    within_window,
)

WINDOW_FROM = datetime(2025, 1, 1, 8, 0)
WINDOW_TO = datetime(2025, 1, 1, 18, 0)


def _availability(location="Tel Aviv", capacity=8):
    return DriverAvailability(
        current_location=location,
        available_from=WINDOW_FROM,
        available_to=WINDOW_TO,
        vehicle_capacity=capacity,
    )


class TestLocation:
    def test_normalize_strips_punctuation_and_case(self):
        assert normalize_location("  Tel-Aviv,   CENTER ") == "tel aviv center"

    def test_driver_city_inside_pickup(self):
        assert pickup_location_matches("Tel Aviv", "Tel Aviv, Center")

    def test_punctuation_insensitive(self):
        assert pickup_location_matches("tel-aviv", "Tel Aviv Center")

    def test_other_city(self):
        assert not pickup_location_matches("Tel Aviv", "Haifa")

    def test_pickup_inside_driver_location(self):
        """A vague pickup still matches a more specific driver location."""
        assert pickup_location_matches("Tel Aviv, Center", "Tel Aviv")

    @pytest.mark.parametrize(
        "driver_location, pickup",
        [("Haifa", "Haifa Port, Gate 3"), ("Haifa Port, Gate 3", "haifa port")],
    )
    def test_match_works_both_ways(self, driver_location, pickup):
        assert pickup_location_matches(driver_location, pickup)

    @pytest.mark.parametrize("driver_location", [None, "", "  ", ",,"])
    def test_missing_driver_location_never_matches(self, driver_location):
        assert not pickup_location_matches(driver_location, "Tel Aviv")


class TestCapacityAndWindow:
    def test_capacity_equal_is_enough(self):
        assert capacity_ok(4, 4)

    def test_capacity_short(self):
        assert not capacity_ok(8, 10)

    def test_window_bounds_inclusive(self):
        assert within_window(WINDOW_FROM, WINDOW_FROM, WINDOW_TO)
        assert within_window(WINDOW_TO, WINDOW_FROM, WINDOW_TO)

    def test_outside_window(self):
        assert not within_window(WINDOW_TO + timedelta(minutes=1), WINDOW_FROM, WINDOW_TO)

    def test_unset_window(self):
        assert not within_window(WINDOW_FROM, None, WINDOW_TO)


class TestScheduleConflicts:
    def test_ninety_minutes_apart_conflict(self):
        booked = [datetime(2025, 1, 1, 10, 0)]
        assert schedule_conflicts(datetime(2025, 1, 1, 11, 30), booked)

    def test_one_hundred_fifty_minutes_apart_do_not_conflict(self):
        booked = [datetime(2025, 1, 1, 10, 0)]
        assert not schedule_conflicts(datetime(2025, 1, 1, 12, 30), booked)

    def test_symmetric(self):
        booked = [datetime(2025, 1, 1, 12, 0)]
        assert schedule_conflicts(datetime(2025, 1, 1, 10, 30), booked)

    def test_exactly_the_window_is_allowed(self):
        booked = [datetime(2025, 1, 1, 10, 0)]
        assert not schedule_conflicts(datetime(2025, 1, 1, 12, 0), booked)

    def test_other_day_same_time(self):
        booked = [datetime(2025, 1, 2, 10, 0)]
        assert not schedule_conflicts(datetime(2025, 1, 1, 10, 0), booked)

    def test_custom_window(self):
        booked = [datetime(2025, 1, 1, 10, 0)]
        assert not schedule_conflicts(datetime(2025, 1, 1, 10, 45), booked, window_minutes=30)

    def test_nothing_booked(self):
        assert not schedule_conflicts(datetime(2025, 1, 1, 10, 0), [])


class TestEvaluateCandidate:
    def _evaluate(self, availability=None, **overrides):
        kwargs = dict(
            pickup_location="Tel Aviv, Center",
            departure=datetime(2025, 1, 1, 12, 0),
            required_capacity=4,
        )
        kwargs.update(overrides)
        return evaluate_candidate(availability or _availability(), **kwargs)

    def test_matching_driver(self):
        result = self._evaluate()
        assert result.ok
        assert result.failed() == []

    def test_capacity_ten_rejected(self):
        result = self._evaluate(required_capacity=10)
        assert not result.ok
        assert result.failed() == ["capacity"]

    def test_out_of_window_rejected(self):
        result = self._evaluate(departure=datetime(2025, 1, 1, 19, 0))
        assert result.failed() == ["window"]

    def test_haifa_pickup_rejected(self):
        result = self._evaluate(pickup_location="Haifa")
        assert result.failed() == ["location"]

    def test_open_request_rejected(self):
        result = self._evaluate(has_open_request=True)
        assert result.failed() == ["proposal"]

    def test_booked_trip_nearby_rejected(self):
        result = self._evaluate(booked_departures=[datetime(2025, 1, 1, 13, 0)])
        assert result.failed() == ["schedule"]

    def test_location_policy_is_pluggable(self):
        result = self._evaluate(
            pickup_location="Haifa", location_policy=lambda driver, pickup: True
        )
        assert result.ok
