"""
Tests for the conflict resolver.
"""

import asyncio
from datetime import time

import pendulum
import pytest

from slotresolver.domain.conflict_resolver import ConflictResolver
from slotresolver.domain.deadline import Deadline
from slotresolver.domain.exceptions import InvalidInputError, SchedulingTimeoutError
from slotresolver.domain.models import (
    Booking,
    ResolutionPreferences,
    ResolutionRequest,
    WorkingHours,
    WorkingWindow,
)
from slotresolver.domain.slot_checker import SlotChecker
from slotresolver.domain.working_hours import ConfiguredWorkingHoursPolicy, TherapistSchedule

MONDAY = pendulum.date(2024, 11, 25)
FRIDAY = pendulum.date(2024, 11, 29)
THERAPIST = "t-1"


class StubAvailability:
    """Stub AvailabilityPort recording fetched dates."""

    def __init__(self, bookings=(), slow_dates=()):
        self._bookings = list(bookings)
        self._slow_dates = set(slow_dates)
        self.fetched = []

    async def get_bookings(self, therapist_id, date):
        self.fetched.append(date.to_date_string())
        if date.to_date_string() in self._slow_dates:
            await asyncio.sleep(5)
        return [b for b in self._bookings if b.therapist_id == therapist_id and b.date == date]


def _booking(booking_id, start: time, end: time, day=MONDAY) -> Booking:
    return Booking(id=booking_id, therapist_id=THERAPIST, date=day, start=start, end=end)


def _full_day(day) -> Booking:
    return _booking(f"full-{day}", time(9, 0), time(17, 0), day)


def _resolver(availability, windows=None, **kwargs) -> ConflictResolver:
    policy = ConfiguredWorkingHoursPolicy(
        schedules={THERAPIST: TherapistSchedule(therapist_id=THERAPIST, windows=windows)},
        default_hours=WorkingHours(start_time=time(9, 0), end_time=time(17, 0), exclude_weekdays=[5, 6])
    )
    return ConflictResolver(SlotChecker(availability=availability, working_hours=policy), **kwargs)


def _request(day=MONDAY, duration=60, preferred=time(10, 0), max_shift=60, different_day=False, **kwargs):
    return ResolutionRequest(
        therapist_id=THERAPIST,
        date=day,
        duration=duration,
        preferences=ResolutionPreferences(
            preferred_start=preferred,
            max_shift_minutes=max_shift,
            allow_different_day=different_day
        ),
        **kwargs
    )


def _summary(suggestions):
    return [(s.day_shift_count, s.time_shift_minutes, s.start) for s in suggestions]


class TestSameDayResolution:
    """Tests for same-day searches."""

    def test_equal_shifts_prefer_earlier_start(self):
        """Both -60 and +60 are free; the earlier start ranks first."""
        resolver = _resolver(StubAvailability([_booking("b-1", time(10, 0), time(11, 0))]))

        suggestions = asyncio.run(resolver.resolve(_request()))

        assert _summary(suggestions) == [(0, -60, time(9, 0)), (0, 60, time(11, 0))]
        assert suggestions[1].end == time(12, 0)

    def test_equal_shifts_prefer_later_start_when_configured(self):
        resolver = _resolver(
            StubAvailability([_booking("b-1", time(10, 0), time(11, 0))]),
            prefer_earlier_on_tie=False
        )

        suggestions = asyncio.run(resolver.resolve(_request()))

        assert _summary(suggestions) == [(0, 60, time(11, 0)), (0, -60, time(9, 0))]

    def test_fully_booked_day_returns_empty(self):
        resolver = _resolver(StubAvailability([_full_day(MONDAY)]))

        assert asyncio.run(resolver.resolve(_request())) == []

    def test_zero_shift_yields_at_most_one(self):
        resolver = _resolver(StubAvailability())

        suggestions = asyncio.run(resolver.resolve(_request(max_shift=0)))

        assert _summary(suggestions) == [(0, 0, time(10, 0))]
        assert suggestions[0].reason == "Requested time is available"

    def test_shift_bound_and_ordering(self):
        bookings = [
            _booking("b-1", time(9, 30), time(10, 15)),
            _booking("b-2", time(11, 0), time(11, 45)),
            _booking("b-3", time(13, 0), time(14, 0)),
        ]
        resolver = _resolver(StubAvailability(bookings), default_limit=10)

        suggestions = asyncio.run(resolver.resolve(_request(duration=45, preferred=time(11, 0), max_shift=120)))

        assert suggestions
        assert all(abs(s.time_shift_minutes) <= 120 for s in suggestions)
        assert all(s.time_shift_minutes % 15 == 0 for s in suggestions)
        keys = [s.sort_key() for s in suggestions]
        assert keys == sorted(keys)

    def test_suggestions_are_free(self):
        bookings = [_booking("b-1", time(9, 30), time(10, 15)), _booking("b-2", time(11, 0), time(11, 45))]
        resolver = _resolver(StubAvailability(bookings), default_limit=10)

        suggestions = asyncio.run(resolver.resolve(_request(duration=45, max_shift=180)))

        for suggestion in suggestions:
            for booking in bookings:
                assert suggestion.end <= booking.start or booking.end <= suggestion.start

    def test_anchor_falls_back_to_window_start(self):
        resolver = _resolver(StubAvailability([_booking("b-1", time(9, 0), time(10, 0))]))

        suggestions = asyncio.run(resolver.resolve(_request(preferred=None), limit=1))

        assert _summary(suggestions) == [(0, 60, time(10, 0))]

    def test_without_anchor_the_whole_window_is_walked(self):
        """A free slot far from the window start is found even with a small max shift."""
        resolver = _resolver(StubAvailability([_booking("b-1", time(9, 0), time(12, 0))]))

        suggestions = asyncio.run(resolver.resolve(_request(preferred=None, max_shift=60)))

        assert _summary(suggestions) == [
            (0, 180, time(12, 0)),
            (0, 195, time(12, 15)),
            (0, 210, time(12, 30)),
        ]

    def test_walk_stops_at_last_fitting_start(self):
        bookings = [_booking("b-1", time(9, 0), time(16, 0))]
        resolver = _resolver(StubAvailability(bookings), default_limit=10)

        suggestions = asyncio.run(resolver.resolve(_request(preferred=None, max_shift=0)))

        assert [s.start for s in suggestions] == [time(16, 0)]

    def test_original_start_is_anchor_without_preference(self):
        resolver = _resolver(StubAvailability())

        suggestions = asyncio.run(resolver.resolve(_request(preferred=None, original_start=time(14, 0)), limit=1))

        assert _summary(suggestions) == [(0, 0, time(14, 0))]

    def test_excluded_booking_is_ignored(self):
        resolver = _resolver(StubAvailability([_booking("b-1", time(10, 0), time(11, 0))]))

        suggestions = asyncio.run(resolver.resolve(_request(exclude_booking_ids=frozenset({"b-1"})), limit=1))

        assert _summary(suggestions) == [(0, 0, time(10, 0))]

    def test_limit_caps_results(self):
        resolver = _resolver(StubAvailability())

        suggestions = asyncio.run(resolver.resolve(_request(), limit=2))

        assert len(suggestions) == 2

    def test_one_fetch_per_day(self):
        availability = StubAvailability([_booking("b-1", time(10, 0), time(11, 0))])
        resolver = _resolver(availability, default_limit=10)

        asyncio.run(resolver.resolve(_request(max_shift=240)))

        assert availability.fetched == ["2024-11-25"]

    def test_candidates_past_midnight_are_skipped(self):
        windows = {0: WorkingWindow(weekday=0, start=time(20, 0), end=time(23, 59))}
        resolver = _resolver(StubAvailability(), windows=windows)

        suggestions = asyncio.run(resolver.resolve(_request(preferred=time(23, 0)), limit=1))

        assert _summary(suggestions) == [(0, -15, time(22, 45))]


class TestDifferentDayResolution:
    """Tests for searches spanning several days."""

    def test_next_day(self):
        resolver = _resolver(StubAvailability([_full_day(MONDAY)]))

        suggestions = asyncio.run(resolver.resolve(_request(different_day=True)))

        assert _summary(suggestions) == [(1, 0, time(10, 0)), (1, -15, time(9, 45)), (1, 15, time(10, 15))]
        assert suggestions[0].date == pendulum.date(2024, 11, 26)
        assert suggestions[0].reason == "Next day, same time"

    def test_same_day_ranks_before_next_day(self):
        bookings = [_booking("b-1", time(9, 0), time(16, 0))]
        resolver = _resolver(StubAvailability(bookings), default_limit=5)

        suggestions = asyncio.run(resolver.resolve(_request(preferred=time(15, 30), different_day=True)))

        assert suggestions[0].day_shift_count == 0
        assert suggestions[0].start == time(16, 0)
        assert [s.day_shift_count for s in suggestions] == sorted(s.day_shift_count for s in suggestions)

    def test_skips_weekend_without_fetching(self):
        availability = StubAvailability([_full_day(FRIDAY)])
        resolver = _resolver(availability)

        suggestions = asyncio.run(resolver.resolve(_request(day=FRIDAY, different_day=True), limit=1))

        assert availability.fetched == ["2024-11-29", "2024-12-02"]
        assert _summary(suggestions) == [(3, 0, time(10, 0))]
        assert suggestions[0].date == pendulum.date(2024, 12, 2)

    def test_horizon_bounds_search(self):
        days = [MONDAY.add(days=offset) for offset in range(5)]
        availability = StubAvailability([_full_day(day) for day in days])
        resolver = _resolver(availability, horizon_days=2)

        suggestions = asyncio.run(resolver.resolve(_request(different_day=True)))

        assert suggestions == []
        assert availability.fetched == ["2024-11-25", "2024-11-26", "2024-11-27"]

    def test_different_day_disabled(self):
        availability = StubAvailability([_full_day(MONDAY)])
        resolver = _resolver(availability)

        assert asyncio.run(resolver.resolve(_request())) == []
        assert availability.fetched == ["2024-11-25"]


class TestResolverLimits:
    """Validation and deadlines."""

    def test_partial_results_on_timeout(self):
        availability = StubAvailability(slow_dates={"2024-11-26"})
        resolver = _resolver(availability)

        suggestions = asyncio.run(
            resolver.resolve(_request(max_shift=0, different_day=True), deadline=Deadline(0.2))
        )

        assert _summary(suggestions) == [(0, 0, time(10, 0))]

    def test_timeout_without_results_raises(self):
        resolver = _resolver(StubAvailability(slow_dates={"2024-11-25"}))

        with pytest.raises(SchedulingTimeoutError):
            asyncio.run(resolver.resolve(_request(), deadline=Deadline(0.1)))

    def test_limit_must_be_positive(self):
        resolver = _resolver(StubAvailability())

        with pytest.raises(InvalidInputError) as exc_info:
            asyncio.run(resolver.resolve(_request(), limit=0))

        assert exc_info.value.field == "limit"

    def test_max_shift_above_limit(self):
        resolver = _resolver(StubAvailability())

        with pytest.raises(InvalidInputError) as exc_info:
            asyncio.run(resolver.resolve(_request(max_shift=600)))

        assert exc_info.value.field == "max_shift_minutes"

    def test_duration_out_of_bounds(self):
        resolver = _resolver(StubAvailability())

        with pytest.raises(InvalidInputError) as exc_info:
            asyncio.run(resolver.resolve(_request(duration=10)))

        assert exc_info.value.field == "duration"

    def test_shifts(self):
        resolver = _resolver(StubAvailability(), step_minutes=30)

        assert list(resolver.shifts(90)) == [0, 30, 60, 90]
        assert list(resolver.shifts(0)) == [0]
