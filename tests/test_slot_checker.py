"""
Tests for single-slot availability checks.
"""

import asyncio
from datetime import time
from typing import List, Tuple

import pendulum
import pytest

from slotresolver.domain.deadline import Deadline
from slotresolver.domain.exceptions import (
    InvalidInputError,
    NoAvailabilityDataError,
    SchedulingTimeoutError,
)
from slotresolver.domain.models import (
    AvailabilityQuery,
    Booking,
    BookingStatus,
    TimeSlot,
    UnavailableReason,
    WorkingHours,
    WorkingWindow,
    parse_wall_clock,
)
from slotresolver.domain.slot_checker import SlotChecker
from slotresolver.domain.working_hours import ConfiguredWorkingHoursPolicy, TherapistSchedule

MONDAY = pendulum.date(2024, 11, 25)
SATURDAY = pendulum.date(2024, 11, 30)
THERAPIST = "t-1"


class StubAvailability:
    """Minimal stub matching AvailabilityPort."""

    def __init__(self, bookings=(), delay: float = 0, error: Exception = None):
        self._bookings = list(bookings)
        self._delay = delay
        self._error = error
        self.calls: List[Tuple[str, str]] = []

    async def get_bookings(self, therapist_id, date):
        self.calls.append((therapist_id, date.to_date_string()))
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error:
            raise self._error
        return [b for b in self._bookings if b.therapist_id == therapist_id and b.date == date]


class FailingPolicy:
    """Working-hours policy whose backing store is unreachable."""

    async def window_for(self, therapist_id, weekday):
        raise ConnectionError("schedule service unreachable")


def _booking(booking_id: str, start: str, end: str, day=MONDAY, status=BookingStatus.SCHEDULED) -> Booking:
    return Booking(
        id=booking_id,
        therapist_id=THERAPIST,
        date=day,
        start=parse_wall_clock(start),
        end=parse_wall_clock(end),
        status=status
    )


def _query(start: str, end: str, day=MONDAY, exclude=None) -> AvailabilityQuery:
    slot = TimeSlot(date=day, start=parse_wall_clock(start), end=parse_wall_clock(end))
    return AvailabilityQuery(therapist_id=THERAPIST, date=day, slot=slot, exclude_booking_id=exclude)


def _build_checker(availability: StubAvailability, windows=None) -> SlotChecker:
    policy = ConfiguredWorkingHoursPolicy(
        schedules={THERAPIST: TherapistSchedule(therapist_id=THERAPIST, windows=windows)},
        default_hours=WorkingHours(start_time=time(9, 0), end_time=time(17, 0), exclude_weekdays=[5, 6])
    )
    return SlotChecker(availability=availability, working_hours=policy)


class TestSlotChecker:
    """Tests for SlotChecker."""

    def test_overlapping_booking_conflicts(self):
        """10:30-11:15 collides with the 10:00-11:00 booking."""
        booking = _booking("b-1", "10:00", "11:00")
        checker = _build_checker(StubAvailability([booking]))

        result = asyncio.run(checker.check(_query("10:30", "11:15")))

        assert not result.available
        assert result.conflicts == (booking,)
        assert result.reason == UnavailableReason.BOOKING_CONFLICT

    def test_touching_booking_is_free(self):
        """11:00-12:00 starts exactly when the booking ends."""
        checker = _build_checker(StubAvailability([_booking("b-1", "10:00", "11:00")]))

        result = asyncio.run(checker.check(_query("11:00", "12:00")))

        assert result.available
        assert result.conflicts == ()
        assert result.reason is None

    def test_identical_interval_conflicts(self):
        booking = _booking("b-1", "14:00", "15:00")
        checker = _build_checker(StubAvailability([booking]))

        result = asyncio.run(checker.check(_query("14:00", "15:00")))

        assert not result.available
        assert booking in result.conflicts

    def test_reports_every_conflict(self):
        """All conflicts are reported, ordered by start."""
        late = _booking("b-2", "11:00", "12:00")
        early = _booking("b-1", "09:30", "10:15")
        checker = _build_checker(StubAvailability([late, early, _booking("b-3", "13:00", "14:00")]))

        result = asyncio.run(checker.check(_query("10:00", "11:30")))

        assert result.conflicts == (early, late)

    def test_excluded_booking_is_ignored(self):
        """A session being rescheduled does not block its own new time."""
        checker = _build_checker(StubAvailability([_booking("b-1", "10:00", "11:00")]))

        result = asyncio.run(checker.check(_query("10:30", "11:30", exclude="b-1")))

        assert result.available

    def test_exclusion_removes_only_one_booking(self):
        other = _booking("b-2", "11:00", "12:00")
        checker = _build_checker(StubAvailability([_booking("b-1", "10:00", "11:00"), other]))

        result = asyncio.run(checker.check(_query("10:30", "11:30", exclude="b-1")))

        assert not result.available
        assert result.conflicts == (other,)

    def test_cancelled_bookings_do_not_block(self):
        checker = _build_checker(
            StubAvailability([_booking("b-1", "10:00", "11:00", status=BookingStatus.CANCELLED)])
        )

        result = asyncio.run(checker.check(_query("10:00", "11:00")))

        assert result.available

    def test_repeated_checks_are_identical(self):
        checker = _build_checker(StubAvailability([_booking("b-1", "10:00", "11:00")]))

        first = asyncio.run(checker.check(_query("10:30", "11:15")))
        second = asyncio.run(checker.check(_query("10:30", "11:15")))

        assert first == second

    def test_no_caching_between_calls(self):
        """Every check reads the snapshot again."""
        availability = StubAvailability()
        checker = _build_checker(availability)

        asyncio.run(checker.check(_query("10:00", "11:00")))
        asyncio.run(checker.check(_query("10:00", "11:00")))

        assert len(availability.calls) == 2


class TestWorkingHoursRejection:
    """Slots outside bookable hours are rejected before bookings are read."""

    def test_outside_working_hours(self):
        availability = StubAvailability()
        checker = _build_checker(availability)

        result = asyncio.run(checker.check(_query("16:30", "17:30")))

        assert not result.available
        assert result.reason == UnavailableReason.OUTSIDE_WORKING_HOURS
        assert result.conflicts == ()
        assert availability.calls == []

    def test_non_working_day(self):
        availability = StubAvailability()
        checker = _build_checker(availability)

        result = asyncio.run(checker.check(_query("10:00", "11:00", day=SATURDAY)))

        assert not result.available
        assert result.reason == UnavailableReason.NON_WORKING_DAY
        assert availability.calls == []

    def test_break_time(self):
        windows = {
            0: WorkingWindow(weekday=0, start=time(8, 0), end=time(16, 0), break_start=time(12, 0), break_end=time(12, 30))
        }
        checker = _build_checker(StubAvailability(), windows=windows)

        during_break = asyncio.run(checker.check(_query("12:15", "13:00")))
        after_break = asyncio.run(checker.check(_query("12:30", "13:30")))

        assert during_break.reason == UnavailableReason.BREAK_TIME
        assert after_break.available

    def test_evaluate_without_window(self):
        from slotresolver.domain.models import DaySnapshot

        snapshot = DaySnapshot(therapist_id=THERAPIST, date=MONDAY, window=None)
        slot = TimeSlot(date=MONDAY, start=time(10, 0), end=time(11, 0))

        assert SlotChecker.evaluate(slot, snapshot).reason == UnavailableReason.NON_WORKING_DAY


class TestValidationAndFailures:
    """Invalid input and collaborator failures."""

    def test_duration_below_minimum(self):
        checker = _build_checker(StubAvailability())

        with pytest.raises(InvalidInputError) as exc_info:
            asyncio.run(checker.check(_query("10:00", "10:10")))

        assert exc_info.value.field == "slot"

    def test_duration_above_maximum(self):
        checker = SlotChecker(
            availability=StubAvailability(),
            working_hours=ConfiguredWorkingHoursPolicy({}, WorkingHours(time(9, 0), time(17, 0), [])),
            max_duration_minutes=120
        )

        with pytest.raises(InvalidInputError):
            asyncio.run(checker.check(_query("09:00", "12:00")))

    def test_mismatched_query_date(self):
        slot = TimeSlot(date=MONDAY, start=time(10, 0), end=time(11, 0))

        with pytest.raises(InvalidInputError) as exc_info:
            AvailabilityQuery(therapist_id=THERAPIST, date=SATURDAY, slot=slot)

        assert exc_info.value.field == "date"

    def test_io_failure_is_not_unavailability(self):
        checker = _build_checker(StubAvailability(error=ConnectionError("database down")))

        with pytest.raises(NoAvailabilityDataError):
            asyncio.run(checker.check(_query("10:00", "11:00")))

    def test_failing_policy_is_not_unavailability(self):
        availability = StubAvailability()
        checker = SlotChecker(availability=availability, working_hours=FailingPolicy())

        with pytest.raises(NoAvailabilityDataError) as exc_info:
            asyncio.run(checker.check(_query("10:00", "11:00")))

        assert isinstance(exc_info.value.__cause__, ConnectionError)
        assert availability.calls == []

    def test_unexpected_store_error_is_not_unavailability(self):
        checker = _build_checker(StubAvailability(error=RuntimeError("corrupt index")))

        with pytest.raises(NoAvailabilityDataError) as exc_info:
            asyncio.run(checker.check(_query("10:00", "11:00")))

        assert "corrupt index" in str(exc_info.value)

    def test_deadline_elapses_during_fetch(self):
        checker = _build_checker(StubAvailability(delay=5))

        with pytest.raises(SchedulingTimeoutError):
            asyncio.run(checker.check(_query("10:00", "11:00"), Deadline(0.05)))

    def test_unknown_therapist_has_no_window(self):
        checker = _build_checker(StubAvailability())
        slot = TimeSlot(date=MONDAY, start=time(10, 0), end=time(11, 0))

        result = asyncio.run(checker.check(AvailabilityQuery(therapist_id="nobody", date=MONDAY, slot=slot)))

        assert result.reason == UnavailableReason.NON_WORKING_DAY
