"""
Single-slot availability decisions.

A slot is available when the therapist works that weekday, the slot lies
inside the working window and clear of the break, and no occupying booking
overlaps it. The decision depends only on the snapshot the collaborators
return at call time; nothing is cached between calls.
"""

import logging
from typing import AbstractSet, Optional, Tuple

from pendulum import Date

from .deadline import Deadline, call_with_deadline
from .exceptions import InvalidInputError, NoAvailabilityDataError, SchedulingError
from .interval_math import contains, overlapping, overlaps
from .models import (
    AvailabilityQuery,
    AvailabilityResult,
    Booking,
    DaySnapshot,
    TimeSlot,
    UnavailableReason,
    WorkingWindow,
)
from .ports import AvailabilityPort, WorkingHoursPolicy

logger = logging.getLogger(__name__)


class SlotChecker:
    """
    Checks one slot against working hours and the stored bookings.

    Algorithm:
    1. Validate the slot duration against the configured bounds
    2. Look up the working window; reject without fetching bookings if the
       slot falls outside it
    3. Fetch the bookings for the date, dropping the excluded one
    4. Collect every overlapping booking
    """

    def __init__(
        self,
        availability: AvailabilityPort,
        working_hours: WorkingHoursPolicy,
        min_duration_minutes: int = 15,
        max_duration_minutes: int = 480
    ):
        self.availability = availability
        self.working_hours = working_hours
        self.min_duration_minutes = min_duration_minutes
        self.max_duration_minutes = max_duration_minutes

    def validate_duration(self, duration_minutes: int, field_name: str = "duration") -> None:
        if not self.min_duration_minutes <= duration_minutes <= self.max_duration_minutes:
            raise InvalidInputError(
                field_name,
                f"Duration must be between {self.min_duration_minutes} and "
                f"{self.max_duration_minutes} minutes, got {duration_minutes}"
            )

    def validate_slot(self, slot: TimeSlot, field_name: str = "slot") -> None:
        # start < end is enforced when the TimeSlot is built
        self.validate_duration(slot.duration_minutes(), field_name)

    async def check(
        self,
        query: AvailabilityQuery,
        deadline: Optional[Deadline] = None
    ) -> AvailabilityResult:
        """
        Check a single slot.

        Raises:
            InvalidInputError: If the slot duration is out of bounds
            NoAvailabilityDataError: If bookings could not be fetched
            SchedulingTimeoutError: If the deadline elapses
        """
        result, _ = await self.check_with_snapshot(query, deadline)
        return result

    async def check_with_snapshot(
        self,
        query: AvailabilityQuery,
        deadline: Optional[Deadline] = None
    ) -> Tuple[AvailabilityResult, DaySnapshot]:
        """
        Check a single slot and return the snapshot it was decided on.

        The snapshot carries no bookings when the slot was rejected by the
        working window alone.
        """
        self.validate_slot(query.slot)

        window = await self.window_for(query.therapist_id, query.date, deadline)
        rejection = self.check_working_hours(query.slot, window)
        if rejection is not None:
            logger.debug("Slot %s rejected for therapist %s: %s", query.slot, query.therapist_id, rejection.value)
            snapshot = DaySnapshot(therapist_id=query.therapist_id, date=query.date, window=window)
            return AvailabilityResult(available=False, reason=rejection), snapshot

        bookings = await self.fetch_bookings(query.therapist_id, query.date, deadline)
        snapshot = DaySnapshot(
            therapist_id=query.therapist_id,
            date=query.date,
            window=window,
            bookings=bookings
        )

        return self.evaluate(query.slot, snapshot, query.excluded_ids()), snapshot

    async def window_for(
        self,
        therapist_id: str,
        date: Date,
        deadline: Optional[Deadline] = None
    ) -> Optional[WorkingWindow]:
        try:
            return await call_with_deadline(
                self.working_hours.window_for(therapist_id, date.weekday()),
                deadline,
                "working hours lookup"
            )
        except SchedulingError:
            raise
        except Exception as exc:
            raise NoAvailabilityDataError(
                f"Could not look up working hours for therapist {therapist_id} on {date}: {exc}"
            ) from exc

    async def fetch_bookings(
        self,
        therapist_id: str,
        date: Date,
        deadline: Optional[Deadline] = None
    ) -> Tuple[Booking, ...]:
        """Fetch the occupying bookings of a therapist on a date, ordered by start."""
        try:
            bookings = await call_with_deadline(
                self.availability.get_bookings(therapist_id, date),
                deadline,
                "booking fetch"
            )
        except SchedulingError:
            raise
        except Exception as exc:
            raise NoAvailabilityDataError(
                f"Could not fetch bookings for therapist {therapist_id} on {date}: {exc}"
            ) from exc

        relevant = [
            booking for booking in bookings
            if booking.date == date and booking.status.occupies_time
        ]
        logger.debug(
            "Fetched %d bookings (%d occupying) for therapist %s on %s",
            len(bookings), len(relevant), therapist_id, date
        )
        return tuple(sorted(relevant, key=lambda b: (b.start, b.end, b.id)))

    async def load_snapshot(
        self,
        therapist_id: str,
        date: Date,
        deadline: Optional[Deadline] = None
    ) -> DaySnapshot:
        """
        Load window and bookings for one date.

        Bookings are not fetched for days the therapist does not work.
        """
        window = await self.window_for(therapist_id, date, deadline)
        if window is None:
            return DaySnapshot(therapist_id=therapist_id, date=date, window=None)

        bookings = await self.fetch_bookings(therapist_id, date, deadline)
        return DaySnapshot(therapist_id=therapist_id, date=date, window=window, bookings=bookings)

    @staticmethod
    def check_working_hours(
        slot: TimeSlot,
        window: Optional[WorkingWindow]
    ) -> Optional[UnavailableReason]:
        """Return why the slot is outside bookable hours, or None if it is inside."""
        if window is None:
            return UnavailableReason.NON_WORKING_DAY

        if not contains(window, slot):
            return UnavailableReason.OUTSIDE_WORKING_HOURS

        break_period = window.break_period()
        if break_period is not None and overlaps(slot, break_period):
            return UnavailableReason.BREAK_TIME

        return None

    @classmethod
    def evaluate(
        cls,
        slot: TimeSlot,
        snapshot: DaySnapshot,
        exclude_booking_ids: AbstractSet[str] = frozenset()
    ) -> AvailabilityResult:
        """Decide availability of ``slot`` against an already loaded snapshot."""
        rejection = cls.check_working_hours(slot, snapshot.window)
        if rejection is not None:
            return AvailabilityResult(available=False, reason=rejection)

        candidates = [
            booking for booking in snapshot.bookings
            if booking.id not in exclude_booking_ids
        ]
        conflicts = tuple(overlapping(slot, candidates))

        if conflicts:
            return AvailabilityResult(
                available=False,
                conflicts=conflicts,
                reason=UnavailableReason.BOOKING_CONFLICT
            )

        return AvailabilityResult(available=True)
