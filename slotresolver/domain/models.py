"""
Domain models for slots, bookings, working windows and resolution requests.

All models are immutable value objects built per call. Calendar dates are
pendulum ``Date`` objects, wall-clock times are plain ``datetime.time`` values
without timezone information.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from typing import FrozenSet, Iterator, List, Optional, Tuple

import pendulum
from pendulum import Date

from .exceptions import InvalidInputError

MINUTES_PER_DAY = 24 * 60

WALL_CLOCK_PATTERN = re.compile(r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$")

WEEKDAY_NAMES = {
    0: "Montag",
    1: "Dienstag",
    2: "Mittwoch",
    3: "Donnerstag",
    4: "Freitag",
    5: "Samstag",
    6: "Sonntag"
}


def to_minutes(value: time) -> int:
    """Return minutes since midnight for a wall-clock time."""
    return value.hour * 60 + value.minute


def from_minutes(minutes: int) -> time:
    """
    Convert minutes since midnight back to a wall-clock time.

    Raises:
        ValueError: If the value does not fall on the same calendar day
    """
    if not 0 <= minutes < MINUTES_PER_DAY:
        raise ValueError(f"{minutes} minutes is outside of a calendar day")
    return time(hour=minutes // 60, minute=minutes % 60)


def parse_wall_clock(value: "str | time", field_name: str = "time") -> time:
    """
    Parse an ``HH:mm`` 24-hour string into a wall-clock time.

    ``time`` objects are passed through with seconds dropped.
    """
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0, tzinfo=None)

    if not isinstance(value, str) or not WALL_CLOCK_PATTERN.match(value.strip()):
        raise InvalidInputError(field_name, f"Invalid time format (HH:mm): {value!r}")

    hours, minutes = value.strip().split(":")
    return time(hour=int(hours), minute=int(minutes))


def format_wall_clock(value: time) -> str:
    return value.strftime("%H:%M")


def as_calendar_date(value: "str | date", field_name: str = "date") -> Date:
    """
    Normalise a date, datetime or ISO string to a pendulum ``Date``.

    Datetimes keep their own wall-clock date; no timezone conversion happens.
    """
    if isinstance(value, str):
        try:
            value = pendulum.parse(value.strip())
        except ValueError as exc:
            raise InvalidInputError(field_name, f"Could not parse date: {value!r}") from exc

    # datetime is a subclass of date, so it has to be checked first
    if isinstance(value, datetime):
        return pendulum.date(value.year, value.month, value.day)
    if isinstance(value, date):
        return pendulum.date(value.year, value.month, value.day)

    raise InvalidInputError(field_name, f"Not a calendar date: {value!r}")


class BookingStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"

    @property
    def occupies_time(self) -> bool:
        """Only sessions that are still going to happen block the calendar."""
        return self in (BookingStatus.SCHEDULED, BookingStatus.IN_PROGRESS)


class UnavailableReason(str, Enum):
    """Why a slot was rejected."""
    NON_WORKING_DAY = "NON_WORKING_DAY"
    OUTSIDE_WORKING_HOURS = "OUTSIDE_WORKING_HOURS"
    BREAK_TIME = "BREAK_TIME"
    BOOKING_CONFLICT = "BOOKING_CONFLICT"
    INTRA_BATCH_CONFLICT = "INTRA_BATCH_CONFLICT"


@dataclass(frozen=True)
class TimeSlot:
    """
    A candidate interval on one calendar date.

    Invariant: start must be before end.
    """
    date: Date
    start: time
    end: time

    def __post_init__(self):
        if self.start >= self.end:
            raise InvalidInputError(
                "end",
                f"Start time {format_wall_clock(self.start)} must be before "
                f"end time {format_wall_clock(self.end)}"
            )

    @classmethod
    def from_minutes(cls, slot_date: Date, start_minutes: int, duration_minutes: int) -> "TimeSlot":
        """Build a slot from minutes since midnight; raises ValueError past midnight."""
        return cls(
            date=slot_date,
            start=from_minutes(start_minutes),
            end=from_minutes(start_minutes + duration_minutes)
        )

    @property
    def start_minutes(self) -> int:
        return to_minutes(self.start)

    @property
    def end_minutes(self) -> int:
        return to_minutes(self.end)

    def duration_minutes(self) -> int:
        """Return the duration in minutes."""
        return self.end_minutes - self.start_minutes

    def format_display(self) -> str:
        """
        Format the slot for display.
        Format: Wochentag, DD.MM.YYYY | HH:MM – HH:MM Uhr
        """
        weekday = WEEKDAY_NAMES[self.date.weekday()]
        date_str = self.date.format("DD.MM.YYYY")
        time_str = f"{format_wall_clock(self.start)} – {format_wall_clock(self.end)} Uhr"

        return f"{weekday}, {date_str} | {time_str} ({self.duration_minutes()} Min.)"

    def __str__(self) -> str:
        return (
            f"{self.date.format('DD.MM.YYYY')} "
            f"{format_wall_clock(self.start)} - {format_wall_clock(self.end)}"
        )


@dataclass(frozen=True)
class Booking:
    """
    An already committed session on a therapist's calendar.

    Bookings are owned by the persistence layer; the engine only reads them.
    """
    id: str
    therapist_id: str
    date: Date
    start: time
    end: time
    status: BookingStatus = BookingStatus.SCHEDULED
    description: str = ""

    def __post_init__(self):
        if self.start >= self.end:
            raise ValueError(
                f"Booking {self.id}: start {self.start} must be before end {self.end}"
            )

    def __str__(self) -> str:
        return f"{self.id} ({format_wall_clock(self.start)} - {format_wall_clock(self.end)})"


@dataclass(frozen=True)
class BreakPeriod:
    start: time
    end: time


@dataclass(frozen=True)
class WorkingWindow:
    """Bookable hours of a therapist for one weekday (0=Monday, 6=Sunday)."""
    weekday: int
    start: time
    end: time
    break_start: Optional[time] = None
    break_end: Optional[time] = None

    def __post_init__(self):
        if self.start >= self.end:
            raise ValueError(f"Working window start {self.start} must be before end {self.end}")
        if (self.break_start is None) != (self.break_end is None):
            raise ValueError("break_start and break_end must be given together")

    def break_period(self) -> Optional[BreakPeriod]:
        if self.break_start is None or self.break_end is None:
            return None
        return BreakPeriod(start=self.break_start, end=self.break_end)


@dataclass
class WorkingHours:
    """
    Default working hours shared by therapists without their own schedule.
    """
    start_time: time
    end_time: time
    exclude_weekdays: List[int]  # 0=Monday, 6=Sunday

    def is_working_day(self, weekday: int) -> bool:
        """Check if a given weekday is a working day."""
        return weekday not in self.exclude_weekdays

    def window_for_weekday(self, weekday: int) -> Optional[WorkingWindow]:
        """
        Get the working window for a weekday.
        Returns None if it's not a working day.
        """
        if not self.is_working_day(weekday):
            return None

        return WorkingWindow(weekday=weekday, start=self.start_time, end=self.end_time)


@dataclass(frozen=True)
class DaySnapshot:
    """Working window and bookings of one therapist on one date, fetched once."""
    therapist_id: str
    date: Date
    window: Optional[WorkingWindow]
    bookings: Tuple[Booking, ...] = ()


@dataclass(frozen=True)
class AvailabilityQuery:
    therapist_id: str
    date: Date
    slot: TimeSlot
    exclude_booking_id: Optional[str] = None

    def __post_init__(self):
        if self.slot.date != self.date:
            raise InvalidInputError(
                "date",
                f"Slot date {self.slot.date} does not match query date {self.date}"
            )

    def excluded_ids(self) -> FrozenSet[str]:
        return frozenset({self.exclude_booking_id}) if self.exclude_booking_id else frozenset()


@dataclass(frozen=True)
class AvailabilityResult:
    """
    Outcome of a single-slot check.

    ``suggestions`` holds same-day alternatives when the slot collides with
    existing bookings and alternatives were requested.
    """
    available: bool
    conflicts: Tuple[Booking, ...] = ()
    reason: Optional[UnavailableReason] = None
    suggestions: Tuple["ResolutionSuggestion", ...] = ()


@dataclass(frozen=True)
class BulkAvailabilityQuery:
    therapist_id: str
    date: Date
    slots: Tuple[TimeSlot, ...]
    exclude_booking_ids: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class BulkSlotResult:
    index: int
    slot: TimeSlot
    available: bool
    conflicts: Tuple[Booking, ...] = ()
    conflicts_within_batch: Tuple[int, ...] = ()
    reason: Optional[UnavailableReason] = None


@dataclass(frozen=True)
class BulkAvailabilityResult:
    """Per-slot results in the same order as the requested slots."""
    therapist_id: str
    date: Date
    results: Tuple[BulkSlotResult, ...]

    def __iter__(self) -> Iterator[BulkSlotResult]:
        return iter(self.results)

    def __len__(self) -> int:
        return len(self.results)

    def __getitem__(self, index: int) -> BulkSlotResult:
        return self.results[index]

    @property
    def all_available(self) -> bool:
        return all(result.available for result in self.results)


@dataclass(frozen=True)
class ResolutionPreferences:
    preferred_start: Optional[time] = None
    max_shift_minutes: int = 60
    allow_different_day: bool = False

    def __post_init__(self):
        if self.max_shift_minutes < 0:
            raise InvalidInputError(
                "max_shift_minutes",
                f"must not be negative, got {self.max_shift_minutes}"
            )


@dataclass(frozen=True)
class ResolutionRequest:
    """
    Ask for alternatives to a slot of ``duration`` minutes on ``date``.

    ``original_start`` is the start time that was found to conflict; it is
    the search anchor when no preferred start is given.
    """
    therapist_id: str
    date: Date
    duration: int
    preferences: ResolutionPreferences = field(default_factory=ResolutionPreferences)
    original_start: Optional[time] = None
    exclude_booking_ids: FrozenSet[str] = frozenset()

    @property
    def anchor(self) -> Optional[time]:
        return self.preferences.preferred_start or self.original_start


@dataclass(frozen=True)
class ResolutionSuggestion:
    date: Date
    start: time
    end: time
    time_shift_minutes: int
    day_shift_count: int

    def sort_key(self, prefer_earlier_on_tie: bool = True) -> Tuple[int, int, int]:
        """Same-day small shifts first, then by start time."""
        start = to_minutes(self.start)
        return (
            self.day_shift_count,
            abs(self.time_shift_minutes),
            start if prefer_earlier_on_tie else -start
        )

    @property
    def slot(self) -> TimeSlot:
        return TimeSlot(date=self.date, start=self.start, end=self.end)

    @property
    def reason(self) -> str:
        """Explain how far the suggestion moved from the requested time."""
        shift = self.time_shift_minutes
        if shift == 0:
            when = "same time"
        elif shift < 0:
            when = f"{-shift} minutes earlier"
        else:
            when = f"{shift} minutes later"

        if self.day_shift_count == 0:
            return "Requested time is available" if shift == 0 else f"Found available slot {when}"
        if self.day_shift_count == 1:
            return f"Next day, {when}"
        return f"{self.day_shift_count} days later, {when}"

    def format_display(self) -> str:
        return self.slot.format_display()
