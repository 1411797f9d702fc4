"""
Booking stores serving snapshots from memory or from a JSON file.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List

from pendulum import Date

from ..domain.exceptions import InvalidInputError, NoAvailabilityDataError
from ..domain.models import (
    Booking,
    BookingStatus,
    TimeSlot,
    as_calendar_date,
    parse_wall_clock,
    to_minutes,
)

logger = logging.getLogger(__name__)


def booking_from_mapping(entry: Dict[str, Any]) -> Booking:
    """
    Build a booking from a JSON-style mapping.

    Expected format::

        {
            "id": "b-1",
            "therapistId": "t-1",
            "date": "2024-11-25",
            "start": "10:00",
            "end": "11:00",            # or "duration": 60
            "status": "SCHEDULED",     # optional
            "description": "..."       # optional
        }

    Raises:
        ValueError: If the entry is incomplete or malformed
    """
    try:
        booking_date = as_calendar_date(entry["date"])
        start = parse_wall_clock(entry["start"], "start")
        if "end" in entry:
            end = parse_wall_clock(entry["end"], "end")
        else:
            end = TimeSlot.from_minutes(booking_date, to_minutes(start), int(entry["duration"])).end

        return Booking(
            id=str(entry["id"]),
            therapist_id=str(entry.get("therapistId") or entry["therapist_id"]),
            date=booking_date,
            start=start,
            end=end,
            status=BookingStatus(entry.get("status", BookingStatus.SCHEDULED.value)),
            description=entry.get("description", "")
        )
    except KeyError as exc:
        raise ValueError(f"Booking entry is missing field {exc}") from exc
    except (TypeError, InvalidInputError) as exc:
        raise ValueError(f"Booking entry is malformed: {exc}") from exc


class InMemoryBookingStore:
    """
    Serves bookings from a list held in memory.

    Useful for embedding the engine with a snapshot obtained elsewhere and
    for tests.
    """

    def __init__(self, bookings: Iterable[Booking] = ()):
        self._bookings: List[Booking] = list(bookings)

    async def get_bookings(self, therapist_id: str, date: Date) -> List[Booking]:
        return [
            booking for booking in self._bookings
            if booking.therapist_id == therapist_id and booking.date == date
        ]


class JsonBookingStore:
    """
    Serves bookings from a JSON file containing a list of booking entries.

    The file is read on every call so the answer always reflects the current
    file contents.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    async def get_bookings(self, therapist_id: str, date: Date) -> List[Booking]:
        bookings = await asyncio.to_thread(self._load_bookings)
        return [
            booking for booking in bookings
            if booking.therapist_id == therapist_id and booking.date == date
        ]

    def _load_bookings(self) -> List[Booking]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                entries = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise NoAvailabilityDataError(f"Could not read bookings from {self.path}: {exc}") from exc

        if not isinstance(entries, list):
            raise NoAvailabilityDataError(f"Bookings file {self.path} must contain a list of bookings")

        bookings: List[Booking] = []
        for position, entry in enumerate(entries):
            if not isinstance(entry, dict):
                raise NoAvailabilityDataError(f"Booking #{position} in {self.path} is not an object")
            try:
                bookings.append(booking_from_mapping(entry))
            except ValueError as exc:
                logger.error("Invalid booking #%d in %s: %s", position, self.path, exc)
                raise NoAvailabilityDataError(f"Invalid booking #{position} in {self.path}: {exc}") from exc

        return bookings
