"""
Collaborator protocols the engine depends on.

Concrete implementations (database, HTTP, JSON file, in memory) live in the
adapters package and are injected.
"""

from __future__ import annotations

from typing import Optional, Protocol, Sequence

from pendulum import Date

from .models import Booking, WorkingWindow


class AvailabilityPort(Protocol):
    """Read-only access to a therapist's existing bookings."""

    async def get_bookings(self, therapist_id: str, date: Date) -> Sequence[Booking]:
        """Return the bookings of ``therapist_id`` on ``date``."""


class WorkingHoursPolicy(Protocol):
    """Lookup of a therapist's bookable hours per weekday."""

    async def window_for(self, therapist_id: str, weekday: int) -> Optional[WorkingWindow]:
        """Return the working window, or None when the therapist does not work that day."""
