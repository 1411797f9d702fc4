"""
Bounded search for the nearest free alternatives to a conflicting slot.

Candidates are generated breadth-first by shift magnitude around an anchor
time: the anchor itself, then anchor -/+ step, anchor -/+ 2*step and so on up
to the allowed maximum shift. Without an anchor the working window is walked
from its start in steps, like a first-free-slot scan. When a different day is
allowed, the same search runs on each following day up to the horizon. Around
an anchor the number of candidate evaluations is therefore at most::

    (2 * max_shift / step + 1) * (1 + horizon_days if allow_different_day else 1)

and bookings are fetched once per workable day examined, never per candidate.
"""

import logging
from typing import AbstractSet, Iterator, List, Optional, Tuple

from .deadline import Deadline
from .exceptions import InvalidInputError, SchedulingTimeoutError
from .models import (
    DaySnapshot,
    ResolutionPreferences,
    ResolutionRequest,
    ResolutionSuggestion,
    TimeSlot,
    WorkingWindow,
    to_minutes,
)
from .slot_checker import SlotChecker

logger = logging.getLogger(__name__)


class ConflictResolver:
    """
    Produces ranked suggestions for a slot that could not be booked.

    Suggestions are ordered by ``(day_shift_count, |time_shift_minutes|, start)``
    so same-day small shifts always come before day-shifted ones. Ties of
    equal shift magnitude go to the earlier start unless
    ``prefer_earlier_on_tie`` is disabled.

    The resolver keeps no state between calls.
    """

    def __init__(
        self,
        slot_checker: SlotChecker,
        step_minutes: int = 15,
        horizon_days: int = 14,
        default_limit: int = 3,
        max_shift_limit: int = 480,
        prefer_earlier_on_tie: bool = True
    ):
        if step_minutes <= 0:
            raise ValueError(f"step_minutes must be positive, got {step_minutes}")
        self.slot_checker = slot_checker
        self.step_minutes = step_minutes
        self.horizon_days = horizon_days
        self.default_limit = default_limit
        self.max_shift_limit = max_shift_limit
        self.prefer_earlier_on_tie = prefer_earlier_on_tie

    async def resolve(
        self,
        request: ResolutionRequest,
        limit: Optional[int] = None,
        deadline: Optional[Deadline] = None
    ) -> List[ResolutionSuggestion]:
        """
        Search for up to ``limit`` free alternatives.

        An empty list means the search space was exhausted without a match.
        When the deadline elapses, the suggestions confirmed so far are
        returned; if there are none the timeout is raised.

        Raises:
            InvalidInputError: If duration, shift or limit are out of bounds
            NoAvailabilityDataError: If bookings could not be fetched
            SchedulingTimeoutError: If the deadline elapses before any suggestion
        """
        limit = self.default_limit if limit is None else limit
        self._validate(request, limit)

        preferences = request.preferences
        day_count = 1 + self.horizon_days if preferences.allow_different_day else 1
        suggestions: List[ResolutionSuggestion] = []

        try:
            for day_shift in range(day_count):
                if len(suggestions) >= limit:
                    break

                day = request.date.add(days=day_shift)
                snapshot = await self.slot_checker.load_snapshot(request.therapist_id, day, deadline)

                if snapshot.window is None:
                    logger.debug("Skipping %s: therapist %s does not work", day, request.therapist_id)
                    continue

                suggestions.extend(
                    self._search_day(snapshot, request, day_shift, limit - len(suggestions))
                )

        except SchedulingTimeoutError:
            if not suggestions:
                raise
            logger.warning(
                "Deadline elapsed while resolving for therapist %s; returning %d partial suggestion(s)",
                request.therapist_id, len(suggestions)
            )

        ranked = self.rank(suggestions)[:limit]
        logger.debug(
            "Resolved %d suggestion(s) for therapist %s on %s",
            len(ranked), request.therapist_id, request.date
        )
        return ranked

    def rank(self, suggestions: List[ResolutionSuggestion]) -> List[ResolutionSuggestion]:
        return sorted(
            suggestions,
            key=lambda suggestion: suggestion.sort_key(self.prefer_earlier_on_tie)
        )

    def shifts(self, max_shift_minutes: int) -> Iterator[int]:
        """Yield shift magnitudes 0, step, 2*step, ... up to the maximum."""
        return iter(range(0, max_shift_minutes + 1, self.step_minutes))

    def _validate(self, request: ResolutionRequest, limit: int) -> None:
        if limit < 1:
            raise InvalidInputError("limit", f"must be at least 1, got {limit}")

        self.slot_checker.validate_duration(request.duration)

        max_shift = request.preferences.max_shift_minutes
        if max_shift > self.max_shift_limit:
            raise InvalidInputError(
                "max_shift_minutes",
                f"must be between 0 and {self.max_shift_limit}, got {max_shift}"
            )

    def alternatives(
        self,
        slot: TimeSlot,
        snapshot: DaySnapshot,
        exclude_booking_ids: AbstractSet[str] = frozenset(),
        max_shift_minutes: int = 60,
        limit: Optional[int] = None
    ) -> List[ResolutionSuggestion]:
        """
        Same-day alternatives to ``slot`` from an already loaded snapshot.

        Used to enrich a failed availability check without fetching again.
        """
        if snapshot.window is None:
            return []

        limit = self.default_limit if limit is None else limit
        request = ResolutionRequest(
            therapist_id=snapshot.therapist_id,
            date=snapshot.date,
            duration=slot.duration_minutes(),
            preferences=ResolutionPreferences(
                preferred_start=slot.start,
                max_shift_minutes=min(max_shift_minutes, self.max_shift_limit)
            ),
            exclude_booking_ids=frozenset(exclude_booking_ids)
        )
        return self.rank(self._search_day(snapshot, request, 0, limit))[:limit]

    def _candidate_levels(
        self,
        request: ResolutionRequest,
        window: WorkingWindow
    ) -> Tuple[int, Iterator[Tuple[int, ...]]]:
        """
        Return the base minute and the offset levels to examine on one day.

        Around an anchor each level holds the -shift and +shift offsets up to
        the maximum shift. Without an anchor the whole working window is
        walked from its start, one offset per step.
        """
        anchor = request.anchor
        if anchor is not None:
            levels = (
                (0,) if shift == 0 else (-shift, shift)
                for shift in self.shifts(request.preferences.max_shift_minutes)
            )
            return to_minutes(anchor), levels

        window_start = to_minutes(window.start)
        last_start = to_minutes(window.end) - request.duration
        levels = ((offset,) for offset in range(0, last_start - window_start + 1, self.step_minutes))
        return window_start, levels

    def _search_day(
        self,
        snapshot: DaySnapshot,
        request: ResolutionRequest,
        day_shift: int,
        needed: int
    ) -> List[ResolutionSuggestion]:
        """
        Expand candidates level by level on one day.

        The current level is always finished before stopping, so the -shift
        and +shift candidates compete in ranking rather than by discovery
        order.
        """
        base_minutes, levels = self._candidate_levels(request, snapshot.window)
        found: List[ResolutionSuggestion] = []
        evaluated = 0

        for offsets in levels:
            for offset in offsets:
                slot = self._candidate(snapshot, base_minutes + offset, request.duration)
                if slot is None:
                    continue

                evaluated += 1
                result = SlotChecker.evaluate(slot, snapshot, request.exclude_booking_ids)
                if result.available:
                    found.append(
                        ResolutionSuggestion(
                            date=slot.date,
                            start=slot.start,
                            end=slot.end,
                            time_shift_minutes=offset,
                            day_shift_count=day_shift
                        )
                    )

            if len(found) >= needed:
                break

        logger.debug(
            "Evaluated %d candidate(s) on %s, %d available",
            evaluated, snapshot.date, len(found)
        )
        return found

    @staticmethod
    def _candidate(snapshot: DaySnapshot, start_minutes: int, duration: int) -> Optional[TimeSlot]:
        """Build a candidate slot, or None when it would leave the calendar day."""
        try:
            return TimeSlot.from_minutes(snapshot.date, start_minutes, duration)
        except ValueError:
            return None
