"""
Application service exposing the three scheduling operations.

The service validates caller input at the boundary, builds the engine's
typed queries and runs the domain components under an optional deadline.
Collaborators are injected as protocols, so the database-backed ports, the
HTTP client or the in-memory store can be plugged in without touching the
engine.

The engine only reads a snapshot. Two callers can both be told that the same
slot is free; the component that creates bookings must insert atomically
("insert if still free") to close that race. An available result is never a
reservation.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import time
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from ..config import AppConfig, EngineSettings
from ..domain.bulk_checker import BulkSlotChecker
from ..domain.conflict_resolver import ConflictResolver
from ..domain.deadline import Deadline
from ..domain.exceptions import InvalidInputError, SchedulingError
from ..domain.models import (
    AvailabilityQuery,
    AvailabilityResult,
    BulkAvailabilityResult,
    ResolutionPreferences,
    ResolutionSuggestion,
    TimeSlot,
    UnavailableReason,
    format_wall_clock,
)
from ..domain.ports import AvailabilityPort, WorkingHoursPolicy
from ..domain.slot_checker import SlotChecker
from ..schemas import (
    AvailabilityCheckRequest,
    BulkAvailabilityCheckRequest,
    ConflictResolutionRequest,
    to_invalid_input,
)
from .serialization import availability_to_dict, bulk_availability_to_dict, suggestions_to_dict

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

WallClock = Union[str, time]
SlotSpec = Union[TimeSlot, Tuple[WallClock, WallClock], Mapping[str, Any]]


class SchedulingService:
    """
    Orchestrates validation, snapshot retrieval and the scheduling engine.

    Operations:
    - check_availability: is one slot free?
    - check_bulk_availability: which of several slots are free, also against each other?
    - resolve_conflicts: nearest free alternatives under the caller's constraints
    """

    ACTIONS = ("check", "bulk-check", "resolve")

    def __init__(
        self,
        availability: AvailabilityPort,
        working_hours: WorkingHoursPolicy,
        settings: Optional[EngineSettings] = None,
    ) -> None:
        self._settings = settings or EngineSettings()
        self._slot_checker = SlotChecker(
            availability=availability,
            working_hours=working_hours,
            min_duration_minutes=self._settings.min_duration_minutes,
            max_duration_minutes=self._settings.max_duration_minutes,
        )
        self._bulk_checker = BulkSlotChecker(self._slot_checker)
        self._resolver = ConflictResolver(
            self._slot_checker,
            step_minutes=self._settings.step_minutes,
            horizon_days=self._settings.horizon_days,
            default_limit=self._settings.default_limit,
            max_shift_limit=self._settings.max_shift_minutes,
            prefer_earlier_on_tie=self._settings.prefer_earlier_on_tie,
        )

    @classmethod
    def from_config(cls, config: AppConfig, availability: AvailabilityPort) -> "SchedulingService":
        return cls(
            availability=availability,
            working_hours=config.build_working_hours_policy(),
            settings=config.engine,
        )

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    async def check_availability(
        self,
        *,
        therapist_id: str,
        date: Any,
        start: WallClock,
        end: WallClock,
        duration: Optional[int] = None,
        exclude_booking_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> AvailabilityResult:
        """Check whether a single slot is free."""
        request = self._validate(
            AvailabilityCheckRequest,
            {
                "therapist_id": therapist_id,
                "date": date,
                "start_time": _wall_clock_text(start),
                "end_time": _wall_clock_text(end),
                "duration": duration,
                "exclude_session_id": exclude_booking_id,
            },
        )
        return await self._check(request.to_query(), self._deadline(timeout))

    async def check_bulk_availability(
        self,
        *,
        therapist_id: str,
        date: Any,
        slots: Sequence[SlotSpec],
        exclude_booking_ids: Optional[Iterable[str]] = None,
        timeout: Optional[float] = None,
    ) -> BulkAvailabilityResult:
        """Check several slots of one date against storage and against each other."""
        request = self._validate(
            BulkAvailabilityCheckRequest,
            {
                "therapist_id": therapist_id,
                "date": date,
                "time_slots": [_slot_payload(slot) for slot in slots],
                "exclude_session_ids": list(exclude_booking_ids or ()),
            },
        )
        return await self._bulk_checker.check_all(request.to_query(), self._deadline(timeout))

    async def resolve_conflicts(
        self,
        *,
        therapist_id: str,
        date: Any,
        duration: int,
        preferences: Union[ResolutionPreferences, Mapping[str, Any], None] = None,
        original_start: Optional[WallClock] = None,
        exclude_booking_ids: Optional[Iterable[str]] = None,
        limit: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> List[ResolutionSuggestion]:
        """
        Suggest the nearest free slots of ``duration`` minutes.

        An empty list is a successful answer: nothing fits the constraints.
        """
        request = self._validate(
            ConflictResolutionRequest,
            {
                "therapist_id": therapist_id,
                "date": date,
                "duration": duration,
                "preferences": _preferences_payload(preferences),
                "original_time": _wall_clock_text(original_start) if original_start else None,
                "exclude_session_ids": list(exclude_booking_ids or ()),
            },
        )
        return await self._resolver.resolve(
            request.to_request(self._settings.default_max_shift_minutes),
            limit=limit,
            deadline=self._deadline(timeout),
        )

    async def dispatch(self, action: str, payload: Mapping[str, Any]) -> Tuple[int, Dict[str, Any]]:
        """
        Run an operation from a raw request body and build a status/response pair.

        Invalid input maps to 4xx, data access failures to 5xx; an empty
        suggestion list is a 200 with zero results.
        """
        if action not in self.ACTIONS:
            return 400, {"error": f"Invalid action. Use: {', '.join(self.ACTIONS)}"}

        try:
            if action == "check":
                request = self._validate(AvailabilityCheckRequest, payload)
                result = await self._check(request.to_query(), self._deadline(None))
                data: Any = availability_to_dict(result)
            elif action == "bulk-check":
                request = self._validate(BulkAvailabilityCheckRequest, payload)
                bulk = await self._bulk_checker.check_all(request.to_query(), self._deadline(None))
                data = bulk_availability_to_dict(bulk)
            else:
                request = self._validate(ConflictResolutionRequest, payload)
                suggestions = await self._resolver.resolve(
                    request.to_request(self._settings.default_max_shift_minutes),
                    deadline=self._deadline(None),
                )
                data = suggestions_to_dict(suggestions)

        except InvalidInputError as exc:
            return exc.http_status, {"error": "Invalid request data", "field": exc.field, "details": exc.message}
        except SchedulingError as exc:
            logger.error("Scheduling %s failed: %s", action, exc)
            return exc.http_status, {"error": str(exc)}

        return 200, {"success": True, "data": data}

    async def _check(self, query: AvailabilityQuery, deadline: Optional[Deadline]) -> AvailabilityResult:
        """Check one slot and attach same-day alternatives to a booking conflict."""
        result, snapshot = await self._slot_checker.check_with_snapshot(query, deadline)
        if result.reason != UnavailableReason.BOOKING_CONFLICT or not self._settings.suggest_alternatives:
            return result

        suggestions = self._resolver.alternatives(
            query.slot,
            snapshot,
            query.excluded_ids(),
            max_shift_minutes=self._settings.default_max_shift_minutes
        )
        return replace(result, suggestions=tuple(suggestions))

    def _deadline(self, timeout: Optional[float]) -> Optional[Deadline]:
        return Deadline.after(timeout if timeout is not None else self._settings.timeout_seconds)

    @staticmethod
    def _validate(model: Type[M], payload: Mapping[str, Any]) -> M:
        try:
            return model.model_validate(dict(payload))
        except ValidationError as exc:
            raise to_invalid_input(exc) from exc


def _wall_clock_text(value: Any) -> Any:
    """Hand times to the boundary schema as HH:mm text; leave anything else to validation."""
    if isinstance(value, time):
        return format_wall_clock(value)
    return value


def _slot_payload(slot: SlotSpec) -> Any:
    if isinstance(slot, TimeSlot):
        return {"start_time": format_wall_clock(slot.start), "end_time": format_wall_clock(slot.end)}
    if isinstance(slot, tuple) and len(slot) == 2:
        return {"start_time": _wall_clock_text(slot[0]), "end_time": _wall_clock_text(slot[1])}
    return slot


def _preferences_payload(preferences: Union[ResolutionPreferences, Mapping[str, Any], None]) -> Any:
    if isinstance(preferences, ResolutionPreferences):
        return {
            "preferred_time": (
                format_wall_clock(preferences.preferred_start) if preferences.preferred_start else None
            ),
            "max_time_shift": preferences.max_shift_minutes,
            "allow_different_day": preferences.allow_different_day,
        }
    return preferences
