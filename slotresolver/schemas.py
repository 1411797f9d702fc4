"""
Request models validated at the application boundary.

These mirror the request bodies of the clinic's conflict-resolution endpoint
(camelCase aliases are accepted) and turn them into the engine's typed
queries. Nothing untyped gets past this module.
"""

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .domain.exceptions import InvalidInputError
from .domain.models import (
    AvailabilityQuery,
    BulkAvailabilityQuery,
    ResolutionPreferences,
    ResolutionRequest,
    TimeSlot,
    WALL_CLOCK_PATTERN,
    as_calendar_date,
    parse_wall_clock,
    to_minutes,
)

WALL_CLOCK_REGEX = WALL_CLOCK_PATTERN.pattern

MIN_DURATION_MINUTES = 15
MAX_DURATION_MINUTES = 480
MAX_TIME_SHIFT_MINUTES = 480


class BoundaryModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class DatedRequest(BoundaryModel):
    therapist_id: str = Field(alias="therapistId", min_length=1)
    date: str

    @field_validator("date", mode="before")
    @classmethod
    def validate_date(cls, value: Any) -> str:
        """Accept dates, datetimes and ISO strings; keep the wall-clock date."""
        return as_calendar_date(value).to_date_string()

    @property
    def calendar_date(self):
        return as_calendar_date(self.date)


class SlotInput(BoundaryModel):
    start_time: str = Field(alias="startTime", pattern=WALL_CLOCK_REGEX)
    end_time: str = Field(alias="endTime", pattern=WALL_CLOCK_REGEX)
    duration: Optional[int] = Field(default=None, ge=MIN_DURATION_MINUTES, le=MAX_DURATION_MINUTES)

    @model_validator(mode="after")
    def validate_interval(self) -> "SlotInput":
        start = to_minutes(parse_wall_clock(self.start_time, "startTime"))
        end = to_minutes(parse_wall_clock(self.end_time, "endTime"))
        if start >= end:
            raise InvalidInputError("endTime", f"{self.end_time} must be later than {self.start_time}")
        if self.duration is not None and self.duration != end - start:
            raise InvalidInputError(
                "duration",
                f"{self.duration} does not match {self.start_time}-{self.end_time} ({end - start} minutes)"
            )
        return self

    def to_slot(self, slot_date) -> TimeSlot:
        return TimeSlot(
            date=slot_date,
            start=parse_wall_clock(self.start_time, "startTime"),
            end=parse_wall_clock(self.end_time, "endTime")
        )


class AvailabilityCheckRequest(DatedRequest, SlotInput):
    exclude_session_id: Optional[str] = Field(default=None, alias="excludeSessionId")

    def to_query(self) -> AvailabilityQuery:
        slot_date = self.calendar_date
        return AvailabilityQuery(
            therapist_id=self.therapist_id,
            date=slot_date,
            slot=self.to_slot(slot_date),
            exclude_booking_id=self.exclude_session_id
        )


class BulkAvailabilityCheckRequest(DatedRequest):
    time_slots: List[SlotInput] = Field(alias="timeSlots", min_length=1)
    exclude_session_ids: List[str] = Field(default_factory=list, alias="excludeSessionIds")

    def to_query(self) -> BulkAvailabilityQuery:
        slot_date = self.calendar_date
        return BulkAvailabilityQuery(
            therapist_id=self.therapist_id,
            date=slot_date,
            slots=tuple(slot.to_slot(slot_date) for slot in self.time_slots),
            exclude_booking_ids=frozenset(self.exclude_session_ids)
        )


class PreferencesInput(BoundaryModel):
    preferred_time: Optional[str] = Field(default=None, alias="preferredTime", pattern=WALL_CLOCK_REGEX)
    max_time_shift: Optional[int] = Field(default=None, alias="maxTimeShift", ge=0, le=MAX_TIME_SHIFT_MINUTES)
    allow_different_day: bool = Field(default=False, alias="allowDifferentDay")

    def to_preferences(self, default_max_shift: int) -> ResolutionPreferences:
        return ResolutionPreferences(
            preferred_start=parse_wall_clock(self.preferred_time, "preferredTime") if self.preferred_time else None,
            max_shift_minutes=default_max_shift if self.max_time_shift is None else self.max_time_shift,
            allow_different_day=self.allow_different_day
        )


class ConflictResolutionRequest(DatedRequest):
    duration: int = Field(ge=MIN_DURATION_MINUTES, le=MAX_DURATION_MINUTES)
    preferences: Optional[PreferencesInput] = None
    original_time: Optional[str] = Field(default=None, alias="originalTime", pattern=WALL_CLOCK_REGEX)
    exclude_session_ids: List[str] = Field(default_factory=list, alias="excludeSessionIds")

    def to_request(self, default_max_shift: int) -> ResolutionRequest:
        preferences = self.preferences or PreferencesInput()
        return ResolutionRequest(
            therapist_id=self.therapist_id,
            date=self.calendar_date,
            duration=self.duration,
            preferences=preferences.to_preferences(default_max_shift),
            original_start=parse_wall_clock(self.original_time, "originalTime") if self.original_time else None,
            exclude_booking_ids=frozenset(self.exclude_session_ids)
        )


def to_invalid_input(exc: ValidationError) -> InvalidInputError:
    """Reduce a pydantic error to the first offending field."""
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error.get("loc", ()))

    cause = error.get("ctx", {}).get("error")
    if isinstance(cause, InvalidInputError):
        if not location:
            field = cause.field
        elif location.split(".")[-1] == cause.field:
            field = location
        else:
            field = f"{location}.{cause.field}"
        return InvalidInputError(field, cause.message)

    return InvalidInputError(location or "request", error["msg"])
