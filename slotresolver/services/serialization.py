"""
JSON-ready representations of engine results.

Field names follow the clinic API's camelCase conventions.
"""

from typing import Any, Dict, List, Sequence

from ..domain.models import (
    AvailabilityResult,
    Booking,
    BulkAvailabilityResult,
    ResolutionSuggestion,
    format_wall_clock,
)


def booking_to_dict(booking: Booking) -> Dict[str, Any]:
    return {
        "id": booking.id,
        "therapistId": booking.therapist_id,
        "date": booking.date.to_date_string(),
        "startTime": format_wall_clock(booking.start),
        "endTime": format_wall_clock(booking.end),
        "status": booking.status.value,
        "description": booking.description,
    }


def availability_to_dict(result: AvailabilityResult) -> Dict[str, Any]:
    return {
        "available": result.available,
        "reason": result.reason.value if result.reason else None,
        "conflicts": [booking_to_dict(booking) for booking in result.conflicts],
        "suggestions": [suggestion_to_dict(suggestion) for suggestion in result.suggestions],
    }


def bulk_availability_to_dict(result: BulkAvailabilityResult) -> List[Dict[str, Any]]:
    return [
        {
            "index": item.index,
            "startTime": format_wall_clock(item.slot.start),
            "endTime": format_wall_clock(item.slot.end),
            "available": item.available,
            "reason": item.reason.value if item.reason else None,
            "conflicts": [booking_to_dict(booking) for booking in item.conflicts],
            "conflictsWithinBatch": list(item.conflicts_within_batch),
        }
        for item in result
    ]


def suggestion_to_dict(suggestion: ResolutionSuggestion) -> Dict[str, Any]:
    return {
        "date": suggestion.date.to_date_string(),
        "startTime": format_wall_clock(suggestion.start),
        "endTime": format_wall_clock(suggestion.end),
        "timeShiftMinutes": suggestion.time_shift_minutes,
        "dayShiftCount": suggestion.day_shift_count,
        "reason": suggestion.reason,
    }


def suggestions_to_dict(suggestions: Sequence[ResolutionSuggestion]) -> Dict[str, Any]:
    return {
        "resolved": bool(suggestions),
        "suggestions": [suggestion_to_dict(suggestion) for suggestion in suggestions],
    }
