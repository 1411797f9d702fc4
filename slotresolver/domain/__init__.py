"""
Domain layer - Pure scheduling logic behind collaborator protocols.
"""

from .bulk_checker import BulkSlotChecker
from .conflict_resolver import ConflictResolver
from .models import (
    AvailabilityQuery,
    AvailabilityResult,
    Booking,
    BookingStatus,
    BulkAvailabilityQuery,
    BulkAvailabilityResult,
    BulkSlotResult,
    ResolutionPreferences,
    ResolutionRequest,
    ResolutionSuggestion,
    TimeSlot,
    UnavailableReason,
    WorkingHours,
    WorkingWindow,
)
from .slot_checker import SlotChecker

__all__ = [
    "AvailabilityQuery",
    "AvailabilityResult",
    "Booking",
    "BookingStatus",
    "BulkAvailabilityQuery",
    "BulkAvailabilityResult",
    "BulkSlotChecker",
    "BulkSlotResult",
    "ConflictResolver",
    "ResolutionPreferences",
    "ResolutionRequest",
    "ResolutionSuggestion",
    "SlotChecker",
    "TimeSlot",
    "UnavailableReason",
    "WorkingHours",
    "WorkingWindow",
]
