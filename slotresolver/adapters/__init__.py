"""
Adapters layer - AvailabilityPort implementations.
"""

from .booking_store import InMemoryBookingStore, JsonBookingStore, booking_from_mapping
from .http_client import HttpAvailabilityClient

__all__ = ["HttpAvailabilityClient", "InMemoryBookingStore", "JsonBookingStore", "booking_from_mapping"]
