"""
Domain-specific exception hierarchy for the slot resolver.

An empty suggestion list from the resolver is a normal outcome and has no
exception of its own.
"""


class SchedulingError(Exception):
    """Base class for all application-level errors."""

    http_status = 500


class InvalidInputError(SchedulingError, ValueError):
    """Raised when a slot, duration, date or preference is malformed."""

    http_status = 422

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class NoAvailabilityDataError(SchedulingError):
    """Raised when bookings or working hours cannot be fetched or parsed."""

    http_status = 503


class SchedulingTimeoutError(SchedulingError):
    """Raised when the caller's deadline elapses before any result is confirmed."""

    http_status = 504


class ConfigurationError(SchedulingError):
    """Raised when the configuration file is missing or invalid."""
