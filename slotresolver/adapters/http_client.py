"""
HTTP client fetching a therapist's sessions from the clinic backend.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import requests
from pendulum import Date

from ..domain.exceptions import NoAvailabilityDataError
from ..domain.models import (
    Booking,
    BookingStatus,
    TimeSlot,
    as_calendar_date,
    parse_wall_clock,
    to_minutes,
)

logger = logging.getLogger(__name__)


class HttpAvailabilityClient:
    """
    Client for the clinic's sessions endpoint.

    Uses ``GET {base_url}/sessions?therapistId=...&date=YYYY-MM-DD`` and maps
    the returned sessions onto bookings. Requests are blocking, so they run in
    a worker thread to keep the event loop free. A thread cannot be cancelled,
    so a caller's deadline only bounds the thread if ``timeout`` is no longer
    than that deadline.
    """

    SESSIONS_PATH = "/sessions"
    DEFAULT_TIMEOUT = 10.0

    def __init__(
        self,
        base_url: str,
        api_token: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the sessions API client.

        Args:
            base_url: Base URL of the clinic API, e.g. https://clinic.example/api
            api_token: Optional bearer token
            timeout: Per-request timeout in seconds
            session: Optional requests session (connection pooling, tests)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.headers = {"Accept": "application/json"}
        if api_token:
            self.headers["Authorization"] = f"Bearer {api_token}"

    async def get_bookings(self, therapist_id: str, date: Date) -> List[Booking]:
        return await asyncio.to_thread(self.fetch_sessions, therapist_id, date)

    def fetch_sessions(self, therapist_id: str, date: Date) -> List[Booking]:
        """
        Fetch the occupying sessions of a therapist on one date.

        Raises:
            NoAvailabilityDataError: If the request fails or the response is malformed
        """
        url = f"{self.base_url}{self.SESSIONS_PATH}"
        params = {
            "therapistId": therapist_id,
            "date": date.to_date_string(),
        }

        try:
            response = self.session.get(
                url,
                params=params,
                headers=self.headers,
                timeout=self.timeout
            )
            response.raise_for_status()
            data = response.json()

        except requests.exceptions.RequestException as e:
            raise NoAvailabilityDataError(f"Failed to fetch sessions from {url}: {e}") from e
        except ValueError as e:
            raise NoAvailabilityDataError(f"Sessions response from {url} is not valid JSON: {e}") from e

        return self._parse_sessions_response(data, therapist_id, date)

    def _parse_sessions_response(
        self,
        response_data: Any,
        therapist_id: str,
        date: Date
    ) -> List[Booking]:
        """
        Parse the sessions response into bookings.

        Response format:
        {
            "success": true,
            "data": [
                {
                    "id": "...",
                    "therapistId": "...",
                    "scheduledDate": "2024-11-25T00:00:00.000Z",
                    "scheduledTime": "10:00",
                    "duration": 60,
                    "status": "SCHEDULED",
                    "patient": {"firstName": "...", "lastName": "..."},
                    "serviceAssignment": {"service": {"name": "..."}}
                }
            ]
        }
        """
        sessions = response_data.get("data") if isinstance(response_data, dict) else response_data
        if not isinstance(sessions, list):
            raise NoAvailabilityDataError("Sessions response does not contain a list of sessions")

        bookings: List[Booking] = []

        for session in sessions:
            try:
                booking = self._parse_session(session, therapist_id)
            except (KeyError, TypeError, ValueError) as e:
                raise NoAvailabilityDataError(f"Could not parse session: {e}") from e

            if booking.date != date or not booking.status.occupies_time:
                continue
            bookings.append(booking)

        logger.debug("Fetched %d occupying session(s) for therapist %s on %s", len(bookings), therapist_id, date)
        return bookings

    @staticmethod
    def _parse_session(session: Dict[str, Any], therapist_id: str) -> Booking:
        session_date = as_calendar_date(session["scheduledDate"])
        start = parse_wall_clock(session["scheduledTime"], "scheduledTime")
        end = TimeSlot.from_minutes(session_date, to_minutes(start), int(session["duration"])).end

        return Booking(
            id=str(session["id"]),
            therapist_id=str(session.get("therapistId", therapist_id)),
            date=session_date,
            start=start,
            end=end,
            status=BookingStatus(session.get("status", BookingStatus.SCHEDULED.value)),
            description=HttpAvailabilityClient._describe(session)
        )

    @staticmethod
    def _describe(session: Dict[str, Any]) -> str:
        patient = session.get("patient") or {}
        service = (session.get("serviceAssignment") or {}).get("service") or {}
        patient_name = " ".join(
            part for part in (patient.get("firstName"), patient.get("lastName")) if part
        )
        return " - ".join(part for part in (service.get("name"), patient_name) if part)

    def test_connection(self) -> bool:
        """
        Test that the API is reachable.

        Raises:
            NoAvailabilityDataError: If the connection test fails
        """
        try:
            response = self.session.get(self.base_url, headers=self.headers, timeout=self.timeout)
            response.raise_for_status()
            return True

        except requests.exceptions.RequestException as e:
            raise NoAvailabilityDataError(f"Connection test failed: {e}") from e
