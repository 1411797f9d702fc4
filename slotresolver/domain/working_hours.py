"""
Working-hours policy backed by static per-therapist schedules.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from .models import WorkingHours, WorkingWindow

logger = logging.getLogger(__name__)


@dataclass
class TherapistSchedule:
    """
    Weekly schedule of one therapist.

    ``windows`` maps weekday (0=Monday) to the bookable window. A schedule
    without windows uses the default working hours. A therapist who does not
    take new consultations has no bookable window.
    """
    therapist_id: str
    windows: Optional[Dict[int, WorkingWindow]] = None
    active: bool = True
    can_take_consultations: bool = True


class ConfiguredWorkingHoursPolicy:
    """
    Answers ``window_for`` from schedules loaded at startup.

    Inactive and unknown therapists, and therapists not taking new
    consultations, have no window on any day.
    """

    def __init__(
        self,
        schedules: Mapping[str, TherapistSchedule],
        default_hours: WorkingHours
    ):
        self._schedules = dict(schedules)
        self._default_hours = default_hours

    async def window_for(self, therapist_id: str, weekday: int) -> Optional[WorkingWindow]:
        schedule = self._schedules.get(therapist_id)

        if schedule is None:
            logger.debug("No schedule configured for therapist %s", therapist_id)
            return None

        if not schedule.active:
            logger.debug("Therapist %s is not active", therapist_id)
            return None

        if not schedule.can_take_consultations:
            logger.debug("Therapist %s is not accepting new consultations", therapist_id)
            return None

        if schedule.windows is None:
            return self._default_hours.window_for_weekday(weekday)

        return schedule.windows.get(weekday)
