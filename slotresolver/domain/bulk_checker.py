"""
Batch availability checks for several proposed slots on one date.

A treatment plan proposing several sessions must not accept two of its own
slots that overlap, even when each one is free against the stored bookings.
"""

import logging
from typing import Dict, List, Optional

from .deadline import Deadline
from .exceptions import InvalidInputError
from .interval_math import overlapping_pairs
from .models import (
    BulkAvailabilityQuery,
    BulkAvailabilityResult,
    BulkSlotResult,
    DaySnapshot,
    UnavailableReason,
)
from .slot_checker import SlotChecker

logger = logging.getLogger(__name__)


class BulkSlotChecker:
    """
    Evaluates a batch of slots against storage and against each other.

    The working window and the bookings of the date are fetched once and
    reused for every slot. Results keep the input order.
    """

    def __init__(self, slot_checker: SlotChecker):
        self.slot_checker = slot_checker

    async def check_all(
        self,
        query: BulkAvailabilityQuery,
        deadline: Optional[Deadline] = None
    ) -> BulkAvailabilityResult:
        """
        Check every slot of the batch.

        Raises:
            InvalidInputError: If the batch is empty or a slot is malformed
            NoAvailabilityDataError: If bookings could not be fetched
            SchedulingTimeoutError: If the deadline elapses
        """
        if not query.slots:
            raise InvalidInputError("slots", "At least one time slot is required")

        for index, slot in enumerate(query.slots):
            field_name = f"slots[{index}]"
            if slot.date != query.date:
                raise InvalidInputError(
                    field_name,
                    f"Slot date {slot.date} does not match query date {query.date}"
                )
            self.slot_checker.validate_slot(slot, field_name)

        snapshot = await self._load_snapshot(query, deadline)

        batch_conflicts: Dict[int, List[int]] = {index: [] for index in range(len(query.slots))}
        for first, second in overlapping_pairs(query.slots):
            batch_conflicts[first].append(second)
            batch_conflicts[second].append(first)

        results = []
        for index, slot in enumerate(query.slots):
            stored = SlotChecker.evaluate(slot, snapshot, query.exclude_booking_ids)
            within_batch = tuple(sorted(batch_conflicts[index]))

            reason = stored.reason
            if reason is None and within_batch:
                reason = UnavailableReason.INTRA_BATCH_CONFLICT

            results.append(
                BulkSlotResult(
                    index=index,
                    slot=slot,
                    available=stored.available and not within_batch,
                    conflicts=stored.conflicts,
                    conflicts_within_batch=within_batch,
                    reason=reason
                )
            )

        logger.debug(
            "Bulk check for therapist %s on %s: %d of %d slots available",
            query.therapist_id, query.date,
            sum(1 for result in results if result.available), len(results)
        )

        return BulkAvailabilityResult(
            therapist_id=query.therapist_id,
            date=query.date,
            results=tuple(results)
        )

    async def _load_snapshot(
        self,
        query: BulkAvailabilityQuery,
        deadline: Optional[Deadline]
    ) -> DaySnapshot:
        window = await self.slot_checker.window_for(query.therapist_id, query.date, deadline)

        needs_bookings = any(
            SlotChecker.check_working_hours(slot, window) is None
            for slot in query.slots
        )
        if not needs_bookings:
            return DaySnapshot(therapist_id=query.therapist_id, date=query.date, window=window)

        bookings = await self.slot_checker.fetch_bookings(query.therapist_id, query.date, deadline)
        return DaySnapshot(
            therapist_id=query.therapist_id,
            date=query.date,
            window=window,
            bookings=bookings
        )
