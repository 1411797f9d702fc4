"""
Overlap and containment arithmetic over half-open time intervals.

Anything with comparable ``start`` and ``end`` attributes qualifies: slots,
bookings, working windows and break periods. Intervals are ``[start, end)``,
so a booking ending at 11:00 and one starting at 11:00 can sit back to back.
Callers validate ``start < end`` before they get here.
"""

from typing import Any, Iterable, List, Protocol, Sequence, Tuple, TypeVar


class Interval(Protocol):
    start: Any
    end: Any


T = TypeVar("T", bound=Interval)


def overlaps(a: Interval, b: Interval) -> bool:
    """Check if two intervals share at least one instant."""
    return a.start < b.end and b.start < a.end


def contains(window: Interval, interval: Interval) -> bool:
    """Check if ``interval`` lies completely inside ``window``."""
    return window.start <= interval.start and interval.end <= window.end


def overlapping(interval: Interval, candidates: Iterable[T]) -> List[T]:
    """
    Return every candidate overlapping ``interval``, in input order.

    All conflicts are returned, not just the first one.
    """
    return [candidate for candidate in candidates if overlaps(interval, candidate)]


def overlapping_pairs(intervals: Sequence[Interval]) -> List[Tuple[int, int]]:
    """
    Return index pairs ``(i, j)`` with ``i < j`` whose intervals overlap.

    Intervals are swept in start order, so each interval is only compared with
    the ones still open when it starts.
    """
    order = sorted(range(len(intervals)), key=lambda i: (intervals[i].start, i))
    pairs: List[Tuple[int, int]] = []
    active: List[int] = []

    for index in order:
        current = intervals[index]
        # Drop intervals that ended at or before this one starts
        active = [other for other in active if intervals[other].end > current.start]
        for other in active:
            pairs.append((min(index, other), max(index, other)))
        active.append(index)

    return sorted(pairs)
