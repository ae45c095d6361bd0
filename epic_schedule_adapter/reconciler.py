"""Work out which schedule slots are truly bookable.

Epic's AvailableOpenings count is not enough on its own: a slot can report an
opening while held or unavailable time elsewhere on the day overlaps it. We
first collect every held/unavailable slot as a blocked interval, then accept a
proposed appointment only if it does not overlap any of them.

Intervals are half-open, so an appointment ending exactly when blocked time
starts (or starting exactly when it ends) is still bookable.
"""
from __future__ import annotations

import datetime as dt
from typing import Iterable, NamedTuple, Sequence

from .models import ScheduleSlot


class Interval(NamedTuple):
    start: dt.datetime
    end: dt.datetime

    def overlaps(self, other: "Interval") -> bool:
        return self.start < other.end and other.start < self.end


def slot_interval(on_date: dt.date, start_time: dt.time, minutes: int) -> Interval:
    start = dt.datetime.combine(on_date, start_time)
    return Interval(start, start + dt.timedelta(minutes=minutes))


def blocked_intervals(slots: Iterable[ScheduleSlot], on_date: dt.date) -> list[Interval]:
    # heldAllDay is not expanded into a whole-day block; Epic reports the held slots themselves
    return [slot_interval(on_date, slot.start_time, slot.length_minutes) for slot in slots if slot.blocked]


def is_bookable(proposed: Interval, blocked: Iterable[Interval]) -> bool:
    return not any(proposed.overlaps(interval) for interval in blocked)


def bookable_start_times(
    slots: Sequence[ScheduleSlot],
    on_date: dt.date,
    duration_minutes: int,
    candidates: Iterable[ScheduleSlot] | None = None,
) -> list[dt.time]:
    """Start times at which an appointment of ``duration_minutes`` can be booked.

    ``slots`` is the full schedule for the day and always determines blocked
    time. ``candidates`` narrows which slots may be proposed (defaults to all of
    them); the proposal uses ``duration_minutes``, not the slot's own length.
    """
    blocked = blocked_intervals(slots, on_date)
    starts: list[dt.time] = []

    for slot in slots if candidates is None else candidates:
        if slot.available_openings <= 0 or slot.blocked:
            continue
        if slot.start_time in starts:
            continue
        if is_bookable(slot_interval(on_date, slot.start_time, duration_minutes), blocked):
            starts.append(slot.start_time)

    return starts
