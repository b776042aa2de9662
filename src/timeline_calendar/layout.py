"""
Overlap layout for timed events within one day column.

Each event is placed against its *direct* overlap cluster only: the target
plus every event whose interval intersects the target. Clusters are not
closed transitively, so two events that never touch can end up with
different widths even when a third event bridges them. Slots inside one
cluster are equal-width; there is no bin packing.
"""

from collections.abc import Iterable
from datetime import date

from timeline_calendar.models import Event
from timeline_calendar.models import LayoutSlot
from timeline_calendar.timeutil import ranges_overlap
from timeline_calendar.timeutil import time_to_minutes

BASE_Z_INDEX = 20


def _span(event: Event) -> tuple[int, int]:
    return time_to_minutes(event.start_time), time_to_minutes(event.end_time)


def overlapping_events(events: Iterable[Event], target: Event) -> list[Event]:
    """Events (other than ``target``) whose time ranges intersect it."""
    target_start, target_end = _span(target)
    result = []
    for event in events:
        if event.id == target.id:
            continue
        start, end = _span(event)
        if ranges_overlap(target_start, target_end, start, end):
            result.append(event)
    return result


def _cluster_order(event: Event) -> tuple[int, int]:
    start, end = _span(event)
    # Earlier start first; on equal start the longer event goes first.
    return start, -end


def layout_slot(events: Iterable[Event], target: Event, base_z: int = BASE_Z_INDEX) -> LayoutSlot:
    """Compute the horizontal slot of ``target`` among same-day ``events``."""
    cluster = [target, *overlapping_events(events, target)]
    if len(cluster) == 1:
        return LayoutSlot(width=100.0, left=0.0, z_index=base_z)

    # sorted() is stable, so identical spans keep their input order.
    cluster = sorted(cluster, key=_cluster_order)
    index = next(i for i, event in enumerate(cluster) if event.id == target.id)
    width = 100 / len(cluster)
    return LayoutSlot(width=width, left=index * width, z_index=base_z + index)


def events_on_day(events: Iterable[Event], day: date) -> list[Event]:
    """Events whose date span includes ``day``."""
    return [event for event in events if event.start <= day <= event.end]


def layout_day(events: Iterable[Event], base_z: int = BASE_Z_INDEX) -> dict[str, LayoutSlot]:
    """Slots for every timed event of a day, keyed by event id.

    All-day events are skipped; they render in their own strip.
    """
    timed = [event for event in events if not event.is_all_day]
    return {event.id: layout_slot(timed, event, base_z) for event in timed}
