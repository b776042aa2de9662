"""
Drag-to-reschedule as an explicit state machine.

Pointer input arrives as discrete ``press`` / ``move`` / ``release`` /
``cancel`` calls; every call returns the next state. ``release`` also returns
a :class:`Reschedule` when the snapped start time actually changed.
"""

from dataclasses import dataclass

from timeline_calendar.models import Event
from timeline_calendar.timeutil import reschedule
from timeline_calendar.timeutil import shift_by_pixels


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Dragging:
    event_id: str
    anchor_y: float
    start_time: str
    end_time: str
    preview_start: str


DragState = Idle | Dragging


@dataclass(frozen=True)
class Reschedule:
    event_id: str
    start_time: str
    end_time: str


class DragMachine:
    """Pure transition functions parameterised by the hour row height."""

    def __init__(self, hour_height: int):
        self.hour_height = hour_height

    def press(self, state: DragState, event: Event, y: float) -> DragState:
        if isinstance(state, Dragging) or event.is_all_day:
            return state
        return Dragging(event.id, y, event.start_time, event.end_time, event.start_time)

    def move(self, state: DragState, y: float) -> DragState:
        if not isinstance(state, Dragging):
            return state
        preview = shift_by_pixels(state.start_time, y - state.anchor_y, self.hour_height)
        return Dragging(state.event_id, state.anchor_y, state.start_time, state.end_time, preview)

    def release(self, state: DragState, y: float) -> tuple[DragState, Reschedule | None]:
        if not isinstance(state, Dragging):
            return state, None
        new_start = shift_by_pixels(state.start_time, y - state.anchor_y, self.hour_height)
        if new_start == state.start_time:
            return Idle(), None
        start, end = reschedule(state.start_time, state.end_time, new_start)
        return Idle(), Reschedule(state.event_id, start, end)

    def cancel(self, state: DragState) -> DragState:
        return Idle()
