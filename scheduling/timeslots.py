"""Institution-wide definition of the teaching day.

The same ordered sequence of slots applies to all six weekdays.  Two entries
are fixed non-teaching pseudo-slots (a short break and the lunch window)
which are rendered in the grid but can never be assigned.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, time
from typing import Any, Dict, List, Optional, Tuple

from .api import InvalidTimeError, WEEKDAYS

BREAK = "BREAK"
LUNCH = "LUNCH"
PSEUDO_SLOTS = (BREAK, LUNCH)

WORKING_START = 9 * 60
WORKING_END = 17 * 60
LUNCH_START = 13 * 60
LUNCH_END = 14 * 60

DEFAULT_TOLERANCE = 5
LAB_DURATION = 100

_HHMM_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def parse_time_of_day(value: Any) -> int:
    """Return ``value`` as minutes since midnight.

    Accepts ``HH:MM`` strings, ISO timestamps (the date part is ignored),
    :class:`datetime.datetime` / :class:`datetime.time` objects and integer
    minutes.  Anything else raises :class:`InvalidTimeError`.
    """

    if isinstance(value, bool):
        raise InvalidTimeError(f"Invalid time value: {value!r}")
    if isinstance(value, int):
        if 0 <= value < 24 * 60:
            return value
        raise InvalidTimeError(f"Minutes out of range: {value}")
    if isinstance(value, datetime):
        return value.hour * 60 + value.minute
    if isinstance(value, time):
        return value.hour * 60 + value.minute
    if isinstance(value, str):
        text = value.strip()
        match = _HHMM_RE.match(text)
        if match:
            return int(match.group(1)) * 60 + int(match.group(2))
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            try:
                parsed_time = time.fromisoformat(text)
            except ValueError:
                raise InvalidTimeError(f"Unparseable time value: {value!r}") from None
            return parsed_time.hour * 60 + parsed_time.minute
        return parsed.hour * 60 + parsed.minute
    raise InvalidTimeError(f"Unparseable time value: {value!r}")


def format_minutes(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def intervals_overlap(start1: int, end1: int, start2: int, end2: int) -> bool:
    """Half-open overlap test: touching intervals do not overlap."""

    return start1 < end2 and start2 < end1


@dataclass(frozen=True)
class TimeSlot:
    """One column of the daily grid.

    ``key`` is the start time (``HH:MM``) for teaching windows and ``BREAK`` /
    ``LUNCH`` for the pseudo-slots, which carry no numeric bounds.
    """

    key: str
    label: str
    start: Optional[int] = None
    end: Optional[int] = None

    @property
    def is_pseudo(self) -> bool:
        return self.key in PSEUDO_SLOTS

    @property
    def end_key(self) -> str:
        return self.key if self.end is None else format_minutes(self.end)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "start": self.key,
            "end": self.end_key,
            "label": self.label,
            "type": self.key if self.is_pseudo else "slot",
        }


def _window(start: str, end: str, label: str) -> TimeSlot:
    return TimeSlot(key=start, label=label, start=parse_time_of_day(start), end=parse_time_of_day(end))


class TimeSlotCalendar:
    """Ordered teaching windows and pseudo-slots, identical for every weekday."""

    def __init__(self, slots):
        self._slots: Tuple[TimeSlot, ...] = tuple(slots)
        self._windows: Tuple[TimeSlot, ...] = tuple(s for s in self._slots if not s.is_pseudo)
        self._by_key: Dict[str, TimeSlot] = {s.key: s for s in self._slots}
        self._index: Dict[str, int] = {w.key: i for i, w in enumerate(self._windows)}

    @property
    def slots(self) -> Tuple[TimeSlot, ...]:
        return self._slots

    def teaching_windows(self) -> List[TimeSlot]:
        return list(self._windows)

    def slot(self, key: str) -> Optional[TimeSlot]:
        return self._by_key.get(key)

    def next_window(self, window: TimeSlot) -> Optional[TimeSlot]:
        """Return the teaching window following ``window``, skipping pseudo-slots."""

        idx = self._index.get(window.key)
        if idx is None or idx + 1 >= len(self._windows):
            return None
        return self._windows[idx + 1]

    def period_id(self, window: TimeSlot) -> Optional[str]:
        idx = self._index.get(window.key)
        return None if idx is None else f"P{idx + 1}"

    def resolve(self, minutes: int, tolerance: int = DEFAULT_TOLERANCE) -> Optional[TimeSlot]:
        """Map a start time onto a teaching window.

        An exact start match wins; otherwise the nearest window whose start is
        within ``tolerance`` minutes is returned (the earlier one on a tie).
        """

        key = format_minutes(minutes)
        exact = self._by_key.get(key)
        if exact is not None and not exact.is_pseudo:
            return exact
        best = None
        best_distance = None
        for window in self._windows:
            distance = abs(window.start - minutes)
            if distance > tolerance:
                continue
            if best_distance is None or distance < best_distance:
                best, best_distance = window, distance
        return best

    def breaks(self) -> List[Dict[str, Any]]:
        """Describe each pseudo-slot by the period it follows and its length."""

        result = []
        for i, slot in enumerate(self._slots):
            if not slot.is_pseudo or i == 0 or i + 1 >= len(self._slots):
                continue
            prev_slot, next_slot = self._slots[i - 1], self._slots[i + 1]
            if prev_slot.is_pseudo or next_slot.is_pseudo:
                continue
            result.append({
                "after": self.period_id(prev_slot),
                "duration": next_slot.start - prev_slot.end,
                "label": "Lunch" if slot.key == LUNCH else "Break",
            })
        return result

    def as_dict(self) -> Dict[str, Any]:
        return {
            "slots": [s.as_dict() for s in self._slots],
            "days": [{"code": d.value, "label": d.label} for d in WEEKDAYS],
            "working_hours": {"start": format_minutes(WORKING_START), "end": format_minutes(WORKING_END)},
            "lunch": {"start": format_minutes(LUNCH_START), "end": format_minutes(LUNCH_END)},
        }


def lab_end_time(start: int) -> int:
    """End of a two-slot lab starting at ``start``."""

    return start + LAB_DURATION


DEFAULT_CALENDAR = TimeSlotCalendar([
    _window("09:45", "10:35", "9:45 AM - 10:35 AM"),
    _window("10:35", "11:25", "10:35 AM - 11:25 AM"),
    TimeSlot(key=BREAK, label="BREAK"),
    _window("11:30", "12:20", "11:30 AM - 12:20 PM"),
    _window("12:20", "13:10", "12:20 PM - 1:10 PM"),
    TimeSlot(key=LUNCH, label="LUNCH"),
    _window("13:40", "14:30", "1:40 PM - 2:30 PM"),
    _window("14:30", "15:20", "2:30 PM - 3:20 PM"),
    _window("15:20", "16:10", "3:20 PM - 4:10 PM"),
])


__all__ = [
    "BREAK",
    "DEFAULT_CALENDAR",
    "DEFAULT_TOLERANCE",
    "LAB_DURATION",
    "LUNCH",
    "LUNCH_END",
    "LUNCH_START",
    "TimeSlot",
    "TimeSlotCalendar",
    "WORKING_END",
    "WORKING_START",
    "format_minutes",
    "intervals_overlap",
    "lab_end_time",
    "parse_time_of_day",
]
