"""Re-projection of committed sessions onto the weekly display grid.

The grid assumes the stored sessions already satisfy the scheduling
invariants and never re-validates them.  Data hygiene problems degrade the
grid by omission: a session whose start time matches no teaching window is
skipped, and a two-slot lab anchored at the last window of the day keeps a
single cell.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from .api import ClassInfo, InvalidDataError, Session, SessionKind, Weekday, WEEKDAYS
from .timeslots import DEFAULT_CALENDAR, DEFAULT_TOLERANCE, TimeSlot, TimeSlotCalendar

logger = logging.getLogger(__name__)

NOT_AVAILABLE = "N/A"


@dataclass
class GridCell:
    """Display projection of one session in its anchor cell."""

    subject: str
    subject_code: str
    teacher: str
    teacher_abbr: str
    room: str
    kind: SessionKind
    duration_slots: int
    session_id: Optional[int] = None

    @property
    def spans_two_slots(self) -> bool:
        return self.kind is SessionKind.LAB and self.duration_slots == 2

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data


@dataclass
class LabContinuation:
    """Second cell of a two-slot lab; renderers merge it with ``anchor``."""

    anchor: GridCell

    def as_dict(self) -> Dict[str, Any]:
        data = self.anchor.as_dict()
        data["is_lab_continuation"] = True
        return data


@dataclass(frozen=True)
class PseudoCell:
    """Static BREAK / LUNCH marker."""

    kind: str

    def as_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind}


Cell = Union[GridCell, LabContinuation, PseudoCell, None]


@dataclass
class TimetableGrid:
    """Weekday -> slot key -> cell for one class."""

    klass: ClassInfo
    calendar: TimeSlotCalendar
    cells: Dict[Weekday, "OrderedDict[str, Cell]"]
    skipped: List[Optional[int]] = field(default_factory=list)
    truncated: List[Optional[int]] = field(default_factory=list)

    def cell(self, day: Weekday, key: str) -> Cell:
        return self.cells[day][key]

    def row(self, day: Weekday) -> List[Tuple[TimeSlot, Cell]]:
        return [(slot, self.cells[day][slot.key]) for slot in self.calendar.slots]

    def anchors(self) -> Iterator[Tuple[Weekday, TimeSlot, GridCell]]:
        """Yield every rendered session once, skipping continuation cells."""

        for day in WEEKDAYS:
            for slot, cell in self.row(day):
                if isinstance(cell, GridCell):
                    yield day, slot, cell

    def as_dict(self) -> Dict[str, Any]:
        timetable = {}
        for day in WEEKDAYS:
            timetable[day.value] = OrderedDict(
                (key, None if cell is None else cell.as_dict())
                for key, cell in self.cells[day].items()
            )
        return {
            "class": self.klass.as_dict(),
            "timetable": timetable,
            "skipped": list(self.skipped),
        }


def project_session(session: Session) -> GridCell:
    """Build the display payload for ``session``."""

    labels = session.labels
    if session.kind is SessionKind.LAB:
        subject = labels.lab_name or labels.location_name or NOT_AVAILABLE
        subject_code = labels.lab_code or labels.location_code or ""
        room = labels.location_code or labels.location_name or NOT_AVAILABLE
    else:
        subject = labels.subject_name or labels.subject_full_name or NOT_AVAILABLE
        subject_code = labels.subject_code or ""
        room = labels.location_code or NOT_AVAILABLE
    return GridCell(
        subject=subject,
        subject_code=subject_code,
        teacher=labels.teacher_name or NOT_AVAILABLE,
        teacher_abbr=labels.teacher_abbr or "",
        room=room,
        kind=session.kind,
        duration_slots=session.duration_slots or 1,
        session_id=session.id,
    )


def empty_grid(calendar: TimeSlotCalendar = DEFAULT_CALENDAR) -> Dict[Weekday, "OrderedDict[str, Cell]"]:
    cells = {}
    for day in WEEKDAYS:
        row = OrderedDict()
        for slot in calendar.slots:
            row[slot.key] = PseudoCell(slot.key) if slot.is_pseudo else None
        cells[day] = row
    return cells


def build_grid(
    klass: ClassInfo,
    sessions: Iterable[Session],
    *,
    calendar: TimeSlotCalendar = DEFAULT_CALENDAR,
    tolerance: int = DEFAULT_TOLERANCE,
) -> TimetableGrid:
    """Place ``sessions`` for ``klass`` onto the calendar grid.

    Sessions are processed in input order; a later session resolved to an
    occupied cell overwrites it.  The ids of sessions that match no teaching
    window are collected in :attr:`TimetableGrid.skipped`.
    """

    grid = TimetableGrid(klass=klass, calendar=calendar, cells=empty_grid(calendar))
    for session in sessions:
        window = calendar.resolve(session.start, tolerance=tolerance)
        if window is None:
            logger.warning(
                'Skipping session %s of class %s: %s start %s matches no teaching window',
                session.id, klass.id, session.weekday.value, session.start,
            )
            grid.skipped.append(session.id)
            continue

        row = grid.cells[session.weekday]
        cell = project_session(session)
        row[window.key] = cell

        if not cell.spans_two_slots:
            continue
        following = calendar.next_window(window)
        if following is None:
            logger.warning(
                'Lab session %s of class %s starts in the last window %s; no continuation written',
                session.id, klass.id, window.key,
            )
            grid.truncated.append(session.id)
            continue
        if row[following.key] is None:
            row[following.key] = LabContinuation(anchor=cell)
    return grid


class GridMaterializer:
    """Build the grid of a class from the sessions held by ``store``."""

    def __init__(self, store, calendar: TimeSlotCalendar = DEFAULT_CALENDAR):
        self.store = store
        self.calendar = calendar

    def build(self, class_id: int, tolerance: int = DEFAULT_TOLERANCE) -> TimetableGrid:
        klass = self.store.find_class(class_id)
        if klass is None:
            raise InvalidDataError(f"Class {class_id} not found")
        sessions = self.store.sessions_for_class(class_id)
        return build_grid(klass, sessions, calendar=self.calendar, tolerance=tolerance)


__all__ = [
    "Cell",
    "GridCell",
    "GridMaterializer",
    "LabContinuation",
    "PseudoCell",
    "TimetableGrid",
    "build_grid",
    "empty_grid",
    "project_session",
]
