"""Scheduling core: weekly calendar, conflict engine and grid materializer."""

from .api import (
    ClassInfo,
    Conflict,
    ConflictKind,
    InvalidDataError,
    InvalidTimeError,
    Location,
    LocationKind,
    Session,
    SessionKind,
    Weekday,
)
from .conflicts import ConflictEngine, check_conflicts
from .grid import GridMaterializer, TimetableGrid, build_grid
from .timeslots import DEFAULT_CALENDAR, TimeSlotCalendar

__all__ = [
    "ClassInfo",
    "Conflict",
    "ConflictEngine",
    "ConflictKind",
    "DEFAULT_CALENDAR",
    "GridMaterializer",
    "InvalidDataError",
    "InvalidTimeError",
    "Location",
    "LocationKind",
    "Session",
    "SessionKind",
    "TimeSlotCalendar",
    "TimetableGrid",
    "Weekday",
    "build_grid",
    "check_conflicts",
]
