"""Public data types shared by the conflict engine and the grid materializer."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class InvalidTimeError(ValueError):
    """Raised when a time, weekday or session kind cannot be interpreted."""


class InvalidDataError(LookupError):
    """Raised when a record required to answer a request does not exist."""


class Weekday(str, Enum):
    """The six teaching days of the week."""

    MON = "MON"
    TUE = "TUE"
    WED = "WED"
    THU = "THU"
    FRI = "FRI"
    SAT = "SAT"

    @property
    def label(self) -> str:
        return _DAY_LABELS[self]

    @classmethod
    def parse(cls, value: Any) -> "Weekday":
        if isinstance(value, Weekday):
            return value
        if isinstance(value, str):
            key = value.strip().upper()
            if key in cls.__members__:
                return cls[key]
            for day, label in _DAY_LABELS.items():
                if key == label.upper():
                    return day
        raise InvalidTimeError(f"Unknown weekday '{value}'. Expected one of: {', '.join(cls.__members__)}.")


_DAY_LABELS = {
    Weekday.MON: "Monday",
    Weekday.TUE: "Tuesday",
    Weekday.WED: "Wednesday",
    Weekday.THU: "Thursday",
    Weekday.FRI: "Friday",
    Weekday.SAT: "Saturday",
}

WEEKDAYS: Tuple[Weekday, ...] = tuple(Weekday)


class SessionKind(str, Enum):
    """Whether a session is a single-slot lecture or a two-slot lab."""

    LECTURE = "LECTURE"
    LAB = "LAB"

    @property
    def default_slots(self) -> int:
        return 2 if self is SessionKind.LAB else 1

    @classmethod
    def parse(cls, value: Any) -> "SessionKind":
        if isinstance(value, SessionKind):
            return value
        if isinstance(value, str) and value.strip().upper() in cls.__members__:
            return cls[value.strip().upper()]
        raise InvalidTimeError(f"type must be LECTURE or LAB, got '{value}'")


class LocationKind(str, Enum):
    """Discriminator for the two disjoint kinds of bookable place."""

    ROOM = "Room"
    LAB = "Lab"

    @classmethod
    def parse(cls, value: Any) -> "LocationKind":
        if isinstance(value, LocationKind):
            return value
        for member in cls:
            if isinstance(value, str) and value.strip().lower() == member.value.lower():
                return member
        raise InvalidTimeError(f"roomModel must be Room or Lab, got '{value}'")


@dataclass(frozen=True)
class Location:
    """A bookable place: either a general room or a lab, identified by id."""

    kind: LocationKind
    id: int


@dataclass(frozen=True)
class SessionLabels:
    """Display names joined onto a session for rendering the grid."""

    subject_name: Optional[str] = None
    subject_full_name: Optional[str] = None
    subject_code: Optional[str] = None
    lab_name: Optional[str] = None
    lab_code: Optional[str] = None
    teacher_name: Optional[str] = None
    teacher_abbr: Optional[str] = None
    location_code: Optional[str] = None
    location_name: Optional[str] = None


@dataclass(frozen=True)
class Session:
    """A single scheduled occurrence of a class in the weekly timetable.

    ``start`` and ``end`` are minutes since midnight.  ``id`` is ``None`` for a
    candidate that has not been committed yet.
    """

    class_id: int
    kind: SessionKind
    weekday: Weekday
    start: int
    end: int
    id: Optional[int] = None
    subject_id: Optional[int] = None
    lab_id: Optional[int] = None
    teacher_id: Optional[int] = None
    assistant_id: Optional[int] = None
    location: Optional[Location] = None
    duration_slots: int = 1
    labels: SessionLabels = field(default_factory=SessionLabels)

    @property
    def teachers(self) -> Tuple[int, ...]:
        """Return every teacher attached to the session, primary first."""

        return tuple(t for t in (self.teacher_id, self.assistant_id) if t is not None)


@dataclass(frozen=True)
class ClassInfo:
    """The subset of a class record needed by the core."""

    id: int
    class_name: str
    year: int
    section: str
    code: Optional[str] = None
    student_count: int = 0
    room_code: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "class_name": self.class_name,
            "year": self.year,
            "section": self.section,
            "code": self.code,
            "student_count": self.student_count,
            "room_code": self.room_code,
        }


@dataclass(frozen=True)
class SubjectInfo:
    id: int
    weekly_frequency: int


class ConflictKind(str, Enum):
    """Classification of a rejected candidate session."""

    INVALID_TIME_RANGE = "INVALID_TIME_RANGE"
    BREAK_VIOLATION = "BREAK_VIOLATION"
    STUDENT_OVERLAP = "STUDENT_OVERLAP"
    TEACHER_CONFLICT = "TEACHER_CONFLICT"
    ROOM_CONFLICT = "ROOM_CONFLICT"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    WEEKLY_FREQUENCY_EXCEEDED = "WEEKLY_FREQUENCY_EXCEEDED"
    INVALID_DATA = "INVALID_DATA"


@dataclass(frozen=True)
class Conflict:
    """The first invariant a candidate session violates.

    ``conflict_id`` names the clashing committed session for the overlap kinds
    and is an empty string otherwise.
    """

    kind: ConflictKind
    message: str
    conflict_id: str = ""

    def as_dict(self) -> Dict[str, Any]:
        return {"type": self.kind.value, "message": self.message, "conflict_id": self.conflict_id}


__all__ = [
    "ClassInfo",
    "Conflict",
    "ConflictKind",
    "InvalidDataError",
    "InvalidTimeError",
    "Location",
    "LocationKind",
    "Session",
    "SessionKind",
    "SessionLabels",
    "SubjectInfo",
    "WEEKDAYS",
    "Weekday",
]
