"""Validation of a single candidate session against the committed timetable.

:func:`check_conflicts` is the pure decision function: it receives every
piece of data it needs from the caller and returns either ``None`` or the
first violated invariant.  :class:`ConflictEngine` fetches that data from a
store collaborator (see :mod:`scheduling.store`) before delegating to it.

Checks run in a fixed priority order and stop at the first failure:

1. ``INVALID_TIME_RANGE``
2. ``BREAK_VIOLATION``
3. ``STUDENT_OVERLAP``
4. ``TEACHER_CONFLICT``
5. ``ROOM_CONFLICT``
6. ``CAPACITY_EXCEEDED`` (``INVALID_DATA`` when the class is unknown)
7. ``WEEKLY_FREQUENCY_EXCEEDED``
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, List, Optional

from .api import ClassInfo, Conflict, ConflictKind, Session
from .timeslots import (
    LUNCH_END,
    LUNCH_START,
    WORKING_END,
    WORKING_START,
    format_minutes,
    intervals_overlap,
)

logger = logging.getLogger(__name__)


def _check_time_range(candidate: Session) -> Optional[Conflict]:
    if candidate.start >= candidate.end:
        return Conflict(ConflictKind.INVALID_TIME_RANGE, "Start time must be before end time")
    if candidate.start < WORKING_START or candidate.end > WORKING_END:
        return Conflict(
            ConflictKind.INVALID_TIME_RANGE,
            f"Session must be within working hours "
            f"({format_minutes(WORKING_START)}-{format_minutes(WORKING_END)})",
        )
    return None


def _check_lunch(candidate: Session) -> Optional[Conflict]:
    # The short break is a display-only pseudo-slot; only lunch is guarded.
    if intervals_overlap(candidate.start, candidate.end, LUNCH_START, LUNCH_END):
        return Conflict(
            ConflictKind.BREAK_VIOLATION,
            f"Session cannot overlap lunch break "
            f"({format_minutes(LUNCH_START)}-{format_minutes(LUNCH_END)})",
        )
    return None


def _first_overlap(
    candidate: Session,
    existing: Iterable[Session],
    shares: Callable[[Session], bool],
) -> Optional[Session]:
    for other in existing:
        if not shares(other):
            continue
        if intervals_overlap(candidate.start, candidate.end, other.start, other.end):
            return other
    return None


def _overlap_conflict(kind: ConflictKind, message: str, other: Optional[Session]) -> Optional[Conflict]:
    if other is None:
        return None
    return Conflict(kind, message, "" if other.id is None else str(other.id))


def check_conflicts(
    candidate: Session,
    existing_for_day: Iterable[Session],
    *,
    exclude_id: Optional[int] = None,
    klass: Optional[ClassInfo] = None,
    location_capacity: Optional[int] = None,
    weekly_frequency: Optional[int] = None,
    existing_subject_count: int = 0,
) -> Optional[Conflict]:
    """Return the first invariant ``candidate`` violates, or ``None``.

    Parameters
    ----------
    existing_for_day : iterable of Session
        Committed sessions for the candidate's weekday.  Rows on another
        weekday and the row whose id equals ``exclude_id`` are ignored.
    klass : ClassInfo or None
        The candidate's class; required only for the capacity check.
    location_capacity : int or None
        Seating capacity of the candidate's location, or ``None`` when the
        location record could not be found (treated as capacity 0).
    weekly_frequency : int or None
        The subject's weekly occurrence count, or ``None`` when the candidate
        has no subject (the frequency check is skipped).
    existing_subject_count : int
        Committed sessions for the same (class, subject) pair, already
        excluding ``exclude_id``.
    """

    conflict = _check_time_range(candidate) or _check_lunch(candidate)
    if conflict is not None:
        return conflict

    existing: List[Session] = [
        s for s in existing_for_day
        if s.weekday == candidate.weekday and (exclude_id is None or s.id != exclude_id)
    ]

    conflict = _overlap_conflict(
        ConflictKind.STUDENT_OVERLAP,
        "Class already has a session at this time",
        _first_overlap(candidate, existing, lambda s: s.class_id == candidate.class_id),
    )
    if conflict is not None:
        return conflict

    teachers = set(candidate.teachers)
    if teachers:
        conflict = _overlap_conflict(
            ConflictKind.TEACHER_CONFLICT,
            "Teacher already assigned at this time",
            _first_overlap(candidate, existing, lambda s: bool(teachers.intersection(s.teachers))),
        )
        if conflict is not None:
            return conflict

    if candidate.location is not None:
        conflict = _overlap_conflict(
            ConflictKind.ROOM_CONFLICT,
            "Room already in use at this time",
            _first_overlap(candidate, existing, lambda s: s.location == candidate.location),
        )
        if conflict is not None:
            return conflict

        if klass is None:
            return Conflict(ConflictKind.INVALID_DATA, "Class not found")
        capacity = location_capacity or 0
        if capacity < klass.student_count:
            return Conflict(
                ConflictKind.CAPACITY_EXCEEDED,
                f"Room capacity ({capacity}) is less than class size ({klass.student_count})",
            )

    if candidate.subject_id is not None and weekly_frequency is not None:
        if existing_subject_count >= weekly_frequency:
            return Conflict(
                ConflictKind.WEEKLY_FREQUENCY_EXCEEDED,
                f"Subject already has {existing_subject_count} sessions per week (max {weekly_frequency})",
            )

    return None


class ConflictEngine:
    """Validate candidates against the sessions held by ``store``.

    ``store`` must provide ``sessions_on_weekday``, ``count_sessions``,
    ``find_class``, ``find_location`` and ``find_subject``.
    """

    def __init__(self, store):
        self.store = store

    def validate(self, candidate: Session, exclude_id: Optional[int] = None) -> Optional[Conflict]:
        conflict = _check_time_range(candidate) or _check_lunch(candidate)
        if conflict is None:
            conflict = self._validate_against_store(candidate, exclude_id)
        if conflict is not None:
            logger.info(
                'Rejected %s session for class %s on %s %s-%s: %s',
                candidate.kind.value,
                candidate.class_id,
                candidate.weekday.value,
                format_minutes(candidate.start),
                format_minutes(candidate.end),
                conflict.kind.value,
            )
        return conflict

    def _validate_against_store(self, candidate: Session, exclude_id: Optional[int]) -> Optional[Conflict]:
        existing = self.store.sessions_on_weekday(candidate.weekday, exclude_id=exclude_id)

        klass = None
        capacity = None
        if candidate.location is not None:
            klass = self.store.find_class(candidate.class_id)
            capacity = self.store.find_location(candidate.location)

        weekly_frequency = None
        subject_count = 0
        if candidate.subject_id is not None:
            subject = self.store.find_subject(candidate.subject_id)
            weekly_frequency = subject.weekly_frequency if subject is not None else 0
            subject_count = self.store.count_sessions(
                candidate.class_id, candidate.subject_id, exclude_id=exclude_id
            )

        return check_conflicts(
            candidate,
            existing,
            exclude_id=exclude_id,
            klass=klass,
            location_capacity=capacity,
            weekly_frequency=weekly_frequency,
            existing_subject_count=subject_count,
        )


__all__ = ["ConflictEngine", "check_conflicts"]
