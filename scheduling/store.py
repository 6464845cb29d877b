"""SQLite-backed collaborator that feeds the conflict engine and the grid."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from .api import (
    ClassInfo,
    Location,
    LocationKind,
    Session,
    SessionKind,
    SessionLabels,
    SubjectInfo,
    Weekday,
)
from .timeslots import parse_time_of_day

_SESSION_SELECT = '''SELECT sc.*,
        sub.short_name AS subject_short_name,
        sub.full_name AS subject_full_name,
        sub.code AS subject_code,
        lb.name AS lab_name,
        lb.code AS lab_code,
        te.name AS teacher_name,
        te.short_abbr AS teacher_abbr,
        CASE sc.location_kind WHEN 'Room' THEN r.code ELSE loc_lab.code END AS location_code,
        CASE sc.location_kind WHEN 'Room' THEN NULL ELSE loc_lab.name END AS location_name
    FROM schedules sc
    LEFT JOIN subjects sub ON sc.subject_id = sub.id
    LEFT JOIN labs lb ON sc.lab_id = lb.id
    LEFT JOIN teachers te ON sc.teacher_id = te.id
    LEFT JOIN rooms r ON sc.location_kind = 'Room' AND sc.location_id = r.id
    LEFT JOIN labs loc_lab ON sc.location_kind = 'Lab' AND sc.location_id = loc_lab.id'''


def _optional(row: sqlite3.Row, key: str) -> Any:
    return row[key] if key in row.keys() else None


def row_to_session(row: sqlite3.Row) -> Session:
    """Convert a ``schedules`` row (optionally joined with labels) to a Session."""

    location = None
    if row['location_kind'] and row['location_id'] is not None:
        location = Location(LocationKind.parse(row['location_kind']), row['location_id'])
    labels = SessionLabels(
        subject_name=_optional(row, 'subject_short_name'),
        subject_full_name=_optional(row, 'subject_full_name'),
        subject_code=_optional(row, 'subject_code'),
        lab_name=_optional(row, 'lab_name'),
        lab_code=_optional(row, 'lab_code'),
        teacher_name=_optional(row, 'teacher_name'),
        teacher_abbr=_optional(row, 'teacher_abbr'),
        location_code=_optional(row, 'location_code'),
        location_name=_optional(row, 'location_name'),
    )
    return Session(
        id=row['id'],
        class_id=row['class_id'],
        subject_id=row['subject_id'],
        lab_id=row['lab_id'],
        teacher_id=row['teacher_id'],
        assistant_id=row['lab_assistant_id'],
        location=location,
        kind=SessionKind.parse(row['type']),
        weekday=Weekday.parse(row['day_of_week']),
        start=parse_time_of_day(row['start_time']),
        end=parse_time_of_day(row['end_time']),
        duration_slots=row['duration_slots'] or 1,
        labels=labels,
    )


def row_to_class(row: sqlite3.Row) -> ClassInfo:
    return ClassInfo(
        id=row['id'],
        class_name=row['class_name'],
        year=row['year'],
        section=str(row['section']),
        code=row['code'],
        student_count=row['student_count'] or 0,
        room_code=_optional(row, 'room_code'),
    )


class SqliteScheduleStore:
    """Read access to committed sessions and the records they reference.

    All queries run on the connection handed in by the caller, so a write
    that follows :meth:`write_lock` sees exactly what validation saw.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    @contextmanager
    def write_lock(self) -> Iterator[sqlite3.Connection]:
        """Serialize read-validate-write against other connections.

        ``BEGIN IMMEDIATE`` takes SQLite's reserved lock up front so two
        requests cannot both validate against the same committed set before
        either writes.  The transaction is committed on success and rolled
        back on error.
        """

        if self.conn.in_transaction:
            self.conn.commit()
        self.conn.execute('BEGIN IMMEDIATE')
        try:
            yield self.conn
        except BaseException:
            self.conn.rollback()
            raise
        else:
            self.conn.commit()

    def sessions_on_weekday(
        self,
        weekday: Weekday,
        *,
        class_id: Optional[int] = None,
        teacher_id: Optional[int] = None,
        location: Optional[Location] = None,
        exclude_id: Optional[int] = None,
    ) -> List[Session]:
        clauses = ['sc.day_of_week=?']
        params: List[Any] = [Weekday.parse(weekday).value]
        if class_id is not None:
            clauses.append('sc.class_id=?')
            params.append(class_id)
        if teacher_id is not None:
            clauses.append('(sc.teacher_id=? OR sc.lab_assistant_id=?)')
            params.extend([teacher_id, teacher_id])
        if location is not None:
            clauses.append('sc.location_kind=? AND sc.location_id=?')
            params.extend([location.kind.value, location.id])
        if exclude_id is not None:
            clauses.append('sc.id<>?')
            params.append(exclude_id)
        rows = self.conn.execute(
            f"{_SESSION_SELECT} WHERE {' AND '.join(clauses)} ORDER BY sc.start_time, sc.id",
            params,
        ).fetchall()
        return [row_to_session(r) for r in rows]

    def count_sessions(self, class_id: int, subject_id: int, exclude_id: Optional[int] = None) -> int:
        sql = 'SELECT COUNT(*) FROM schedules WHERE class_id=? AND subject_id=?'
        params: List[Any] = [class_id, subject_id]
        if exclude_id is not None:
            sql += ' AND id<>?'
            params.append(exclude_id)
        return self.conn.execute(sql, params).fetchone()[0]

    def find_class(self, class_id: int) -> Optional[ClassInfo]:
        row = self.conn.execute(
            'SELECT c.*, r.code AS room_code FROM classes c '
            'LEFT JOIN rooms r ON c.room_id = r.id WHERE c.id=?',
            (class_id,),
        ).fetchone()
        return row_to_class(row) if row else None

    def find_location(self, location: Location) -> Optional[int]:
        """Return the capacity of ``location`` or ``None`` if it does not exist."""

        table = 'rooms' if location.kind is LocationKind.ROOM else 'labs'
        row = self.conn.execute(f'SELECT capacity FROM {table} WHERE id=?', (location.id,)).fetchone()
        if row is None:
            return None
        return row['capacity'] or 0

    def find_subject(self, subject_id: int) -> Optional[SubjectInfo]:
        row = self.conn.execute(
            'SELECT id, weekly_frequency FROM subjects WHERE id=?',
            (subject_id,),
        ).fetchone()
        if row is None:
            return None
        return SubjectInfo(
            id=row['id'],
            weekly_frequency=row['weekly_frequency'] or 0,
        )

    def sessions_for_class(self, class_id: int) -> List[Session]:
        rows = self.conn.execute(
            f'{_SESSION_SELECT} WHERE sc.class_id=? ORDER BY sc.id',
            (class_id,),
        ).fetchall()
        return [row_to_session(r) for r in rows]

    def teacher_subjects(self, teacher_id: int) -> Optional[List[int]]:
        row = self.conn.execute('SELECT subjects FROM teachers WHERE id=?', (teacher_id,)).fetchone()
        if row is None:
            return None
        try:
            return [int(s) for s in json.loads(row['subjects'] or '[]')]
        except (TypeError, ValueError):
            return []

    def session_row(self, session_id: int) -> Optional[Dict[str, Any]]:
        row = self.conn.execute(f'{_SESSION_SELECT} WHERE sc.id=?', (session_id,)).fetchone()
        return dict(row) if row else None


__all__ = ["SqliteScheduleStore", "row_to_class", "row_to_session"]
