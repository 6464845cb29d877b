import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from scheduling.api import (
    ClassInfo,
    ConflictKind,
    Location,
    LocationKind,
    Session,
    SessionKind,
    Weekday,
)
from scheduling.conflicts import check_conflicts
from scheduling.timeslots import parse_time_of_day


ROOM = Location(LocationKind.ROOM, 1)
KLASS = ClassInfo(id=1, class_name='CSE', year=3, section='1', code='CST1', student_count=60)


def make_session(start, end, *, id=None, class_id=1, teacher_id=None, assistant_id=None,
                 location=None, subject_id=None, day=Weekday.MON, kind=SessionKind.LECTURE):
    return Session(
        id=id,
        class_id=class_id,
        kind=kind,
        weekday=day,
        start=parse_time_of_day(start),
        end=parse_time_of_day(end),
        subject_id=subject_id,
        teacher_id=teacher_id,
        assistant_id=assistant_id,
        location=location,
    )


def test_start_must_precede_end():
    conflict = check_conflicts(make_session('10:35', '10:35'), [])
    assert conflict.kind is ConflictKind.INVALID_TIME_RANGE
    assert conflict.message == 'Start time must be before end time'


def test_outside_working_hours():
    conflict = check_conflicts(make_session('08:30', '09:45'), [])
    assert conflict.kind is ConflictKind.INVALID_TIME_RANGE
    assert conflict.message == 'Session must be within working hours (09:00-17:00)'
    assert check_conflicts(make_session('16:10', '17:00'), []) is None


def test_lunch_overlap_is_rejected():
    conflict = check_conflicts(make_session('12:30', '13:30'), [])
    assert conflict.kind is ConflictKind.BREAK_VIOLATION
    assert conflict.conflict_id == ''
    # touching the lunch window is allowed
    assert check_conflicts(make_session('12:10', '13:00'), []) is None
    assert check_conflicts(make_session('14:00', '14:50'), []) is None


def test_adjacent_sessions_for_same_class_are_allowed():
    existing = [make_session('09:45', '10:35', id=1)]
    assert check_conflicts(make_session('10:35', '11:25'), existing) is None


def test_student_overlap_reports_conflicting_id():
    existing = [make_session('09:45', '10:35', id=7)]
    conflict = check_conflicts(make_session('10:00', '10:50'), existing)
    assert conflict.kind is ConflictKind.STUDENT_OVERLAP
    assert conflict.conflict_id == '7'
    assert conflict.as_dict() == {
        'type': 'STUDENT_OVERLAP',
        'message': 'Class already has a session at this time',
        'conflict_id': '7',
    }


def test_other_weekday_and_excluded_rows_are_ignored():
    existing = [
        make_session('09:45', '10:35', id=1, day=Weekday.TUE),
        make_session('09:45', '10:35', id=2),
    ]
    candidate = make_session('09:45', '10:35')
    assert check_conflicts(candidate, existing, exclude_id=2) is None
    assert check_conflicts(candidate, existing).conflict_id == '2'


def test_teacher_overlap_is_symmetric_with_assistant():
    primary = [make_session('09:45', '11:25', id=3, class_id=2, teacher_id=10)]
    assistant = [make_session('09:45', '11:25', id=4, class_id=2, teacher_id=11, assistant_id=10)]
    as_assistant = make_session('10:35', '11:25', teacher_id=12, assistant_id=10)
    as_primary = make_session('10:35', '11:25', teacher_id=10)

    for candidate, existing, clash in [
        (as_assistant, primary, '3'),
        (as_primary, assistant, '4'),
    ]:
        conflict = check_conflicts(candidate, existing)
        assert conflict.kind is ConflictKind.TEACHER_CONFLICT
        assert conflict.conflict_id == clash


def test_teacher_check_skipped_without_teachers():
    existing = [make_session('09:45', '10:35', id=3, class_id=2, teacher_id=10)]
    assert check_conflicts(make_session('09:45', '10:35'), existing) is None


def test_room_conflict_requires_same_kind_and_id():
    lab = Location(LocationKind.LAB, 1)
    existing = [make_session('09:45', '10:35', id=5, class_id=2, location=lab)]
    candidate = make_session('09:45', '10:35', location=ROOM)
    assert check_conflicts(candidate, existing, klass=KLASS, location_capacity=60) is None

    existing = [make_session('09:45', '10:35', id=5, class_id=2, location=ROOM)]
    conflict = check_conflicts(candidate, existing, klass=KLASS, location_capacity=60)
    assert conflict.kind is ConflictKind.ROOM_CONFLICT
    assert conflict.message == 'Room already in use at this time'
    assert conflict.conflict_id == '5'


def test_capacity_boundary():
    candidate = make_session('09:45', '10:35', location=ROOM)
    assert check_conflicts(candidate, [], klass=KLASS, location_capacity=60) is None
    conflict = check_conflicts(candidate, [], klass=KLASS, location_capacity=59)
    assert conflict.kind is ConflictKind.CAPACITY_EXCEEDED
    assert conflict.message == 'Room capacity (59) is less than class size (60)'


def test_missing_location_record_counts_as_zero_capacity():
    candidate = make_session('09:45', '10:35', location=ROOM)
    conflict = check_conflicts(candidate, [], klass=KLASS, location_capacity=None)
    assert conflict.kind is ConflictKind.CAPACITY_EXCEEDED


def test_missing_class_is_invalid_data():
    candidate = make_session('09:45', '10:35', location=ROOM)
    conflict = check_conflicts(candidate, [], klass=None, location_capacity=60)
    assert conflict.kind is ConflictKind.INVALID_DATA
    assert conflict.message == 'Class not found'


def test_weekly_frequency():
    candidate = make_session('09:45', '10:35', subject_id=1)
    assert check_conflicts(candidate, [], weekly_frequency=2, existing_subject_count=1) is None
    conflict = check_conflicts(candidate, [], weekly_frequency=2, existing_subject_count=2)
    assert conflict.kind is ConflictKind.WEEKLY_FREQUENCY_EXCEEDED
    assert conflict.message == 'Subject already has 2 sessions per week (max 2)'


def test_priority_order_reports_first_failure():
    existing = [make_session('09:45', '10:35', id=1, teacher_id=10, location=ROOM)]
    candidate = make_session('09:45', '10:35', teacher_id=10, location=ROOM, subject_id=1)
    conflict = check_conflicts(candidate, existing, klass=KLASS, location_capacity=10,
                               weekly_frequency=0, existing_subject_count=5)
    assert conflict.kind is ConflictKind.STUDENT_OVERLAP


def test_validate_uses_store_and_excludes_self(tmp_path):
    import app
    from scheduling.conflicts import ConflictEngine
    from scheduling.store import SqliteScheduleStore

    app.DB_PATH = str(tmp_path / 'test.db')
    app.init_db()
    conn = app.get_db()
    class_id = conn.execute("SELECT id FROM classes WHERE code='CST1'").fetchone()[0]
    os_id = conn.execute("SELECT id FROM subjects WHERE short_name='OS'").fetchone()[0]
    for day, start, end in [('MON', '09:45', '10:35'), ('TUE', '09:45', '10:35')]:
        conn.execute(
            "INSERT INTO schedules (class_id, subject_id, teacher_id, type, day_of_week, start_time, end_time) "
            "VALUES (?, ?, 1, 'LECTURE', ?, ?, ?)",
            (class_id, os_id, day, start, end),
        )
    conn.commit()
    first_id = conn.execute("SELECT id FROM schedules WHERE day_of_week='MON'").fetchone()[0]

    engine = ConflictEngine(SqliteScheduleStore(conn))
    candidate = make_session('10:35', '11:25', class_id=class_id, subject_id=os_id, day=Weekday.WED)
    conflict = engine.validate(candidate)
    assert conflict.kind is ConflictKind.WEEKLY_FREQUENCY_EXCEEDED

    # moving an existing OS session does not count it against itself
    moved = make_session('10:35', '11:25', class_id=class_id, subject_id=os_id, teacher_id=1)
    assert engine.validate(moved, exclude_id=first_id) is None
    conn.close()
