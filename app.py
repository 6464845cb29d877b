"""Flask web application for managing a weekly academic timetable.

This file contains the JSON routes and the database access logic.  Data is
stored in a local SQLite database which is initialized with a small sample
institution on first run.

Classes, subjects, teachers, rooms and labs are plain records.  Scheduled
sessions are different: every create or update passes through the conflict
engine in :mod:`scheduling.conflicts` before it is written, and every read of
a class timetable is rebuilt by the grid materializer in
:mod:`scheduling.grid`.  The exporters in :mod:`exporters` render that grid
as a spreadsheet, a PDF document or normalized JSON.
"""

from flask import Flask, request, send_file
import sqlite3
import json
import os
import io
import logging
from werkzeug.exceptions import BadRequest, HTTPException, NotFound

from scheduling.api import (
    Conflict,
    ConflictKind,
    InvalidDataError,
    InvalidTimeError,
    Location,
    LocationKind,
    Session,
    SessionKind,
    Weekday,
    WEEKDAYS,
)
from scheduling.conflicts import ConflictEngine
from scheduling.grid import GridMaterializer
from scheduling.store import SqliteScheduleStore
from scheduling.timeslots import (
    DEFAULT_CALENDAR,
    DEFAULT_TOLERANCE,
    format_minutes,
    lab_end_time,
    parse_time_of_day,
)
from exporters.api import DEFAULT_INSTITUTE, available_formats, export_timetable, export_timetables

app = Flask(__name__)

# Store the SQLite database inside a dedicated ``data`` directory so the
# application files themselves can stay read-only.
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
DATA_DIR = os.path.join(BASE_DIR, "data")
DB_PATH = os.path.join(DATA_DIR, "timetable.db")

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100
MAX_SLOT_TOLERANCE = 25

SECTIONS = ('1', '2', '3', '4')
ROOM_TYPES = ('class', 'lab')
# Year 1 has no letter; later years are marked Second, Third and Final.
YEAR_CODES = {1: '', 2: 'S', 3: 'T', 4: 'F'}

DAY_ORDER_SQL = (
    "CASE day_of_week WHEN 'MON' THEN 0 WHEN 'TUE' THEN 1 WHEN 'WED' THEN 2 "
    "WHEN 'THU' THEN 3 WHEN 'FRI' THEN 4 WHEN 'SAT' THEN 5 END"
)


def get_db():
    """Return a connection to the SQLite database.

    Each view function calls this helper to obtain a connection. Setting
    ``row_factory`` allows rows to behave like dictionaries.
    """
    dir_ = os.path.dirname(DB_PATH)
    if dir_:
        os.makedirs(dir_, exist_ok=True)
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    return conn


def init_db():
    """Create the SQLite tables and populate default rows.

    This function also performs simple migrations when new columns are added in
    later versions of the code. It is called on start-up and whenever the
    database is reset via ``/reset_db``."""
    db_exists = os.path.exists(DB_PATH)
    conn = get_db()
    c = conn.cursor()

    def table_exists(name):
        c.execute("SELECT name FROM sqlite_master WHERE type='table' AND name=?", (name,))
        return c.fetchone() is not None

    def column_exists(table, column):
        c.execute(f"PRAGMA table_info({table})")
        return column in [row[1] for row in c.fetchall()]

    if not table_exists('config'):
        c.execute('''CREATE TABLE config (
            id INTEGER PRIMARY KEY,
            institute_name TEXT,
            slot_tolerance INTEGER DEFAULT 5
        )''')
    elif not column_exists('config', 'slot_tolerance'):
        c.execute('ALTER TABLE config ADD COLUMN slot_tolerance INTEGER DEFAULT 5')

    if not table_exists('subjects'):
        c.execute('''CREATE TABLE subjects (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            full_name TEXT NOT NULL,
            short_name TEXT NOT NULL,
            code TEXT UNIQUE NOT NULL,
            weekly_frequency INTEGER NOT NULL,
            duration INTEGER DEFAULT 50,
            coordinator_id INTEGER
        )''')
    elif not column_exists('subjects', 'coordinator_id'):
        c.execute('ALTER TABLE subjects ADD COLUMN coordinator_id INTEGER')

    if not table_exists('teachers'):
        c.execute('''CREATE TABLE teachers (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            short_abbr TEXT NOT NULL,
            code TEXT UNIQUE,
            subjects TEXT,
            max_load_per_day INTEGER
        )''')

    if not table_exists('rooms'):
        c.execute('''CREATE TABLE rooms (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            code TEXT UNIQUE NOT NULL,
            type TEXT NOT NULL,
            capacity INTEGER NOT NULL
        )''')

    if not table_exists('labs'):
        c.execute('''CREATE TABLE labs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            short_name TEXT NOT NULL,
            code TEXT UNIQUE NOT NULL,
            capacity INTEGER DEFAULT 0,
            rooms TEXT
        )''')

    if not table_exists('classes'):
        c.execute('''CREATE TABLE classes (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            class_name TEXT NOT NULL,
            year INTEGER NOT NULL,
            section TEXT NOT NULL,
            code TEXT UNIQUE,
            student_count INTEGER DEFAULT 0,
            room_id INTEGER,
            subjects TEXT,
            labs TEXT
        )''')

    if not table_exists('schedules'):
        c.execute('''CREATE TABLE schedules (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            class_id INTEGER NOT NULL,
            subject_id INTEGER,
            lab_id INTEGER,
            teacher_id INTEGER,
            lab_assistant_id INTEGER,
            location_kind TEXT,
            location_id INTEGER,
            type TEXT NOT NULL,
            day_of_week TEXT NOT NULL,
            start_time TEXT NOT NULL,
            end_time TEXT NOT NULL,
            duration_slots INTEGER DEFAULT 1,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP
        )''')
    elif not column_exists('schedules', 'lab_assistant_id'):
        c.execute('ALTER TABLE schedules ADD COLUMN lab_assistant_id INTEGER')

    c.execute('CREATE INDEX IF NOT EXISTS idx_schedules_class_day ON schedules(class_id, day_of_week, start_time)')
    c.execute('CREATE INDEX IF NOT EXISTS idx_schedules_teacher_day ON schedules(teacher_id, day_of_week, start_time)')
    c.execute(
        'CREATE INDEX IF NOT EXISTS idx_schedules_location_day '
        'ON schedules(location_kind, location_id, day_of_week, start_time)'
    )
    conn.commit()

    # Only insert sample data when creating a brand new database file.  If the
    # file already exists, assume any empty tables were intentionally cleared by
    # the user and leave them empty.
    if not db_exists:
        c.execute(
            'INSERT INTO config (id, institute_name, slot_tolerance) VALUES (1, ?, ?)',
            (DEFAULT_INSTITUTE, DEFAULT_TOLERANCE),
        )
        subjects = [
            ('Data Structures', 'DS', 'CS301', 3, 50),
            ('Operating Systems', 'OS', 'CS302', 2, 50),
            ('Engineering Mathematics', 'MATH', 'MA301', 4, 50),
            ('Computer Networks', 'CN', 'CS303', 2, 50),
        ]
        c.executemany(
            'INSERT INTO subjects (full_name, short_name, code, weekly_frequency, duration) VALUES (?, ?, ?, ?, ?)',
            subjects,
        )
        subj_map = {r['short_name']: r['id'] for r in c.execute('SELECT id, short_name FROM subjects')}
        teachers = [
            ('Anita Sharma', 'AS', 'T001', json.dumps([subj_map['DS'], subj_map['OS']])),
            ('Rahul Verma', 'RV', 'T002', json.dumps([subj_map['MATH']])),
            ('Priya Nair', 'PN', 'T003', json.dumps([subj_map['CN'], subj_map['DS']])),
        ]
        c.executemany('INSERT INTO teachers (name, short_abbr, code, subjects) VALUES (?, ?, ?, ?)', teachers)
        c.execute('UPDATE subjects SET coordinator_id=(SELECT id FROM teachers WHERE code=?) WHERE short_name=?',
                  ('T001', 'DS'))
        rooms = [('R101', 'class', 60), ('R102', 'class', 40), ('L201', 'lab', 60)]
        c.executemany('INSERT INTO rooms (code, type, capacity) VALUES (?, ?, ?)', rooms)
        room_map = {r['code']: r['id'] for r in c.execute('SELECT id, code FROM rooms')}
        c.execute(
            'INSERT INTO labs (name, short_name, code, capacity, rooms) VALUES (?, ?, ?, ?, ?)',
            ('Programming Lab', 'PL', 'LAB-PL', 60, json.dumps([room_map['L201']])),
        )
        lab_id = c.lastrowid
        all_subjects = json.dumps(sorted(subj_map.values()))
        classes = [
            ('CSE', 3, '1', 60, room_map['R101']),
            ('CSE', 3, '2', 45, room_map['R102']),
        ]
        for name, year, section, count, room_id in classes:
            c.execute(
                'INSERT INTO classes (class_name, year, section, code, student_count, room_id, subjects, labs) '
                'VALUES (?, ?, ?, ?, ?, ?, ?, ?)',
                (name, year, section, class_code(name, year, section), count, room_id,
                 all_subjects, json.dumps([lab_id])),
            )
    conn.commit()
    conn.close()


def class_code(class_name, year, section):
    """Return the unique class code, e.g. ``CSE`` year 3 section 1 -> ``CST1``."""
    return f"{class_name}{YEAR_CODES.get(int(year), '')}{section}"


def get_config():
    conn = get_db()
    row = conn.execute('SELECT * FROM config WHERE id=1').fetchone()
    conn.close()
    if row is None:
        return {'institute_name': DEFAULT_INSTITUTE, 'slot_tolerance': DEFAULT_TOLERANCE}
    tolerance = row['slot_tolerance']
    return {
        'institute_name': row['institute_name'] or DEFAULT_INSTITUTE,
        'slot_tolerance': DEFAULT_TOLERANCE if tolerance is None else tolerance,
    }


# --- Error handling ---

def _error(message, status):
    return {'success': False, 'error': message}, status


@app.errorhandler(HTTPException)
def handle_http_error(e):
    return _error(e.description, e.code)


@app.errorhandler(InvalidTimeError)
def handle_invalid_time(e):
    return _error(str(e), 400)


@app.errorhandler(InvalidDataError)
def handle_invalid_data(e):
    return _error(str(e), 404)


@app.errorhandler(sqlite3.IntegrityError)
def handle_integrity_error(e):
    message = str(e)
    if 'UNIQUE constraint failed' in message:
        field = message.rsplit('.', 1)[-1]
        message = f'{field} already exists'
    return _error(message, 400)


@app.errorhandler(Exception)
def handle_unexpected_error(e):
    app.logger.exception('Request error %s %s', request.method, request.path)
    return _error('Internal Server Error', 500)


# --- Request parsing helpers ---

def _payload():
    data = request.get_json(silent=True)
    if data is None:
        data = request.form.to_dict()
    if not isinstance(data, dict):
        raise BadRequest('Request body must be a JSON object')
    return data


def _first(data, *keys):
    for key in keys:
        if key in data and data[key] not in (None, ''):
            return data[key]
    return None


def _int_value(value, label, minimum=None, maximum=None):
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise BadRequest(f'{label} must be an integer')
    if minimum is not None and number < minimum:
        raise BadRequest(f'{label} must be at least {minimum}')
    if maximum is not None and number > maximum:
        raise BadRequest(f'{label} must be at most {maximum}')
    return number


def _optional_int(data, *keys, label=None):
    value = _first(data, *keys)
    if value is None:
        return None
    return _int_value(value, label or keys[0])


def _text(data, key, label, required=True):
    value = data.get(key)
    if value is None or str(value).strip() == '':
        if required:
            raise BadRequest(f'{label} is required')
        return None
    return str(value).strip()


def _id_list(value, label):
    if value in (None, ''):
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            value = [v for v in value.split(',') if v.strip()]
    if not isinstance(value, (list, tuple)):
        raise BadRequest(f'{label} must be a list of ids')
    return [_int_value(v, label) for v in value]


def _json_list(text):
    try:
        items = json.loads(text) if text else []
    except ValueError:
        return []
    return items if isinstance(items, list) else []


def _row_dict(row, list_fields=()):
    data = dict(row)
    for field in list_fields:
        if field in data:
            data[field] = _json_list(data[field])
    return data


def _paginate(c, table, columns, search_columns, order_by, where=None, params=None, list_fields=()):
    """Return one page of ``table`` rows filtered by the ``search`` argument.

    ``page`` and ``limit`` come from the query string; the response mirrors
    the shape used by every list endpoint.
    """
    page = _int_value(request.args.get('page', 1), 'page', minimum=1)
    limit = _int_value(request.args.get('limit', DEFAULT_PAGE_SIZE), 'limit', minimum=1, maximum=MAX_PAGE_SIZE)
    search = request.args.get('search', '').strip()
    clauses = list(where or [])
    args = list(params or [])
    if search and search_columns:
        clauses.append('(' + ' OR '.join(f'{col} LIKE ?' for col in search_columns) + ')')
        args.extend([f'%{search}%'] * len(search_columns))
    where_sql = f" WHERE {' AND '.join(clauses)}" if clauses else ''
    total = c.execute(f'SELECT COUNT(*) FROM {table}{where_sql}', args).fetchone()[0]
    rows = c.execute(
        f'SELECT {columns} FROM {table}{where_sql} ORDER BY {order_by} LIMIT ? OFFSET ?',
        args + [limit, (page - 1) * limit],
    ).fetchall()
    return {
        'success': True,
        'data': [_row_dict(r, list_fields) for r in rows],
        'total': total,
        'page': page,
        'limit': limit,
        'totalPages': (total + limit - 1) // limit,
    }


def _fetch_or_404(c, table, record_id, label, list_fields=()):
    row = c.execute(f'SELECT * FROM {table} WHERE id=?', (record_id,)).fetchone()
    if row is None:
        raise NotFound(f'{label} not found')
    return _row_dict(row, list_fields)


def _delete_or_404(table, record_id, label):
    conn = get_db()
    try:
        cur = conn.execute(f'DELETE FROM {table} WHERE id=?', (record_id,))
        if cur.rowcount == 0:
            raise NotFound(f'{label} not found')
        conn.commit()
    finally:
        conn.close()
    return {'success': True, 'message': f'{label} deleted'}


def _insert(table, values):
    cols = ', '.join(values)
    placeholders = ', '.join('?' for _ in values)
    conn = get_db()
    try:
        cur = conn.execute(f'INSERT INTO {table} ({cols}) VALUES ({placeholders})', list(values.values()))
        conn.commit()
        return cur.lastrowid
    finally:
        conn.close()


def _update(table, record_id, values):
    assignments = ', '.join(f'{col}=?' for col in values)
    conn = get_db()
    try:
        conn.execute(f'UPDATE {table} SET {assignments} WHERE id=?', list(values.values()) + [record_id])
        conn.commit()
    finally:
        conn.close()


def _load(table, record_id, label, list_fields=()):
    conn = get_db()
    try:
        return _fetch_or_404(conn.cursor(), table, record_id, label, list_fields)
    finally:
        conn.close()


# --- Subjects ---

def subject_values(data, current=None):
    merged = dict(current or {})
    merged.update(data)
    if _first(merged, 'weekly_frequency') is None:
        raise BadRequest('weekly_frequency is required')
    return {
        'full_name': _text(merged, 'full_name', 'Full name'),
        'short_name': _text(merged, 'short_name', 'Short name'),
        'code': _text(merged, 'code', 'Code'),
        'weekly_frequency': _int_value(merged['weekly_frequency'], 'weekly_frequency', minimum=0),
        'duration': _int_value(merged.get('duration') or 50, 'duration', minimum=1),
        'coordinator_id': _optional_int(merged, 'coordinator', 'coordinator_id', label='coordinator'),
    }


@app.route('/api/subjects', methods=['GET'])
def list_subjects():
    conn = get_db()
    try:
        return _paginate(conn.cursor(), 'subjects', '*', ['full_name', 'short_name', 'code'], 'short_name')
    finally:
        conn.close()


@app.route('/api/subjects', methods=['POST'])
def create_subject():
    new_id = _insert('subjects', subject_values(_payload()))
    return {'success': True, 'data': _load('subjects', new_id, 'Subject')}, 201


@app.route('/api/subjects/<int:subject_id>', methods=['GET'])
def get_subject(subject_id):
    return {'success': True, 'data': _load('subjects', subject_id, 'Subject')}


@app.route('/api/subjects/<int:subject_id>', methods=['PUT'])
def update_subject(subject_id):
    current = _load('subjects', subject_id, 'Subject')
    _update('subjects', subject_id, subject_values(_payload(), current))
    return {'success': True, 'data': _load('subjects', subject_id, 'Subject')}


@app.route('/api/subjects/<int:subject_id>', methods=['DELETE'])
def delete_subject(subject_id):
    return _delete_or_404('subjects', subject_id, 'Subject')


# --- Teachers ---

def teacher_values(data, current=None):
    merged = dict(current or {})
    merged.update(data)
    max_load = _first(merged, 'max_load_per_day')
    return {
        'name': _text(merged, 'name', 'Name'),
        'short_abbr': _text(merged, 'short_abbr', 'Short abbreviation'),
        'code': _text(merged, 'code', 'Code', required=False),
        'subjects': json.dumps(_id_list(merged.get('subjects'), 'subjects')),
        'max_load_per_day': None if max_load is None else _int_value(max_load, 'max_load_per_day', minimum=0),
    }


@app.route('/api/teachers', methods=['GET'])
def list_teachers():
    conn = get_db()
    try:
        return _paginate(conn.cursor(), 'teachers', '*', ['name', 'short_abbr', 'code'], 'name',
                         list_fields=('subjects',))
    finally:
        conn.close()


@app.route('/api/teachers', methods=['POST'])
def create_teacher():
    new_id = _insert('teachers', teacher_values(_payload()))
    return {'success': True, 'data': _load('teachers', new_id, 'Teacher', ('subjects',))}, 201


@app.route('/api/teachers/<int:teacher_id>', methods=['GET'])
def get_teacher(teacher_id):
    return {'success': True, 'data': _load('teachers', teacher_id, 'Teacher', ('subjects',))}


@app.route('/api/teachers/<int:teacher_id>', methods=['PUT'])
def update_teacher(teacher_id):
    current = _load('teachers', teacher_id, 'Teacher', ('subjects',))
    _update('teachers', teacher_id, teacher_values(_payload(), current))
    return {'success': True, 'data': _load('teachers', teacher_id, 'Teacher', ('subjects',))}


@app.route('/api/teachers/<int:teacher_id>', methods=['DELETE'])
def delete_teacher(teacher_id):
    return _delete_or_404('teachers', teacher_id, 'Teacher')


# --- Rooms ---

def room_values(data, current=None):
    merged = dict(current or {})
    merged.update(data)
    room_type = _text(merged, 'type', 'Type')
    if room_type not in ROOM_TYPES:
        raise BadRequest(f"type must be one of: {', '.join(ROOM_TYPES)}")
    return {
        'code': _text(merged, 'code', 'Code'),
        'type': room_type,
        'capacity': _int_value(merged.get('capacity'), 'capacity', minimum=0),
    }


@app.route('/api/rooms', methods=['GET'])
def list_rooms():
    conn = get_db()
    try:
        return _paginate(conn.cursor(), 'rooms', '*', ['code', 'type'], 'code')
    finally:
        conn.close()


@app.route('/api/rooms', methods=['POST'])
def create_room():
    new_id = _insert('rooms', room_values(_payload()))
    return {'success': True, 'data': _load('rooms', new_id, 'Room')}, 201


@app.route('/api/rooms/<int:room_id>', methods=['GET'])
def get_room(room_id):
    return {'success': True, 'data': _load('rooms', room_id, 'Room')}


@app.route('/api/rooms/<int:room_id>', methods=['PUT'])
def update_room(room_id):
    current = _load('rooms', room_id, 'Room')
    _update('rooms', room_id, room_values(_payload(), current))
    return {'success': True, 'data': _load('rooms', room_id, 'Room')}


@app.route('/api/rooms/<int:room_id>', methods=['DELETE'])
def delete_room(room_id):
    return _delete_or_404('rooms', room_id, 'Room')


# --- Labs ---

def lab_values(data, current=None):
    merged = dict(current or {})
    merged.update(data)
    return {
        'name': _text(merged, 'name', 'Name'),
        'short_name': _text(merged, 'short_name', 'Short name'),
        'code': _text(merged, 'code', 'Code'),
        'capacity': _int_value(merged.get('capacity') or 0, 'capacity', minimum=0),
        'rooms': json.dumps(_id_list(merged.get('rooms'), 'rooms')),
    }


@app.route('/api/labs', methods=['GET'])
def list_labs():
    conn = get_db()
    try:
        return _paginate(conn.cursor(), 'labs', '*', ['name', 'short_name', 'code'], 'name',
                         list_fields=('rooms',))
    finally:
        conn.close()


@app.route('/api/labs', methods=['POST'])
def create_lab():
    new_id = _insert('labs', lab_values(_payload()))
    return {'success': True, 'data': _load('labs', new_id, 'Lab', ('rooms',))}, 201


@app.route('/api/labs/<int:lab_id>', methods=['GET'])
def get_lab(lab_id):
    return {'success': True, 'data': _load('labs', lab_id, 'Lab', ('rooms',))}


@app.route('/api/labs/<int:lab_id>', methods=['PUT'])
def update_lab(lab_id):
    current = _load('labs', lab_id, 'Lab', ('rooms',))
    _update('labs', lab_id, lab_values(_payload(), current))
    return {'success': True, 'data': _load('labs', lab_id, 'Lab', ('rooms',))}


@app.route('/api/labs/<int:lab_id>', methods=['DELETE'])
def delete_lab(lab_id):
    return _delete_or_404('labs', lab_id, 'Lab')


# --- Classes ---

CLASS_LISTS = ('subjects', 'labs')


def class_values(data, current=None):
    merged = dict(current or {})
    merged.update(data)
    class_name = _text(merged, 'class_name', 'Class name')
    year = _int_value(merged.get('year'), 'year', minimum=1, maximum=4)
    section = _text(merged, 'section', 'Section')
    if section not in SECTIONS:
        raise BadRequest(f"section must be one of: {', '.join(SECTIONS)}")
    return {
        'class_name': class_name,
        'year': year,
        'section': section,
        'code': class_code(class_name, year, section),
        'student_count': _int_value(merged.get('student_count') or 0, 'student_count', minimum=0),
        'room_id': _optional_int(merged, 'room', 'room_id', label='room'),
        'subjects': json.dumps(_id_list(merged.get('subjects'), 'subjects')),
        'labs': json.dumps(_id_list(merged.get('labs'), 'labs')),
    }


@app.route('/api/classes', methods=['GET'])
def list_classes():
    conn = get_db()
    try:
        return _paginate(conn.cursor(), 'classes', '*', ['class_name', 'code'], 'class_name, year, section',
                         list_fields=CLASS_LISTS)
    finally:
        conn.close()


@app.route('/api/classes', methods=['POST'])
def create_class():
    new_id = _insert('classes', class_values(_payload()))
    return {'success': True, 'data': _load('classes', new_id, 'Class', CLASS_LISTS)}, 201


@app.route('/api/classes/<int:class_id>', methods=['GET'])
def get_class(class_id):
    return {'success': True, 'data': _load('classes', class_id, 'Class', CLASS_LISTS)}


@app.route('/api/classes/<int:class_id>', methods=['PUT'])
def update_class(class_id):
    current = _load('classes', class_id, 'Class', CLASS_LISTS)
    _update('classes', class_id, class_values(_payload(), current))
    return {'success': True, 'data': _load('classes', class_id, 'Class', CLASS_LISTS)}


@app.route('/api/classes/<int:class_id>', methods=['DELETE'])
def delete_class(class_id):
    """Delete a class together with its scheduled sessions."""
    conn = get_db()
    try:
        with conn:
            if conn.execute('DELETE FROM classes WHERE id=?', (class_id,)).rowcount == 0:
                raise NotFound('Class not found')
            removed = conn.execute('DELETE FROM schedules WHERE class_id=?', (class_id,)).rowcount
    finally:
        conn.close()
    if removed:
        app.logger.info('Removed %d sessions of deleted class %s', removed, class_id)
    return {'success': True, 'message': 'Class deleted'}


@app.route('/api/classes/<int:class_id>/subjects', methods=['GET'])
def class_subjects(class_id):
    klass = _load('classes', class_id, 'Class', CLASS_LISTS)
    ids = klass['subjects']
    if not ids:
        return {'success': True, 'data': []}
    conn = get_db()
    placeholders = ','.join('?' for _ in ids)
    rows = conn.execute(
        f'SELECT id, code, short_name, full_name FROM subjects WHERE id IN ({placeholders}) ORDER BY short_name',
        ids,
    ).fetchall()
    conn.close()
    return {'success': True, 'data': [dict(r) for r in rows]}


@app.route('/api/classes/<int:class_id>/faculty-assignments', methods=['GET'])
def faculty_assignments(class_id):
    """List the subjects scheduled for a class with their faculty and coordinator."""
    _load('classes', class_id, 'Class')
    conn = get_db()
    rows = conn.execute(
        '''SELECT sub.id AS subject_id, sub.code, sub.full_name, sub.short_name,
                  te.name AS teacher_name, co.name AS coordinator_name
           FROM schedules sc
           JOIN subjects sub ON sc.subject_id = sub.id
           LEFT JOIN teachers te ON sc.teacher_id = te.id
           LEFT JOIN teachers co ON sub.coordinator_id = co.id
           WHERE sc.class_id=?
           ORDER BY sc.id''',
        (class_id,),
    ).fetchall()
    conn.close()
    by_subject = {}
    for r in rows:
        entry = by_subject.setdefault(r['subject_id'], {
            'classId': class_id,
            'subjectCode': r['code'],
            'subjectName': r['full_name'] or r['short_name'],
            'faculty': [],
            'coordinatorName': r['coordinator_name'],
        })
        if r['teacher_name'] and r['teacher_name'] not in entry['faculty']:
            entry['faculty'].append(r['teacher_name'])
    data = []
    for entry in by_subject.values():
        faculty = entry.pop('faculty')
        entry['facultyName'] = ', '.join(faculty) if faculty else None
        data.append(entry)
    return {'success': True, 'data': data}


# --- Schedules ---

def schedule_to_dict(row):
    """Serialize a joined ``schedules`` row for API responses."""
    data = dict(row)
    return {
        'id': data['id'],
        'class': data['class_id'],
        'subject': data['subject_id'],
        'lab': data['lab_id'],
        'teacher': data['teacher_id'],
        'lab_assistant': data['lab_assistant_id'],
        'room': data['location_id'],
        'roomModel': data['location_kind'],
        'type': data['type'],
        'day_of_week': data['day_of_week'],
        'start_time': data['start_time'],
        'end_time': data['end_time'],
        'duration_slots': data['duration_slots'],
        'subject_code': data.get('subject_code'),
        'subject_name': data.get('subject_short_name'),
        'lab_name': data.get('lab_name'),
        'teacher_name': data.get('teacher_name'),
        'teacher_abbr': data.get('teacher_abbr'),
        'room_code': data.get('location_code'),
    }


def normalize_schedule_payload(data, current=None):
    """Turn a request body into ``schedules`` column values.

    Accepts both the camelCase and the column-style keys.  Times may be
    ``HH:MM`` strings or full timestamps; only the time of day is kept.  A
    LAB always lasts two slots: its end is derived from its start.  On update
    ``current`` holds the stored row so omitted keys keep their value.
    """
    merged = {}
    if current:
        merged.update({
            'class': current['class_id'],
            'subject': current['subject_id'],
            'lab': current['lab_id'],
            'teacher': current['teacher_id'],
            'lab_assistant': current['lab_assistant_id'],
            'room': current['location_id'],
            'roomModel': current['location_kind'],
            'type': current['type'],
            'day_of_week': current['day_of_week'],
            'start_time': current['start_time'],
            'end_time': current['end_time'],
        })
    merged.update(data)

    class_id = _optional_int(merged, 'classId', 'class', label='class')
    if class_id is None:
        raise BadRequest('Class is required')
    kind_value = _first(merged, 'type')
    if kind_value is None:
        raise BadRequest('type must be LECTURE or LAB')
    kind = SessionKind.parse(kind_value)
    day_value = _first(merged, 'day', 'day_of_week')
    if day_value is None:
        raise BadRequest('Day is required')
    weekday = Weekday.parse(day_value)

    subject_id = _optional_int(merged, 'subjectId', 'subject', label='subject')
    teacher_id = _optional_int(merged, 'teacherId', 'teacher', label='teacher')
    assistant_id = _optional_int(merged, 'labAssistant', 'lab_assistant', label='lab_assistant')
    lab_id = _optional_int(merged, 'lab', label='lab')
    room_id = _optional_int(merged, 'room', label='room')
    room_model = _first(merged, 'roomModel')

    location = None
    if room_id is not None:
        if room_model is None:
            location_kind = LocationKind.LAB if kind is SessionKind.LAB else LocationKind.ROOM
        else:
            location_kind = LocationKind.parse(room_model)
        location = Location(location_kind, room_id)
        if kind is SessionKind.LAB and lab_id is None and location_kind is LocationKind.LAB:
            lab_id = room_id

    if kind is SessionKind.LAB:
        if location is None:
            raise BadRequest('Lab is required')
    else:
        if subject_id is None:
            raise BadRequest('Subject is required')
        if teacher_id is None:
            raise BadRequest('Teacher is required')

    start_value = _first(merged, 'startTime', 'start_time')
    if start_value is None:
        raise BadRequest('Start time is required')
    start = parse_time_of_day(start_value)
    if kind is SessionKind.LAB:
        end = lab_end_time(start)
    else:
        end_value = _first(merged, 'endTime', 'end_time')
        if end_value is None:
            raise BadRequest('End time is required')
        end = parse_time_of_day(end_value)

    candidate = Session(
        id=current['id'] if current else None,
        class_id=class_id,
        subject_id=subject_id,
        lab_id=lab_id,
        teacher_id=teacher_id,
        assistant_id=assistant_id,
        location=location,
        kind=kind,
        weekday=weekday,
        start=start,
        end=end,
        duration_slots=kind.default_slots,
    )
    return candidate


def candidate_values(candidate):
    return {
        'class_id': candidate.class_id,
        'subject_id': candidate.subject_id,
        'lab_id': candidate.lab_id,
        'teacher_id': candidate.teacher_id,
        'lab_assistant_id': candidate.assistant_id,
        'location_kind': candidate.location.kind.value if candidate.location else None,
        'location_id': candidate.location.id if candidate.location else None,
        'type': candidate.kind.value,
        'day_of_week': candidate.weekday.value,
        'start_time': format_minutes(candidate.start),
        'end_time': format_minutes(candidate.end),
        'duration_slots': candidate.duration_slots,
    }


def ensure_teacher_can_teach(store, teacher_id, subject_id):
    subjects = store.teacher_subjects(teacher_id)
    if subjects is None:
        raise BadRequest('Teacher not found')
    if subject_id not in subjects:
        raise BadRequest('Teacher not allowed to teach this subject')


def conflict_response(conflict):
    """Rejections get their own status so clients can explain the clash."""
    return {'success': False, 'error': conflict.message, 'conflict': conflict.as_dict()}, 409


def save_schedule(candidate, exclude_id=None):
    """Validate ``candidate`` and write it inside one locked transaction.

    Returns ``(conflict, row)``; exactly one of them is ``None``.
    """
    conn = get_db()
    store = SqliteScheduleStore(conn)
    try:
        if candidate.teacher_id is not None and candidate.subject_id is not None:
            ensure_teacher_can_teach(store, candidate.teacher_id, candidate.subject_id)
        with store.write_lock():
            if store.find_class(candidate.class_id) is None:
                return Conflict(ConflictKind.INVALID_DATA, 'Class not found'), None
            conflict = ConflictEngine(store).validate(candidate, exclude_id=exclude_id)
            if conflict is not None:
                return conflict, None
            values = candidate_values(candidate)
            if exclude_id is None:
                cols = ', '.join(values)
                placeholders = ', '.join('?' for _ in values)
                cur = conn.execute(
                    f'INSERT INTO schedules ({cols}) VALUES ({placeholders})',
                    list(values.values()),
                )
                session_id = cur.lastrowid
            else:
                assignments = ', '.join(f'{col}=?' for col in values)
                conn.execute(
                    f'UPDATE schedules SET {assignments}, updated_at=CURRENT_TIMESTAMP WHERE id=?',
                    list(values.values()) + [exclude_id],
                )
                session_id = exclude_id
        return None, store.session_row(session_id)
    finally:
        conn.close()


@app.route('/api/schedules', methods=['GET'])
def list_schedules():
    where, params = [], []
    class_id = request.args.get('class') or request.args.get('classId')
    teacher_id = request.args.get('teacher') or request.args.get('teacherId')
    if class_id:
        where.append('class_id=?')
        params.append(_int_value(class_id, 'class'))
    if teacher_id:
        where.append('(teacher_id=? OR lab_assistant_id=?)')
        params.extend([_int_value(teacher_id, 'teacher')] * 2)
    search = request.args.get('search', '').strip().upper()
    if search in Weekday.__members__:
        where.append('day_of_week=?')
        params.append(search)
    conn = get_db()
    try:
        page = _paginate(conn.cursor(), 'schedules', 'id', [], f'{DAY_ORDER_SQL}, start_time, id',
                         where=where, params=params)
        store = SqliteScheduleStore(conn)
        page['data'] = [schedule_to_dict(store.session_row(r['id'])) for r in page['data']]
        return page
    finally:
        conn.close()


@app.route('/api/schedules/class/<int:class_id>', methods=['GET'])
def list_class_schedules(class_id):
    conn = get_db()
    try:
        store = SqliteScheduleStore(conn)
        ids = [r['id'] for r in conn.execute(
            f'SELECT id FROM schedules WHERE class_id=? ORDER BY {DAY_ORDER_SQL}, start_time, id',
            (class_id,),
        )]
        return {'success': True, 'data': [schedule_to_dict(store.session_row(i)) for i in ids]}
    finally:
        conn.close()


@app.route('/api/schedules/<int:schedule_id>', methods=['GET'])
def get_schedule(schedule_id):
    conn = get_db()
    row = SqliteScheduleStore(conn).session_row(schedule_id)
    conn.close()
    if row is None:
        raise NotFound('Schedule not found')
    return {'success': True, 'data': schedule_to_dict(row)}


@app.route('/api/schedules', methods=['POST'])
def create_schedule():
    candidate = normalize_schedule_payload(_payload())
    conflict, row = save_schedule(candidate)
    if conflict is not None:
        return conflict_response(conflict)
    app.logger.info('Created session %s for class %s', row['id'], row['class_id'])
    return {'success': True, 'data': schedule_to_dict(row)}, 201


@app.route('/api/schedules/validate', methods=['POST'])
def validate_schedule():
    """Dry-run a create (or, with ``excludeId``, an update) without writing."""
    data = _payload()
    exclude_id = _optional_int(data, 'excludeId', label='excludeId')
    candidate = normalize_schedule_payload(data)
    conn = get_db()
    try:
        conflict = ConflictEngine(SqliteScheduleStore(conn)).validate(candidate, exclude_id=exclude_id)
    finally:
        conn.close()
    if conflict is not None:
        return conflict_response(conflict)
    return {'success': True, 'conflict': None}


@app.route('/api/schedules/<int:schedule_id>', methods=['PUT'])
def update_schedule(schedule_id):
    conn = get_db()
    current = conn.execute('SELECT * FROM schedules WHERE id=?', (schedule_id,)).fetchone()
    conn.close()
    if current is None:
        raise NotFound('Schedule not found')
    candidate = normalize_schedule_payload(_payload(), current=dict(current))
    conflict, row = save_schedule(candidate, exclude_id=schedule_id)
    if conflict is not None:
        return conflict_response(conflict)
    app.logger.info('Updated session %s for class %s', schedule_id, row['class_id'])
    return {'success': True, 'data': schedule_to_dict(row)}


@app.route('/api/schedules/<int:schedule_id>', methods=['DELETE'])
def delete_schedule(schedule_id):
    # Removing a session can never create a conflict, so nothing is re-checked.
    result = _delete_or_404('schedules', schedule_id, 'Schedule')
    app.logger.info('Deleted session %s', schedule_id)
    return result


# --- Timetable grid and exports ---

def build_class_grid(class_id, conn=None):
    """Materialize the weekly grid of ``class_id``.

    Raises :class:`InvalidDataError` when the class does not exist.
    """
    tolerance = get_config()['slot_tolerance']
    own_conn = conn is None
    if own_conn:
        conn = get_db()
    try:
        return GridMaterializer(SqliteScheduleStore(conn), DEFAULT_CALENDAR).build(class_id, tolerance=tolerance)
    finally:
        if own_conn:
            conn.close()


@app.route('/api/timeslots', methods=['GET'])
def timeslots():
    return {'success': True, 'data': DEFAULT_CALENDAR.as_dict()}


@app.route('/api/timetable/<int:class_id>', methods=['GET'])
def class_timetable(class_id):
    grid = build_class_grid(class_id)
    data = grid.as_dict()
    data['slots'] = [s.as_dict() for s in DEFAULT_CALENDAR.slots]
    data['days'] = [d.value for d in WEEKDAYS]
    return {'success': True, 'data': data}


def _send_export(result):
    return send_file(
        io.BytesIO(result.content),
        mimetype=result.mimetype,
        as_attachment=True,
        download_name=result.filename,
    )


def _export_format(value):
    fmt = (value or 'excel').lower()
    if fmt not in available_formats():
        raise BadRequest(f"Unknown export format '{value}'. Available options: {', '.join(available_formats())}.")
    return fmt


@app.route('/api/timetable/export', methods=['GET'])
def export_class_timetable():
    class_id = request.args.get('classId') or request.args.get('class')
    if not class_id:
        raise BadRequest('classId is required')
    fmt = _export_format(request.args.get('format'))
    grid = build_class_grid(_int_value(class_id, 'classId'))
    result = export_timetable(grid, fmt, institute=get_config()['institute_name'])
    return _send_export(result)


@app.route('/api/timetable/export/bulk', methods=['POST'])
def export_bulk_timetables():
    data = _payload()
    class_ids = _id_list(data.get('classIds'), 'classIds')
    if not class_ids:
        raise BadRequest('classIds must be a non-empty list')
    fmt = _export_format(data.get('format'))
    conn = get_db()
    try:
        grids = [build_class_grid(cid, conn) for cid in class_ids]
    finally:
        conn.close()
    result = export_timetables(grids, fmt, institute=get_config()['institute_name'])
    return _send_export(result)


# --- Dashboard ---

@app.route('/api/dashboard/stats', methods=['GET'])
def dashboard_stats():
    conn = get_db()
    counts = {}
    for key, table in [('subjects', 'subjects'), ('teachers', 'teachers'), ('classes', 'classes'),
                       ('labs', 'labs'), ('sessions', 'schedules')]:
        counts[key] = conn.execute(f'SELECT COUNT(*) FROM {table}').fetchone()[0]
    conn.close()
    return {'success': True, 'data': counts}


@app.route('/api/dashboard/sessions-per-week', methods=['GET'])
def sessions_per_week():
    conn = get_db()
    rows = conn.execute('SELECT day_of_week, COUNT(*) AS n FROM schedules GROUP BY day_of_week').fetchall()
    conn.close()
    counts = {r['day_of_week']: r['n'] for r in rows}
    return {'success': True, 'data': [{'day': d.value, 'count': counts.get(d.value, 0)} for d in WEEKDAYS]}


@app.route('/api/dashboard/subject-distribution', methods=['GET'])
def subject_distribution():
    conn = get_db()
    rows = conn.execute(
        '''SELECT sub.short_name AS name, COUNT(*) AS n
           FROM schedules sc JOIN subjects sub ON sc.subject_id = sub.id
           GROUP BY sc.subject_id ORDER BY n DESC, name'''
    ).fetchall()
    conn.close()
    return {'success': True, 'data': [{'name': r['name'] or 'Unknown', 'value': r['n']} for r in rows]}


@app.route('/api/dashboard/teacher-workload', methods=['GET'])
def teacher_workload():
    conn = get_db()
    rows = conn.execute(
        '''SELECT te.short_abbr AS name, COUNT(*) AS n
           FROM schedules sc JOIN teachers te ON sc.teacher_id = te.id
           GROUP BY sc.teacher_id ORDER BY n DESC, name LIMIT 10'''
    ).fetchall()
    conn.close()
    return {'success': True, 'data': [{'name': r['name'] or 'Unknown', 'sessions': r['n']} for r in rows]}


# --- Configuration ---

@app.route('/config', methods=['GET', 'POST'])
def config():
    """Read or update the institute name and the slot matching tolerance."""
    if request.method == 'POST':
        data = _payload()
        current = get_config()
        name = _text(data, 'institute_name', 'Institute name', required=False) or current['institute_name']
        tolerance = current['slot_tolerance']
        if _first(data, 'slot_tolerance') is not None:
            tolerance = _int_value(data['slot_tolerance'], 'slot_tolerance', minimum=0, maximum=MAX_SLOT_TOLERANCE)
        conn = get_db()
        conn.execute(
            'INSERT INTO config (id, institute_name, slot_tolerance) VALUES (1, ?, ?) '
            'ON CONFLICT(id) DO UPDATE SET institute_name=excluded.institute_name, '
            'slot_tolerance=excluded.slot_tolerance',
            (name, tolerance),
        )
        conn.commit()
        conn.close()
    return {'success': True, 'data': get_config()}


@app.route('/reset_db', methods=['POST'])
def reset_db():
    """Reset the database to its initial state.

    Useful during development or demos when you want to start from a clean
    slate. All records and sessions are removed.
    """
    if os.path.exists(DB_PATH):
        os.remove(DB_PATH)
    init_db()
    return {'success': True, 'message': 'Database reset to default scenario.'}


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    init_db()
    app.run(debug=True)
