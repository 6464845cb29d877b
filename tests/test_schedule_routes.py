import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))


def setup_db(tmp_path):
    import app
    app.DB_PATH = str(tmp_path / 'test.db')
    app.init_db()
    conn = app.get_db()
    ids = {
        'cst1': conn.execute("SELECT id FROM classes WHERE code='CST1'").fetchone()[0],
        'cst2': conn.execute("SELECT id FROM classes WHERE code='CST2'").fetchone()[0],
        'ds': conn.execute("SELECT id FROM subjects WHERE short_name='DS'").fetchone()[0],
        'os': conn.execute("SELECT id FROM subjects WHERE short_name='OS'").fetchone()[0],
        'math': conn.execute("SELECT id FROM subjects WHERE short_name='MATH'").fetchone()[0],
        'anita': conn.execute("SELECT id FROM teachers WHERE code='T001'").fetchone()[0],
        'rahul': conn.execute("SELECT id FROM teachers WHERE code='T002'").fetchone()[0],
        'priya': conn.execute("SELECT id FROM teachers WHERE code='T003'").fetchone()[0],
        'r101': conn.execute("SELECT id FROM rooms WHERE code='R101'").fetchone()[0],
        'r102': conn.execute("SELECT id FROM rooms WHERE code='R102'").fetchone()[0],
        'lab': conn.execute("SELECT id FROM labs WHERE code='LAB-PL'").fetchone()[0],
    }
    conn.close()
    return app.app.test_client(), ids


def lecture(ids, **overrides):
    payload = {
        'classId': ids['cst1'],
        'subjectId': ids['ds'],
        'teacherId': ids['anita'],
        'room': ids['r101'],
        'roomModel': 'Room',
        'type': 'LECTURE',
        'day': 'MON',
        'startTime': '09:45',
        'endTime': '10:35',
    }
    payload.update(overrides)
    return payload


def test_create_schedule_returns_joined_row(tmp_path):
    client, ids = setup_db(tmp_path)
    resp = client.post('/api/schedules', json=lecture(ids))
    assert resp.status_code == 201
    data = resp.get_json()['data']
    assert data['start_time'] == '09:45'
    assert data['end_time'] == '10:35'
    assert data['subject_code'] == 'CS301'
    assert data['teacher_abbr'] == 'AS'
    assert data['room_code'] == 'R101'
    assert data['roomModel'] == 'Room'


def test_iso_timestamps_keep_only_time_of_day(tmp_path):
    client, ids = setup_db(tmp_path)
    resp = client.post('/api/schedules', json=lecture(
        ids, startTime='2024-06-03T14:30:00.000Z', endTime='2024-06-03T15:20:00.000Z'))
    assert resp.status_code == 201
    assert resp.get_json()['data']['start_time'] == '14:30'


def test_overlapping_class_session_is_rejected(tmp_path):
    client, ids = setup_db(tmp_path)
    first = client.post('/api/schedules', json=lecture(ids)).get_json()['data']
    resp = client.post('/api/schedules', json=lecture(
        ids, subjectId=ids['math'], teacherId=ids['rahul'], room=ids['r102'], startTime='10:00', endTime='10:50'))
    assert resp.status_code == 409
    body = resp.get_json()
    assert body['success'] is False
    assert body['conflict']['type'] == 'STUDENT_OVERLAP'
    assert body['conflict']['conflict_id'] == str(first['id'])
    assert body['error'] == 'Class already has a session at this time'


def test_adjacent_session_is_accepted(tmp_path):
    client, ids = setup_db(tmp_path)
    assert client.post('/api/schedules', json=lecture(ids)).status_code == 201
    resp = client.post('/api/schedules', json=lecture(ids, startTime='10:35', endTime='11:25'))
    assert resp.status_code == 201


def test_teacher_and_room_conflicts_across_classes(tmp_path):
    client, ids = setup_db(tmp_path)
    assert client.post('/api/schedules', json=lecture(ids)).status_code == 201

    resp = client.post('/api/schedules', json=lecture(ids, classId=ids['cst2'], room=ids['r102']))
    assert resp.status_code == 409
    assert resp.get_json()['conflict']['type'] == 'TEACHER_CONFLICT'

    resp = client.post('/api/schedules', json=lecture(
        ids, classId=ids['cst2'], subjectId=ids['math'], teacherId=ids['rahul']))
    assert resp.status_code == 409
    assert resp.get_json()['conflict']['type'] == 'ROOM_CONFLICT'


def test_lunch_and_capacity_rules(tmp_path):
    client, ids = setup_db(tmp_path)
    resp = client.post('/api/schedules', json=lecture(ids, startTime='12:30', endTime='13:30'))
    assert resp.status_code == 409
    assert resp.get_json()['conflict']['type'] == 'BREAK_VIOLATION'

    # CST1 has 60 students; R102 seats 40
    resp = client.post('/api/schedules', json=lecture(ids, room=ids['r102']))
    assert resp.status_code == 409
    conflict = resp.get_json()['conflict']
    assert conflict['type'] == 'CAPACITY_EXCEEDED'
    assert conflict['message'] == 'Room capacity (40) is less than class size (60)'


def test_weekly_frequency_and_update_excludes_self(tmp_path):
    client, ids = setup_db(tmp_path)
    os_lecture = dict(subjectId=ids['os'])
    first = client.post('/api/schedules', json=lecture(ids, **os_lecture)).get_json()['data']
    assert client.post('/api/schedules', json=lecture(ids, day='TUE', **os_lecture)).status_code == 201

    resp = client.post('/api/schedules', json=lecture(ids, day='WED', **os_lecture))
    assert resp.status_code == 409
    assert resp.get_json()['conflict']['type'] == 'WEEKLY_FREQUENCY_EXCEEDED'

    resp = client.put(f"/api/schedules/{first['id']}", json={'day': 'WED'})
    assert resp.status_code == 200
    assert resp.get_json()['data']['day_of_week'] == 'WED'


def test_lab_end_time_is_derived(tmp_path):
    client, ids = setup_db(tmp_path)
    resp = client.post('/api/schedules', json={
        'classId': ids['cst1'],
        'type': 'LAB',
        'room': ids['lab'],
        'roomModel': 'Lab',
        'day': 'THU',
        'startTime': '13:40',
        'endTime': '14:30',
    })
    assert resp.status_code == 201
    data = resp.get_json()['data']
    assert data['end_time'] == '15:20'
    assert data['duration_slots'] == 2
    assert data['lab_name'] == 'Programming Lab'


def test_lab_requires_room(tmp_path):
    client, ids = setup_db(tmp_path)
    resp = client.post('/api/schedules', json={
        'classId': ids['cst1'], 'type': 'LAB', 'day': 'THU', 'startTime': '13:40'})
    assert resp.status_code == 400


def test_teacher_subject_eligibility(tmp_path):
    client, ids = setup_db(tmp_path)
    resp = client.post('/api/schedules', json=lecture(ids, teacherId=ids['rahul']))
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'Teacher not allowed to teach this subject'
    resp = client.post('/api/schedules', json=lecture(ids, teacherId=999))
    assert resp.get_json()['error'] == 'Teacher not found'


def test_bad_time_and_day_are_client_errors(tmp_path):
    client, ids = setup_db(tmp_path)
    assert client.post('/api/schedules', json=lecture(ids, startTime='noon')).status_code == 400
    assert client.post('/api/schedules', json=lecture(ids, day='SUN')).status_code == 400
    assert client.post('/api/schedules', json=lecture(ids, type='SEMINAR')).status_code == 400


def test_validate_endpoint_does_not_write(tmp_path):
    client, ids = setup_db(tmp_path)
    resp = client.post('/api/schedules/validate', json=lecture(ids))
    assert resp.status_code == 200
    assert resp.get_json()['conflict'] is None
    assert client.get('/api/schedules').get_json()['total'] == 0


def test_list_get_and_delete(tmp_path):
    client, ids = setup_db(tmp_path)
    client.post('/api/schedules', json=lecture(ids, day='TUE'))
    created = client.post('/api/schedules', json=lecture(ids)).get_json()['data']

    listed = client.get(f"/api/schedules?class={ids['cst1']}").get_json()
    assert listed['total'] == 2
    assert [s['day_of_week'] for s in listed['data']] == ['MON', 'TUE']
    assert client.get('/api/schedules?search=tue').get_json()['total'] == 1

    by_class = client.get(f"/api/schedules/class/{ids['cst1']}").get_json()['data']
    assert len(by_class) == 2

    assert client.get(f"/api/schedules/{created['id']}").status_code == 200
    assert client.delete(f"/api/schedules/{created['id']}").status_code == 200
    assert client.get(f"/api/schedules/{created['id']}").status_code == 404
    assert client.delete(f"/api/schedules/{created['id']}").status_code == 404


def test_timetable_grid_endpoint(tmp_path):
    client, ids = setup_db(tmp_path)
    client.post('/api/schedules', json=lecture(ids))
    client.post('/api/schedules', json={
        'classId': ids['cst1'], 'type': 'LAB', 'room': ids['lab'], 'day': 'MON', 'startTime': '13:40'})
    data = client.get(f"/api/timetable/{ids['cst1']}").get_json()['data']
    monday = data['timetable']['MON']
    assert monday['09:45']['subject'] == 'DS'
    assert monday['13:40']['subject'] == 'Programming Lab'
    assert monday['14:30']['is_lab_continuation'] is True
    assert monday['BREAK'] == {'kind': 'BREAK'}
    assert len(data['slots']) == 9

    assert client.get('/api/timetable/999').status_code == 404


def test_session_for_unknown_class_is_rejected(tmp_path):
    client, ids = setup_db(tmp_path)
    payload = lecture(ids, classId=999)
    del payload['room']
    del payload['roomModel']
    resp = client.post('/api/schedules', json=payload)
    assert resp.status_code == 409
    body = resp.get_json()
    assert body['conflict']['type'] == 'INVALID_DATA'
    assert body['error'] == 'Class not found'
    assert client.get('/api/schedules').get_json()['total'] == 0
    assert client.get('/api/dashboard/stats').get_json()['data']['sessions'] == 0
