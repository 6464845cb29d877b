import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))


def setup_db(tmp_path):
    import app
    app.DB_PATH = str(tmp_path / 'test.db')
    app.init_db()
    return app.app.test_client()


def test_seed_data_present(tmp_path):
    client = setup_db(tmp_path)
    classes = client.get('/api/classes').get_json()
    assert classes['total'] == 2
    assert sorted(c['code'] for c in classes['data']) == ['CST1', 'CST2']
    assert client.get('/api/subjects').get_json()['total'] == 4
    assert client.get('/api/rooms').get_json()['total'] == 3


def test_init_db_is_idempotent(tmp_path):
    import app
    setup_db(tmp_path)
    app.init_db()
    conn = app.get_db()
    assert conn.execute('SELECT COUNT(*) FROM classes').fetchone()[0] == 2
    conn.close()


def test_class_code_derivation(tmp_path):
    import app
    client = setup_db(tmp_path)
    assert app.class_code('CSE', 1, '2') == 'CSE2'
    assert app.class_code('CSE', 2, '1') == 'CSES1'
    assert app.class_code('ME', 4, '3') == 'MEF3'

    resp = client.post('/api/classes', json={
        'class_name': 'ECE', 'year': 2, 'section': '3', 'student_count': 50, 'subjects': [1, 2]})
    assert resp.status_code == 201
    data = resp.get_json()['data']
    assert data['code'] == 'ECES3'
    assert data['subjects'] == [1, 2]

    resp = client.put(f"/api/classes/{data['id']}", json={'year': 4})
    assert resp.get_json()['data']['code'] == 'ECEF3'


def test_class_validation(tmp_path):
    client = setup_db(tmp_path)
    assert client.post('/api/classes', json={'class_name': 'ECE', 'year': 5, 'section': '1'}).status_code == 400
    assert client.post('/api/classes', json={'class_name': 'ECE', 'year': 1, 'section': '5'}).status_code == 400
    resp = client.post('/api/classes', json={'class_name': 'CSE', 'year': 3, 'section': '1'})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'code already exists'


def test_pagination_and_search(tmp_path):
    client = setup_db(tmp_path)
    for n in range(12):
        resp = client.post('/api/rooms', json={'code': f'X{n:02d}', 'type': 'class', 'capacity': 30})
        assert resp.status_code == 201
    page = client.get('/api/rooms?page=2&limit=5').get_json()
    assert page['total'] == 15
    assert page['totalPages'] == 3
    assert page['page'] == 2
    assert len(page['data']) == 5
    assert client.get('/api/rooms?search=X1').get_json()['total'] == 2
    assert client.get('/api/rooms?limit=0').status_code == 400


def test_room_type_must_be_known(tmp_path):
    client = setup_db(tmp_path)
    resp = client.post('/api/rooms', json={'code': 'Z1', 'type': 'hall', 'capacity': 10})
    assert resp.status_code == 400


def test_teacher_and_lab_lists_round_trip(tmp_path):
    client = setup_db(tmp_path)
    teacher = client.post('/api/teachers', json={'name': 'New Teacher', 'short_abbr': 'NT', 'subjects': [1]})
    assert teacher.status_code == 201
    assert teacher.get_json()['data']['subjects'] == [1]
    lab = client.post('/api/labs', json={'name': 'Network Lab', 'short_name': 'NL', 'code': 'LAB-NL',
                                         'capacity': 30, 'rooms': '[3]'})
    assert lab.status_code == 201
    assert lab.get_json()['data']['rooms'] == [3]


def test_subject_crud(tmp_path):
    client = setup_db(tmp_path)
    resp = client.post('/api/subjects', json={'full_name': 'Compilers', 'short_name': 'CD', 'code': 'CS401'})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'weekly_frequency is required'

    resp = client.post('/api/subjects', json={'full_name': 'Compilers', 'short_name': 'CD',
                                              'code': 'CS401', 'weekly_frequency': 3})
    subject = resp.get_json()['data']
    resp = client.put(f"/api/subjects/{subject['id']}", json={'weekly_frequency': 4})
    assert resp.get_json()['data']['weekly_frequency'] == 4
    assert client.delete(f"/api/subjects/{subject['id']}").status_code == 200
    assert client.get(f"/api/subjects/{subject['id']}").status_code == 404


def test_delete_class_removes_its_sessions(tmp_path):
    import app
    client = setup_db(tmp_path)
    conn = app.get_db()
    class_id = conn.execute("SELECT id FROM classes WHERE code='CST2'").fetchone()[0]
    conn.execute(
        "INSERT INTO schedules (class_id, type, day_of_week, start_time, end_time) "
        "VALUES (?, 'LECTURE', 'MON', '09:45', '10:35')",
        (class_id,),
    )
    conn.commit()
    conn.close()
    assert client.delete(f'/api/classes/{class_id}').status_code == 200
    conn = app.get_db()
    assert conn.execute('SELECT COUNT(*) FROM schedules WHERE class_id=?', (class_id,)).fetchone()[0] == 0
    conn.close()


def test_class_subjects_and_faculty_assignments(tmp_path):
    import app
    client = setup_db(tmp_path)
    conn = app.get_db()
    class_id = conn.execute("SELECT id FROM classes WHERE code='CST1'").fetchone()[0]
    ds_id = conn.execute("SELECT id FROM subjects WHERE short_name='DS'").fetchone()[0]
    for teacher_code, day in [('T001', 'MON'), ('T003', 'TUE'), ('T001', 'WED')]:
        teacher_id = conn.execute('SELECT id FROM teachers WHERE code=?', (teacher_code,)).fetchone()[0]
        conn.execute(
            "INSERT INTO schedules (class_id, subject_id, teacher_id, type, day_of_week, start_time, end_time) "
            "VALUES (?, ?, ?, 'LECTURE', ?, '09:45', '10:35')",
            (class_id, ds_id, teacher_id, day),
        )
    conn.commit()
    conn.close()

    subjects = client.get(f'/api/classes/{class_id}/subjects').get_json()['data']
    assert len(subjects) == 4

    assignments = client.get(f'/api/classes/{class_id}/faculty-assignments').get_json()['data']
    assert assignments == [{
        'classId': class_id,
        'subjectCode': 'CS301',
        'subjectName': 'Data Structures',
        'coordinatorName': 'Anita Sharma',
        'facultyName': 'Anita Sharma, Priya Nair',
    }]
    assert client.get('/api/classes/999/faculty-assignments').status_code == 404


def test_config_round_trip(tmp_path):
    client = setup_db(tmp_path)
    data = client.get('/config').get_json()['data']
    assert data == {'institute_name': 'IPS Academy Timetable Management', 'slot_tolerance': 5}
    resp = client.post('/config', json={'institute_name': 'Test Institute', 'slot_tolerance': 10})
    assert resp.get_json()['data'] == {'institute_name': 'Test Institute', 'slot_tolerance': 10}
    assert client.post('/config', json={'slot_tolerance': 40}).status_code == 400


def test_reset_db_restores_sample_data(tmp_path):
    client = setup_db(tmp_path)
    client.post('/api/rooms', json={'code': 'Z1', 'type': 'class', 'capacity': 10})
    assert client.post('/reset_db').status_code == 200
    assert client.get('/api/rooms').get_json()['total'] == 3


def test_unknown_route_returns_json_error(tmp_path):
    client = setup_db(tmp_path)
    resp = client.get('/api/nothing-here')
    assert resp.status_code == 404
    assert resp.get_json()['success'] is False


def test_delete_missing_class_keeps_sessions(tmp_path):
    import app
    client = setup_db(tmp_path)
    conn = app.get_db()
    conn.execute(
        "INSERT INTO schedules (class_id, type, day_of_week, start_time, end_time) "
        "VALUES (999, 'LECTURE', 'MON', '09:45', '10:35')"
    )
    conn.commit()
    conn.close()
    assert client.delete('/api/classes/999').status_code == 404
    conn = app.get_db()
    assert conn.execute('SELECT COUNT(*) FROM schedules WHERE class_id=999').fetchone()[0] == 1
    conn.close()
