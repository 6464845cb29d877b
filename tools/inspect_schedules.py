import os
import sys

BASE_DIR = os.path.dirname(os.path.dirname(__file__))
sys.path.insert(0, BASE_DIR)

import app
from scheduling.conflicts import ConflictEngine
from scheduling.grid import GridMaterializer
from scheduling.store import SqliteScheduleStore

# Re-run validation for every committed session (excluding itself) and list
# the sessions the grid cannot place.  Rows written before a rule existed, or
# edited directly in the database, show up here.

conn = app.get_db()
store = SqliteScheduleStore(conn)
engine = ConflictEngine(store)
tolerance = app.get_config()['slot_tolerance']

print('DB:', app.DB_PATH)
total = conn.execute('SELECT COUNT(*) AS c FROM schedules').fetchone()['c']
print('Total sessions:', total)

invalid = 0
for r in conn.execute('SELECT id, class_id FROM schedules ORDER BY id').fetchall():
    session = next(
        s for s in store.sessions_for_class(r['class_id']) if s.id == r['id']
    )
    conflict = engine.validate(session, exclude_id=session.id)
    if conflict is not None:
        invalid += 1
        print(f"  session {session.id}: {conflict.kind.value} {conflict.message}"
              + (f" (with {conflict.conflict_id})" if conflict.conflict_id else ''))
print('Sessions violating a rule:', invalid)

materializer = GridMaterializer(store)
for c in conn.execute('SELECT id, code FROM classes ORDER BY id').fetchall():
    grid = materializer.build(c['id'], tolerance=tolerance)
    if grid.skipped or grid.truncated:
        print(f"Class {c['code']}: skipped {grid.skipped}, lab without continuation {grid.truncated}")

conn.close()
