"""Task catalog: areas and the recurring tasks bound to them.

The checklist engine only reads from here (list_active_tasks, get_area,
get_task). The write helpers back the small admin surface in app.py.
"""
import sqlite3

from db import execute_db, query_db
from errors import Conflict, InvalidPayload

TASK_COLUMNS = '''t.id, t.code, t.name, t.description, t.order_index,
                  a.id AS area_id, a.name AS area_name, a.code AS area_code'''


def _as_id(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return None

def list_active_tasks(area_id=None):
    q = f"SELECT {TASK_COLUMNS} FROM tasks t JOIN areas a ON a.id=t.area_id WHERE t.is_active=1 AND a.is_active=1"
    args = []
    if area_id is not None:
        q += " AND t.area_id=?"; args.append(area_id)
    q += " ORDER BY a.order_index, a.id, t.order_index, t.code"
    return query_db(q, args)

def get_area(area_id):
    area_id = _as_id(area_id)
    if area_id is None:
        return None
    return query_db("SELECT * FROM areas WHERE id=?", [area_id], one=True)

def get_task(task_id):
    task_id = _as_id(task_id)
    if task_id is None:
        return None
    return query_db(
        f"SELECT {TASK_COLUMNS}, t.is_active FROM tasks t JOIN areas a ON a.id=t.area_id WHERE t.id=?",
        [task_id], one=True)

def list_areas(active_only=True):
    q = "SELECT * FROM areas"
    if active_only:
        q += " WHERE is_active=1"
    return query_db(q + " ORDER BY order_index, id")

def create_area(name, code, description='', order_index=0):
    name = (name or '').strip()
    code = (code or '').strip().upper()
    if not name or not code:
        raise InvalidPayload('Area name and code are required')
    try:
        return execute_db(
            "INSERT INTO areas (name, code, description, order_index) VALUES (?,?,?,?)",
            (name, code, description or '', order_index)
        )
    except sqlite3.IntegrityError as exc:
        raise Conflict(f'Area "{name}" already exists') from exc

def create_task(code, name, area_id, description='', order_index=0):
    code = (code or '').strip()
    name = (name or '').strip()
    if not code or not name:
        raise InvalidPayload('Task ID and name are required')
    if len(code) > 20:
        raise InvalidPayload('Task ID cannot exceed 20 characters')
    area = get_area(area_id)
    if area is None:
        raise InvalidPayload('Area not found')
    try:
        return execute_db(
            '''INSERT INTO tasks (code, name, description, area_id, order_index)
               VALUES (?,?,?,?,?)''',
            (code, name, description or '', area['id'], order_index)
        )
    except sqlite3.IntegrityError as exc:
        raise Conflict(f'Task ID "{code}" already exists') from exc

def deactivate_task(task_id):
    """Soft delete: facts keep pointing at the row, projections stop showing it."""
    task = get_task(task_id)
    if task is None:
        return False
    execute_db("UPDATE tasks SET is_active=0, updated_at=CURRENT_TIMESTAMP WHERE id=?", [task['id']])
    return True
