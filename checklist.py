"""Daily checklist: projection, upserts and statistics over checklist_entries."""
import sqlite3
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional

from flask import current_app

from catalog import get_area, get_task, list_active_tasks
from db import execute_db, get_db, query_db
from errors import InvalidDate, InvalidPayload, SaveFailed, UnknownTask, WriteWindowClosed

STAFF_NAME_MAX = 100
NOTES_MAX = 500


@dataclass
class Entry:
    status: bool = False
    staff_name: str = ''
    completed_at: Optional[str] = None
    completed_by: Optional[int] = None
    notes: str = ''

    @classmethod
    def from_row(cls, row):
        if row is None:
            return cls()
        return cls(status=bool(row['status']), staff_name=row['staff_name'] or '',
                   completed_at=row['completed_at'], completed_by=row['completed_by'],
                   notes=row['notes'] or '')

    def to_dict(self):
        return {'status': self.status, 'staffName': self.staff_name,
                'completedAt': self.completed_at, 'completedBy': self.completed_by,
                'notes': self.notes}


@dataclass
class ProjectionRow:
    task_id: int
    code: str
    name: str
    description: str
    area_id: int
    area_name: str
    area_code: str
    entry: Entry = field(default_factory=Entry)

    def to_dict(self):
        return {
            'task': {
                'id': self.task_id, 'code': self.code, 'name': self.name,
                'description': self.description,
                'area': {'id': self.area_id, 'name': self.area_name, 'code': self.area_code},
            },
            'entry': self.entry.to_dict(),
        }


@dataclass
class Statistics:
    total: int
    completed: int
    pending: int
    completion_rate: int

    def to_dict(self):
        return {'total': self.total, 'completed': self.completed,
                'pending': self.pending, 'completionRate': self.completion_rate}


@dataclass
class BulkSaveResult:
    saved: List[int] = field(default_factory=list)
    failed: List[dict] = field(default_factory=list)

    @property
    def ok(self):
        return not self.failed

    def to_dict(self):
        return {
            'success': self.ok,
            'message': 'Checklist saved successfully' if self.ok else 'Checklist partially saved',
            'saved': len(self.saved),
            'failed': self.failed,
        }


# ─── Dates ──────────────────────────────────────────────────────────────────

def _clock():
    return current_app.config['CLOCK']

def parse_date(value, tz=None):
    # aware datetimes are moved into the reference timezone first
    tz = tz or _clock().tz
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        return value
    else:
        text = str(value or '').strip()
        if not text:
            raise InvalidDate('Date is required')
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise InvalidDate() from exc
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(tz)
    return parsed.date()

def timestamp(moment):
    return moment.isoformat(timespec='seconds')

def _check_write_window(day):
    if current_app.config.get('RESTRICT_WRITES_TO_TODAY') and day != _clock().today():
        raise WriteWindowClosed()

# ─── Projection ─────────────────────────────────────────────────────────────

def _project(task, fact):
    return ProjectionRow(
        task_id=task['id'], code=task['code'], name=task['name'],
        description=task['description'] or '', area_id=task['area_id'],
        area_name=task['area_name'], area_code=task['area_code'],
        entry=Entry.from_row(fact),
    )

def build_projection(value, area_id=None):
    """One row per active task in scope, ordered by area, task order, task code."""
    day = parse_date(value)
    if area_id not in (None, ''):
        area = get_area(area_id)
        if area is None:
            return []
        area_id = area['id']
    else:
        area_id = None
    tasks = list_active_tasks(area_id)
    facts = {
        row['task_id']: row
        for row in query_db("SELECT * FROM checklist_entries WHERE date=?", [day.isoformat()])
    }
    return [_project(task, facts.get(task['id'])) for task in tasks]

def compute_statistics(rows):
    total = len(rows)
    completed = sum(1 for row in rows if row.entry.status)
    # round half up, integer-exact
    rate = (200 * completed + total) // (2 * total) if total else 0
    return Statistics(total=total, completed=completed, pending=total - completed,
                      completion_rate=rate)

def get_statistics(value, area_id=None):
    return compute_statistics(build_projection(value, area_id))

# ─── Payload validation ─────────────────────────────────────────────────────

def _check_text(payload, key, limit, label):
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidPayload(f'{label} must be a string')
    if len(value) > limit:
        raise InvalidPayload(f'{label} cannot exceed {limit} characters')
    return value

def validate_entry_changes(payload):
    if not isinstance(payload, dict):
        raise InvalidPayload('Expected a JSON object body')
    changes = {}
    if payload.get('status') is not None:
        if not isinstance(payload['status'], bool):
            raise InvalidPayload('Status must be a boolean')
        changes['status'] = payload['status']
    staff_name = _check_text(payload, 'staffName', STAFF_NAME_MAX, 'Staff name')
    if staff_name is not None:
        changes['staffName'] = staff_name
    notes = _check_text(payload, 'notes', NOTES_MAX, 'Notes')
    if notes is not None:
        changes['notes'] = notes
    return changes

def validate_bulk_entries(entries):
    if not isinstance(entries, list):
        raise InvalidPayload('Entries must be an array')
    cleaned = []
    for item in entries:
        if not isinstance(item, dict):
            raise InvalidPayload('Each entry must be an object')
        task_id = item.get('taskId')
        if isinstance(task_id, bool) or not isinstance(task_id, int):
            raise InvalidPayload('Invalid task ID in entries')
        if not isinstance(item.get('status'), bool):
            raise InvalidPayload('Status must be a boolean')
        staff_name = _check_text(item, 'staffName', STAFF_NAME_MAX, 'Staff name')
        cleaned.append({'taskId': task_id, 'status': item['status'],
                        'staffName': staff_name or ''})
    return cleaned

# ─── Upserts ────────────────────────────────────────────────────────────────

def _fact(task_id, day):
    return query_db("SELECT * FROM checklist_entries WHERE task_id=? AND date=?",
                    [task_id, day.isoformat()], one=True)

def upsert_entry(task_id, value, changes, user):
    """Create or update the fact for (task, day); status=True stamps completed_at."""
    day = parse_date(value)
    task = get_task(task_id)
    if task is None:
        raise UnknownTask()
    _check_write_window(day)

    now = timestamp(_clock().now())
    columns = {'completed_by': user['id'], 'updated_at': now}
    if changes.get('status') is not None:
        columns['status'] = int(changes['status'])
        columns['completed_at'] = now if changes['status'] else None
    if changes.get('staffName') is not None:
        columns['staff_name'] = changes['staffName']
    if changes.get('notes') is not None:
        columns['notes'] = changes['notes']

    names = ['task_id', 'date'] + list(columns)
    sql = (f"INSERT INTO checklist_entries ({', '.join(names)}) "
           f"VALUES ({', '.join('?' for _ in names)}) "
           f"ON CONFLICT(task_id, date) DO UPDATE SET "
           + ', '.join(f'{name}=excluded.{name}' for name in columns))
    try:
        execute_db(sql, [task['id'], day.isoformat()] + list(columns.values()))
    except sqlite3.Error as exc:
        current_app.logger.exception("Upsert failed for task %s on %s", task['id'], day)
        raise SaveFailed('Failed to update entry') from exc
    return _project(task, _fact(task['id'], day))

BULK_UPSERT = '''
    INSERT INTO checklist_entries (task_id, date, status, staff_name, completed_at, completed_by, updated_at)
    VALUES (?,?,?,?,?,?,?)
    ON CONFLICT(task_id, date) DO UPDATE SET
        status=excluded.status,
        staff_name=excluded.staff_name,
        completed_at=excluded.completed_at,
        completed_by=excluded.completed_by,
        updated_at=excluded.updated_at
'''

def bulk_save(value, entries, user):
    # one upsert and one commit per entry; a failed entry does not undo the others
    day = parse_date(value)
    _check_write_window(day)
    now = timestamp(_clock().now())
    db = get_db()
    result = BulkSaveResult()
    for entry in entries:
        params = (entry['taskId'], day.isoformat(), int(entry['status']), entry.get('staffName') or '',
                  now if entry['status'] else None, user['id'], now)
        try:
            db.execute(BULK_UPSERT, params)
            db.commit()
        except sqlite3.Error as exc:
            db.rollback()
            current_app.logger.warning("Bulk save skipped task %s on %s: %s", entry['taskId'], day, exc)
            result.failed.append({'taskId': entry['taskId'], 'error': str(exc)})
        else:
            result.saved.append(entry['taskId'])
    current_app.logger.info("Checklist for %s saved by user %s: %d saved, %d failed",
                            day, user['id'], len(result.saved), len(result.failed))
    return result
