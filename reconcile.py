"""Client half of the daily checklist: local edits, autosave and save status.

    idle --edit--> dirty --timer/save_now--> saving --ok--> saved --3s--> idle
                     ^                          |
                     +-------edit------- error <+-- failure / validation

Timers come from a scheduler: anything with call_later(delay, callback)
returning a handle with cancel(). An asyncio event loop qualifies.
"""
import logging
import threading
from dataclasses import dataclass
from datetime import date
from typing import Optional

import requests

from errors import ChecklistReadOnly, InvalidPayload, SaveFailed, TransportError, ValidationFailed

log = logging.getLogger(__name__)

AUTOSAVE_DELAY = 1.5
SAVED_DISPLAY_DELAY = 3.0
DEFAULT_TIMEOUT = 10
STAFF_NAME_REQUIRED = 'Staff name required'

IDLE = 'idle'
DIRTY = 'dirty'
SAVING = 'saving'
SAVED = 'saved'
ERROR = 'error'


@dataclass
class EntryOverride:
    # None keeps what the server sent
    status: Optional[bool] = None
    staff_name: Optional[str] = None


@dataclass
class DisplayRow:
    task_id: int
    code: str
    name: str
    area_name: str
    status: bool
    staff_name: str
    completed_at: Optional[str]
    error: Optional[str] = None


# ─── Scheduling ─────────────────────────────────────────────────────────────

class TimerHandle:
    def __init__(self, when, callback):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """A scheduler whose time only moves through advance()."""

    def __init__(self):
        self.now = 0.0
        self._timers = []

    def call_later(self, delay, callback):
        handle = TimerHandle(self.now + delay, callback)
        self._timers.append(handle)
        return handle

    @property
    def pending(self):
        return [t for t in self._timers if not t.cancelled]

    def advance(self, seconds):
        deadline = self.now + seconds
        while True:
            due = [t for t in self.pending if t.when <= deadline]
            if not due:
                break
            timer = min(due, key=lambda t: t.when)
            self._timers.remove(timer)
            self.now = timer.when
            timer.callback()
        self.now = deadline


class ThreadingScheduler:
    """Fires callbacks on threading.Timer threads, one at a time under self.lock.

    Callers editing a session from another thread hold the same lock.
    """

    def __init__(self):
        self.lock = threading.RLock()

    def call_later(self, delay, callback):
        def fire():
            with self.lock:
                callback()
        timer = threading.Timer(delay, fire)
        timer.daemon = True
        timer.start()
        return timer


# ─── Transport ──────────────────────────────────────────────────────────────

class HttpTransport:
    """bulk_save reports back through on_done(error, projection). With an asyncio
    loop the save and the refetch that follows it run in the loop's executor.
    """

    def __init__(self, base_url, session=None, timeout=DEFAULT_TIMEOUT, loop=None):
        self.base_url = base_url.rstrip('/')
        self.session = session or requests.Session()
        self.timeout = timeout
        self.loop = loop

    def _request(self, method, path, error=TransportError, **kwargs):
        try:
            response = self.session.request(method, self.base_url + path, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            log.exception("Checklist request %s %s failed", method, path)
            raise error() from exc
        try:
            body = response.json()
        except ValueError:
            body = {'message': response.text}
        if response.status_code >= 400:
            message = body.get('message') if isinstance(body, dict) else None
            raise error(message, response.status_code)
        return body

    def login(self, username, password):
        body = self._request('POST', '/api/auth/login', json={'username': username, 'password': password})
        return body['data']['user']

    def get_projection(self, day, area_id=None):
        params = {'date': day.isoformat()}
        if area_id is not None:
            params['areaId'] = area_id
        return self._request('GET', '/api/checklist', params=params)['data']['checklist']

    def _save(self, day, entries, area_id=None):
        try:
            body = self._request('POST', '/api/checklist/save', error=SaveFailed,
                                 json={'date': day.isoformat(), 'entries': entries})
        except SaveFailed as exc:
            return exc, None
        if not body.get('success', False):
            return SaveFailed(body.get('message'), failed=body.get('failed')), None
        try:
            return None, self.get_projection(day, area_id)
        except TransportError:
            log.exception("Could not refresh checklist for %s after save", day)
            return None, None

    def _attempt(self, day, entries, area_id):
        try:
            return self._save(day, entries, area_id)
        except Exception as exc:
            log.exception("Checklist save for %s failed", day)
            return SaveFailed(str(exc) or None), None

    def bulk_save(self, day, entries, on_done, area_id=None):
        if self.loop is None:
            on_done(*self._attempt(day, entries, area_id))
            return
        future = self.loop.run_in_executor(None, self._attempt, day, entries, area_id)
        future.add_done_callback(lambda f: on_done(*f.result()))


# ─── Session ────────────────────────────────────────────────────────────────

class ChecklistSession:
    def __init__(self, transport, scheduler, clock, user, day, area_id=None,
                 autosave_delay=AUTOSAVE_DELAY, saved_display_delay=SAVED_DISPLAY_DELAY):
        self.transport = transport
        self.scheduler = scheduler
        self.clock = clock
        self.user = user
        self.day = day if isinstance(day, date) else date.fromisoformat(day)
        self.area_id = area_id
        self.autosave_delay = autosave_delay
        self.saved_display_delay = saved_display_delay

        self.state = IDLE
        self.edits = {}
        self.validation_errors = {}
        self.last_error = None
        self.baseline = []
        self._timer = None
        self._status_timer = None
        self._in_flight = None
        self._touched_while_saving = set()
        self._closed = False
        self.reload()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    @property
    def editable(self):
        return not self._closed and self.day == self.clock.today()

    @property
    def has_changes(self):
        return bool(self.edits)

    def reload(self):
        self.baseline = self.transport.get_projection(self.day, self.area_id)

    def _merged(self, item):
        entry = item.get('entry') or {}
        override = self.edits.get(item['task']['id'], EntryOverride())
        status = override.status if override.status is not None else bool(entry.get('status', False))
        staff_name = override.staff_name if override.staff_name is not None else (entry.get('staffName') or '')
        return status, staff_name

    @property
    def rows(self):
        rows = []
        for item in self.baseline:
            task = item['task']
            status, staff_name = self._merged(item)
            rows.append(DisplayRow(
                task_id=task['id'], code=task['code'], name=task['name'],
                area_name=task['area']['name'], status=status, staff_name=staff_name,
                completed_at=(item.get('entry') or {}).get('completedAt'),
                error=self.validation_errors.get(task['id']),
            ))
        return rows

    # edits

    def _require_editable(self):
        if not self.editable:
            raise ChecklistReadOnly()

    def set_status(self, task_id, status):
        """Toggle a row; switching it on fills a blank staff name with the user's name."""
        self._require_editable()
        item = self._baseline_item(task_id)
        override = self.edits.setdefault(task_id, EntryOverride())
        override.status = bool(status)
        if status and not self._merged(item)[1].strip():
            override.staff_name = self.user.get('name') or ''
        self.validation_errors.pop(task_id, None)
        self._touch(task_id)

    def set_staff_name(self, task_id, staff_name):
        self._require_editable()
        if not isinstance(staff_name, str):
            raise InvalidPayload('Staff name must be a string')
        self._baseline_item(task_id)
        override = self.edits.setdefault(task_id, EntryOverride())
        override.staff_name = staff_name
        if staff_name.strip():
            self.validation_errors.pop(task_id, None)
        self._touch(task_id)

    def _baseline_item(self, task_id):
        for item in self.baseline:
            if item['task']['id'] == task_id:
                return item
        raise KeyError(task_id)

    def _touch(self, task_id):
        if self.state == SAVING:
            # picked up by the next cycle once the current save resolves
            self._touched_while_saving.add(task_id)
            return
        self._cancel(self._status_timer)
        self._status_timer = None
        self.state = DIRTY
        self._arm()

    # timers

    @staticmethod
    def _cancel(handle):
        if handle is not None:
            handle.cancel()

    def _arm(self):
        self._cancel(self._timer)
        self._timer = self.scheduler.call_later(self.autosave_delay, self._on_timer)

    def _on_timer(self):
        self._timer = None
        self._flush()

    def _to_idle(self):
        self._status_timer = None
        if self.state == SAVED:
            self.state = IDLE

    def close(self):
        self._cancel(self._timer)
        self._cancel(self._status_timer)
        self._timer = self._status_timer = None
        self._closed = True

    # saving

    def validate(self):
        return {row.task_id: STAFF_NAME_REQUIRED
                for row in self.rows if row.status and not row.staff_name.strip()}

    def save_now(self):
        """Manual save: skip the debounce wait. Returns True if a save was sent."""
        if self._closed or self.state == SAVING:
            return False
        self._cancel(self._timer)
        self._timer = None
        return self._flush()

    def _flush(self):
        if not self.edits:
            if self.state == DIRTY:
                self.state = IDLE
            return False
        if not self.editable:
            self.state = ERROR
            self.last_error = ChecklistReadOnly()
            return False

        self.validation_errors = self.validate()
        if self.validation_errors:
            self.state = ERROR
            self.last_error = ValidationFailed(self.validation_errors)
            log.info("Checklist for %s not saved: %d rows need a staff name",
                     self.day, len(self.validation_errors))
            return False

        entries = [{'taskId': row.task_id, 'status': row.status, 'staffName': row.staff_name}
                   for row in self.rows]
        self._in_flight = entries
        self._touched_while_saving = set()
        self.last_error = None
        self.state = SAVING
        self.transport.bulk_save(self.day, entries, self._on_saved, area_id=self.area_id)
        return True

    def _on_saved(self, error=None, projection=None):
        entries, self._in_flight = self._in_flight, None
        touched, self._touched_while_saving = self._touched_while_saving, set()
        if self._closed:
            return
        if error is not None:
            log.warning("Checklist save for %s failed: %s", self.day, error)
            self.state = ERROR
            self.last_error = error
            return

        self.edits = {task_id: override
                      for task_id, override in self.edits.items() if task_id in touched}
        if projection is not None:
            self.baseline = projection
        else:
            self._apply_locally(entries)

        if self.edits:
            self.state = DIRTY
            self._arm()
        else:
            self.state = SAVED
            self._status_timer = self.scheduler.call_later(self.saved_display_delay, self._to_idle)

    def _apply_locally(self, entries):
        by_task = {entry['taskId']: entry for entry in entries}
        for item in self.baseline:
            saved = by_task.get(item['task']['id'])
            if saved is not None:
                entry = dict(item.get('entry') or {})
                entry.update(status=saved['status'], staffName=saved['staffName'])
                item['entry'] = entry
