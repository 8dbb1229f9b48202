import os
import tempfile
import unittest
from datetime import datetime

from werkzeug.security import generate_password_hash

from app import app
from clock import FixedClock
from db import connect, init_db, query_db

TODAY = '2024-01-05'


class ChecklistTestCase(unittest.TestCase):
    """Fresh SQLite file, empty catalog and a clock fixed at 10:00 on TODAY (IST)."""

    now = datetime(2024, 1, 5, 10, 0)

    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.db_path = os.path.join(tmp.name, 'checklist.db')
        init_db(self.db_path, seed=False)
        self.clock = FixedClock(self.now)
        app.config.update(TESTING=True, DATABASE=self.db_path, CLOCK=self.clock,
                          RESTRICT_WRITES_TO_TODAY=False, CLINIC_NAME='Test Clinic')
        self.client = app.test_client()
        self.admin_id = self.add_user('admin', 'Admin User', 'admin')
        self.staff_id = self.add_user('nina', 'Nina Nurse', 'staff')

    def _insert(self, sql, args):
        db = connect(self.db_path)
        try:
            cur = db.execute(sql, args)
            db.commit()
            return cur.lastrowid
        finally:
            db.close()

    def query(self, sql, args=()):
        db = connect(self.db_path)
        try:
            return db.execute(sql, args).fetchall()
        finally:
            db.close()

    def add_user(self, username, full_name, role, password='secret'):
        return self._insert(
            "INSERT INTO users (username, password_hash, full_name, role) VALUES (?,?,?,?)",
            (username, generate_password_hash(password), full_name, role))

    def add_area(self, name, code=None, order=0):
        return self._insert("INSERT INTO areas (name, code, order_index) VALUES (?,?,?)",
                            (name, code or name[:3].upper(), order))

    def add_task(self, code, area_id, name=None, order=0, active=True, description=''):
        return self._insert(
            "INSERT INTO tasks (code, name, description, area_id, order_index, is_active) VALUES (?,?,?,?,?,?)",
            (code, name or f'Task {code}', description, area_id, order, int(active)))

    def user(self, user_id):
        with app.app_context():
            return query_db("SELECT * FROM users WHERE id=?", [user_id], one=True)

    def login(self, username, password='secret'):
        resp = self.client.post('/api/auth/login', json={'username': username, 'password': password})
        self.assertEqual(resp.status_code, 200, resp.get_json())
        return resp.get_json()['data']['user']
