import os
import sqlite3

from flask import current_app, g
from werkzeug.security import generate_password_hash

# ─── Connection ─────────────────────────────────────────────────────────────

def connect(path):
    db = sqlite3.connect(path)
    db.row_factory = sqlite3.Row
    db.execute("PRAGMA journal_mode=WAL")
    db.execute("PRAGMA foreign_keys=ON")
    return db

def get_db():
    db = getattr(g, '_database', None)
    if db is None:
        db = g._database = connect(current_app.config['DATABASE'])
    return db

def close_connection(exception):
    db = getattr(g, '_database', None)
    if db is not None:
        db.close()

def query_db(query, args=(), one=False):
    cur = get_db().execute(query, args)
    rv = cur.fetchall()
    return (rv[0] if rv else None) if one else rv

def execute_db(query, args=()):
    db = get_db()
    cur = db.execute(query, args)
    db.commit()
    return cur.lastrowid

# ─── Schema ─────────────────────────────────────────────────────────────────

SCHEMA = '''
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        username TEXT UNIQUE NOT NULL,
        password_hash TEXT NOT NULL,
        full_name TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'staff' CHECK (role IN ('admin', 'staff')),
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );
    CREATE TABLE IF NOT EXISTS areas (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT UNIQUE NOT NULL,
        code TEXT NOT NULL,
        description TEXT DEFAULT '',
        is_active INTEGER NOT NULL DEFAULT 1,
        order_index INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );
    CREATE TABLE IF NOT EXISTS tasks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        code TEXT UNIQUE NOT NULL,
        name TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        area_id INTEGER NOT NULL,
        is_active INTEGER NOT NULL DEFAULT 1,
        order_index INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (area_id) REFERENCES areas(id)
    );
    CREATE INDEX IF NOT EXISTS idx_tasks_area_order ON tasks (area_id, order_index);
    CREATE TABLE IF NOT EXISTS checklist_entries (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        task_id INTEGER NOT NULL,
        date TEXT NOT NULL,
        status INTEGER NOT NULL DEFAULT 0,
        staff_name TEXT NOT NULL DEFAULT '',
        completed_at TEXT,
        completed_by INTEGER,
        notes TEXT NOT NULL DEFAULT '',
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (task_id, date),
        FOREIGN KEY (task_id) REFERENCES tasks(id),
        FOREIGN KEY (completed_by) REFERENCES users(id)
    );
    CREATE INDEX IF NOT EXISTS idx_entries_date ON checklist_entries (date);
'''

def init_db(path, seed=True):
    db = connect(path)
    db.executescript(SCHEMA)
    db.commit()
    if seed:
        seed_users(db)
        seed_catalog(db)
    db.close()

def seed_users(db):
    admin = db.execute("SELECT id FROM users WHERE role='admin'").fetchone()
    if not admin:
        db.execute(
            "INSERT INTO users (username, password_hash, full_name, role) VALUES (?,?,?,?)",
            ('admin', generate_password_hash(os.environ.get('ADMIN_PASSWORD', 'ClinicAdmin1!')),
             'Admin User', 'admin')
        )
        db.execute(
            "INSERT INTO users (username, password_hash, full_name, role) VALUES (?,?,?,?)",
            ('staff', generate_password_hash(os.environ.get('STAFF_PASSWORD', 'ClinicStaff1!')),
             'Staff User', 'staff')
        )
        db.commit()

def seed_catalog(db):
    if db.execute("SELECT id FROM areas LIMIT 1").fetchone():
        return
    catalog = [
        ('Reception', 'REC', [
            ('REC-01', 'Open front desk', 'Unlock doors, switch on lights and queue display'),
            ('REC-02', 'Check appointment list', 'Print and review the day\'s appointment list'),
            ('REC-03', 'Sanitize waiting area', 'Wipe chairs, counters and door handles'),
        ]),
        ('Consultation Rooms', 'CON', [
            ('CON-01', 'Restock exam supplies', 'Gloves, tongue depressors, gauze, swabs'),
            ('CON-02', 'Calibrate BP monitors', 'Verify readings against the reference cuff'),
            ('CON-03', 'Replace examination couch rolls', 'Fresh paper roll on every couch'),
        ]),
        ('Laboratory', 'LAB', [
            ('LAB-01', 'Record fridge temperature', 'Log reagent fridge temperature (2-8 C)'),
            ('LAB-02', 'Run glucometer control test', 'Low and high control solutions'),
            ('LAB-03', 'Dispose of sharps containers', 'Seal and replace containers over 3/4 full'),
        ]),
        ('Pharmacy', 'PHA', [
            ('PHA-01', 'Check insulin stock expiry', 'Move short-dated stock to the front'),
            ('PHA-02', 'Reconcile controlled drugs register', 'Count and sign the register'),
        ]),
    ]
    for area_order, (area_name, area_code, tasks) in enumerate(catalog):
        cur = db.execute(
            "INSERT INTO areas (name, code, order_index) VALUES (?,?,?)",
            (area_name, area_code, area_order)
        )
        area_id = cur.lastrowid
        for order, (code, name, description) in enumerate(tasks):
            db.execute(
                '''INSERT INTO tasks (code, name, description, area_id, order_index)
                   VALUES (?,?,?,?,?)''',
                (code, name, description, area_id, order)
            )
    db.commit()
