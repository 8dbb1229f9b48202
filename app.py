import os
from functools import wraps

import click
from werkzeug.security import generate_password_hash, check_password_hash
from flask import Flask, Response, request, session, jsonify

import catalog
import checklist
from clock import Clock, DEFAULT_TIMEZONE
from db import close_connection, execute_db, init_db, query_db
from errors import ChecklistError, Conflict, Forbidden, InvalidPayload, Unauthorized
from exports import export_report

app = Flask(__name__)
app.secret_key = os.environ.get('SECRET_KEY', 'clinic-checklist-dev-secret')
app.config['DATABASE'] = os.environ.get(
    'DATABASE', os.path.join(os.path.dirname(os.path.abspath(__file__)), 'clinic_checklist.db'))
app.config['CLINIC_NAME'] = os.environ.get('CLINIC_NAME', 'Sugar & Heart Clinic')
app.config['RESTRICT_WRITES_TO_TODAY'] = os.environ.get('RESTRICT_WRITES_TO_TODAY', '0') == '1'
app.config['CLOCK'] = Clock(os.environ.get('CHECKLIST_TIMEZONE', DEFAULT_TIMEZONE))
app.teardown_appcontext(close_connection)

ROLES = ('admin', 'staff')

# ─── Auth helpers ────────────────────────────────────────────────────────────

def current_user():
    if 'user_id' in session:
        return query_db("SELECT * FROM users WHERE id=? AND is_active=1", [session['user_id']], one=True)
    return None

def login_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        if current_user() is None:
            raise Unauthorized()
        return f(*args, **kwargs)
    return decorated

def admin_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        user = current_user()
        if user is None:
            raise Unauthorized()
        if user['role'] != 'admin':
            raise Forbidden()
        return f(*args, **kwargs)
    return decorated

def user_json(user):
    return {'id': user['id'], 'username': user['username'], 'name': user['full_name'],
            'role': user['role']}

def json_body():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise InvalidPayload('Expected a JSON object body')
    return payload

@app.errorhandler(ChecklistError)
def handle_checklist_error(exc):
    return jsonify({'success': False, 'message': exc.message}), exc.status_code

# ─── Auth ────────────────────────────────────────────────────────────────────

@app.route('/api/auth/login', methods=['POST'])
def login():
    payload = json_body()
    username = str(payload.get('username', '')).strip()
    password = str(payload.get('password', ''))
    user = query_db("SELECT * FROM users WHERE username=? AND is_active=1", [username], one=True)
    if not user or not check_password_hash(user['password_hash'], password):
        app.logger.info("Failed login for %r", username)
        raise Unauthorized('Invalid username or password.')
    session.clear()
    session['user_id'] = user['id']
    session['role'] = user['role']
    return jsonify({'success': True, 'data': {'user': user_json(user)}})

@app.route('/api/auth/logout', methods=['POST'])
def logout():
    session.clear()
    return jsonify({'success': True})

@app.route('/api/auth/me')
@login_required
def me():
    return jsonify({'success': True, 'data': {'user': user_json(current_user())}})

# ─── Checklist ───────────────────────────────────────────────────────────────

@app.route('/api/checklist')
@login_required
def get_checklist():
    rows = checklist.build_projection(request.args.get('date'), request.args.get('areaId'))
    return jsonify({'success': True, 'data': {'checklist': [row.to_dict() for row in rows]}})

@app.route('/api/checklist/statistics')
@login_required
def get_statistics():
    stats = checklist.get_statistics(request.args.get('date'), request.args.get('areaId'))
    return jsonify({'success': True, 'data': {'statistics': stats.to_dict()}})

@app.route('/api/checklist/entry/<int:task_id>', methods=['PUT'])
@login_required
def update_entry(task_id):
    payload = json_body()
    changes = checklist.validate_entry_changes(payload)
    row = checklist.upsert_entry(task_id, payload.get('date'), changes, current_user())
    return jsonify({'success': True, 'message': 'Entry updated successfully',
                    'data': {'entry': row.to_dict()}})

@app.route('/api/checklist/save', methods=['POST'])
@login_required
def save_checklist():
    payload = json_body()
    day = checklist.parse_date(payload.get('date'))
    entries = checklist.validate_bulk_entries(payload.get('entries'))
    result = checklist.bulk_save(day, entries, current_user())
    return jsonify(result.to_dict())

@app.route('/api/checklist/export/<fmt>')
@login_required
def export_checklist(fmt):
    payload = export_report(request.args.get('date'), request.args.get('areaId'), fmt, current_user())
    return Response(payload.data, mimetype=payload.content_type, headers={
        'Content-Disposition': f'attachment; filename="{payload.filename}"'})

# ─── Catalog ─────────────────────────────────────────────────────────────────

def area_json(area):
    return {'id': area['id'], 'name': area['name'], 'code': area['code'],
            'description': area['description'] or '', 'order': area['order_index']}

def task_json(task):
    return {'id': task['id'], 'code': task['code'], 'name': task['name'],
            'description': task['description'] or '', 'order': task['order_index'],
            'area': {'id': task['area_id'], 'name': task['area_name'], 'code': task['area_code']}}

@app.route('/api/areas', methods=['GET', 'POST'])
@login_required
def areas():
    if request.method == 'POST':
        if current_user()['role'] != 'admin':
            raise Forbidden()
        payload = json_body()
        area_id = catalog.create_area(payload.get('name'), payload.get('code'),
                                      payload.get('description', ''), payload.get('order', 0))
        return jsonify({'success': True, 'data': {'area': area_json(catalog.get_area(area_id))}}), 201
    return jsonify({'success': True, 'data': {'areas': [area_json(a) for a in catalog.list_areas()]}})

@app.route('/api/tasks', methods=['GET', 'POST'])
@login_required
def tasks():
    if request.method == 'POST':
        if current_user()['role'] != 'admin':
            raise Forbidden()
        payload = json_body()
        task_id = catalog.create_task(payload.get('code'), payload.get('name'), payload.get('areaId'),
                                      payload.get('description', ''), payload.get('order', 0))
        return jsonify({'success': True, 'data': {'task': task_json(catalog.get_task(task_id))}}), 201
    area_id = request.args.get('areaId')
    if area_id and catalog.get_area(area_id) is None:
        task_rows = []
    else:
        task_rows = catalog.list_active_tasks(int(area_id) if area_id else None)
    return jsonify({'success': True, 'data': {'tasks': [task_json(t) for t in task_rows]}})

@app.route('/api/tasks/<int:task_id>/deactivate', methods=['POST'])
@admin_required
def deactivate_task(task_id):
    if not catalog.deactivate_task(task_id):
        return jsonify({'success': False, 'message': 'Task not found'}), 404
    app.logger.info("Task %s deactivated by user %s", task_id, session['user_id'])
    return jsonify({'success': True})

# ─── Users ───────────────────────────────────────────────────────────────────

@app.route('/api/users', methods=['POST'])
@admin_required
def create_user():
    payload = json_body()
    username = str(payload.get('username', '')).strip()
    full_name = str(payload.get('name', '')).strip()
    password = str(payload.get('password', ''))
    role = payload.get('role', 'staff')
    if not username or not full_name or not password:
        raise InvalidPayload('All fields required.')
    if role not in ROLES:
        raise InvalidPayload('Role must be admin or staff')
    existing = query_db("SELECT id FROM users WHERE username=?", [username], one=True)
    if existing:
        raise Conflict('Username already exists.')
    user_id = execute_db(
        "INSERT INTO users (username, password_hash, full_name, role) VALUES (?,?,?,?)",
        (username, generate_password_hash(password), full_name, role)
    )
    user = query_db("SELECT * FROM users WHERE id=?", [user_id], one=True)
    return jsonify({'success': True, 'data': {'user': user_json(user)}}), 201

# ─── Main ─────────────────────────────────────────────────────────────────────

@app.cli.command('init-db')
def init_db_command():
    """Create the schema and seed users and the starter catalog."""
    init_db(app.config['DATABASE'])
    click.echo(f"Initialized {app.config['DATABASE']}")

if __name__ == '__main__':
    init_db(app.config['DATABASE'])
    port = int(os.environ.get('PORT', 5000))
    app.run(host='0.0.0.0', port=port, debug=False)
