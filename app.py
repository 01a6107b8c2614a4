import base64
import binascii
import datetime
import io
import json
import logging

from flask import Blueprint, Flask, current_app, jsonify, request, send_file
from flask_cors import CORS
from flask_login import LoginManager, current_user, login_required, login_user, logout_user
from werkzeug.exceptions import HTTPException

import ai_bridge
import backup
import posters
from config import Config
from models import COMPLAINT_STATUSES, SessionUser
from store import CampusStore, DuplicateUserError, KeyValueStore
from validation import ValidationError, validate_event_form, validate_registration
from visibility import (
    allowed_filters,
    can_edit_complaint,
    can_edit_event,
    can_manage_events,
    can_manage_permissions,
    can_modify_task,
    can_view_registrations,
    is_admin,
    search_events,
    search_permissions,
    visible_complaints,
    visible_events,
    visible_feedback,
    visible_permissions,
    visible_tasks,
)

api = Blueprint('api', __name__)
login_manager = LoginManager()

EVENT_FIELDS = (
    'title', 'clubName', 'description', 'registrationLink', 'attendanceInfo', 'startDate', 'endDate',
    'status', 'registrationFee', 'attendanceAllowed', 'attendanceTiming', 'duration', 'visibility',
)


def create_app(config=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if config:
        app.config.update(config)

    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    CORS(app, origins=app.config['CORS_ORIGINS'], supports_credentials=True)

    records = KeyValueStore(f"sqlite:///{app.config['CAMPUS_DB_PATH']}")
    store = CampusStore(records)
    store.normalize_tasks()
    app.extensions['campus_store'] = store

    login_manager.init_app(app)
    app.register_blueprint(api)
    app.register_error_handler(Exception, handle_unexpected_error)
    return app


def get_store():
    return current_app.extensions['campus_store']


@login_manager.user_loader
def load_user(user_id):
    store = get_store()
    user = store.load_session_user(user_id)
    return SessionUser(user, store.session_generation()) if user else None


@login_manager.unauthorized_handler
def unauthorized():
    return fail('Please log in first', 401)


def handle_unexpected_error(e):
    if isinstance(e, HTTPException):
        return jsonify({'ok': False, 'msg': e.description}), e.code
    current_app.logger.exception('Unhandled error on %s %s', request.method, request.path)
    return jsonify({'ok': False, 'msg': 'Internal server error'}), 500


def fail(msg, status=400):
    return jsonify({'ok': False, 'msg': msg}), status


def sign_in(user):
    login_user(SessionUser(user, get_store().session_generation()))
    return user


@api.route('/health', methods=['GET'])
def health():
    return jsonify({'ok': True})


# Auth

@api.route('/auth/register', methods=['POST'])
def register():
    data = request.get_json(silent=True) or {}
    store = get_store()
    try:
        form = validate_registration(
            data.get('name'), data.get('usn'), data.get('email'), data.get('password'), data.get('role'))
        user = store.create_user(form['email'], form['password'], form['role'],
                                 {'name': form['name'], 'usn': form['usn'], 'email': form['email']})
    except (ValidationError, DuplicateUserError) as e:
        return fail(str(e))
    return jsonify({'ok': True, 'msg': 'Account created', 'user': sign_in(user)})


@api.route('/auth/login', methods=['POST'])
def login():
    data = request.get_json(silent=True) or {}
    usn = str(data.get('usn') or '').strip().upper()
    password = str(data.get('password') or '')
    if not usn or not password:
        return fail('Please enter both USN and password.')
    user = get_store().authenticate_user(usn, password)
    if not user:
        return fail('Invalid USN or password.', 401)
    return jsonify({'ok': True, 'user': sign_in(user)})


@api.route('/auth/logout', methods=['POST'])
def logout():
    logout_user()
    return jsonify({'ok': True})


@api.route('/auth/session', methods=['GET'])
def session_info():
    user = dict(current_user) if current_user.is_authenticated else None
    return jsonify({'ok': True, 'user': user})


# Tasks

def _task_response(task):
    return {**task, 'editable': can_modify_task(task, current_user)}


@api.route('/tasks', methods=['GET'])
@login_required
def list_tasks():
    store = get_store()
    tasks = visible_tasks(
        store.get_all_tasks(),
        current_user,
        request.args.get('filter', 'all'),
        request.args.get('q', ''),
        request.args.get('sort', 'newest'),
        store.admin_usernames(),
    )
    return jsonify({
        'ok': True,
        'tasks': [_task_response(t) for t in tasks],
        'filters': list(allowed_filters(current_user)),
    })


@api.route('/tasks', methods=['POST'])
@login_required
def add_task():
    data = request.get_json(silent=True) or {}
    text = str(data.get('text') or '').strip()
    if not text:
        return fail('Cannot save an empty value.')
    visibility = 'admin' if is_admin(current_user) and data.get('visibility') == 'admin' else 'public'
    task = get_store().add_task(text, current_user['username'], visibility)
    return jsonify({'ok': True, 'task': _task_response(task)})


@api.route('/tasks/<task_id>', methods=['PATCH'])
@login_required
def update_task(task_id):
    store = get_store()
    task = store.get_task(task_id)
    if not task:
        return fail('Task not found', 404)
    if not can_modify_task(task, current_user):
        return fail('You cannot modify this task', 403)

    data = request.get_json(silent=True) or {}
    changes = {}
    if 'text' in data:
        text = str(data.get('text') or '').strip()
        if not text:
            return fail('Cannot save an empty value.')
        changes['text'] = text
    if 'status' in data:
        changes['status'] = data['status']
    # Only admins choose visibility; everyone else's edits stay public.
    if is_admin(current_user):
        if 'visibility' in data:
            changes['visibility'] = data['visibility']
    elif 'text' in data:
        changes['visibility'] = 'public'

    updated = store.update_task(task_id, changes)
    return jsonify({'ok': True, 'task': _task_response(updated)})


@api.route('/tasks/<task_id>', methods=['DELETE'])
@login_required
def delete_task(task_id):
    store = get_store()
    task = store.get_task(task_id)
    if not task:
        return fail('Task not found', 404)
    if not can_modify_task(task, current_user):
        return fail('You cannot modify this task', 403)
    store.remove_task(task_id)
    return jsonify({'ok': True, 'msg': 'Task deleted'})


# Events

def _event_payload(data):
    payload = {field: data[field] for field in EVENT_FIELDS if field in data}
    if 'image' in data:
        payload['image'] = posters.normalize_poster(data.get('image'), current_app.config['POSTER_MAX_SIZE'])
    if not is_admin(current_user):
        payload.pop('visibility', None)
    return payload


def _event_response(event):
    return {**event, 'editable': can_edit_event(event, current_user)}


def _find_visible_event(event_id):
    event = get_store().get_event(event_id)
    if not event or event not in visible_events([event], current_user):
        return None
    return event


@api.route('/events', methods=['GET'])
@login_required
def list_events():
    events = visible_events(get_store().get_events(), current_user)
    events = search_events(events, request.args.get('q', ''))
    return jsonify({'ok': True, 'events': [_event_response(e) for e in events]})


@api.route('/events', methods=['POST'])
@login_required
def add_event():
    if not can_manage_events(current_user):
        return fail('You do not have permission to perform this action.', 403)
    data = request.get_json(silent=True) or {}
    try:
        validate_event_form(data)
        payload = _event_payload(data)
    except (ValidationError, posters.InvalidPosterError) as e:
        return fail(str(e))
    payload['createdBy'] = current_user['username']
    event = get_store().add_event(payload)
    current_app.logger.info('Event %s created by %s', event['id'], current_user['username'])
    return jsonify({'ok': True, 'event': _event_response(event)})


@api.route('/events/<event_id>', methods=['GET'])
@login_required
def get_event(event_id):
    event = _find_visible_event(event_id)
    if not event:
        return fail('Event not found', 404)
    store = get_store()
    result = {
        'ok': True,
        'event': _event_response(event),
        'registered': store.is_registered_for_event(event_id, current_user['username']),
    }
    if can_view_registrations(current_user):
        result['registrations'] = store.get_event_registrations(event_id)
    return jsonify(result)


@api.route('/events/<event_id>', methods=['PATCH'])
@login_required
def update_event(event_id):
    store = get_store()
    event = store.get_event(event_id)
    if not event:
        return fail('Event not found', 404)
    if not can_edit_event(event, current_user):
        return fail('You do not have permission to perform this action.', 403)
    data = request.get_json(silent=True) or {}
    try:
        validate_event_form({**event, **data})
        payload = _event_payload(data)
    except (ValidationError, posters.InvalidPosterError) as e:
        return fail(str(e))
    payload['createdBy'] = event['createdBy']
    updated = store.update_event(event_id, payload)
    return jsonify({'ok': True, 'event': _event_response(updated)})


@api.route('/events/<event_id>', methods=['DELETE'])
@login_required
def delete_event(event_id):
    store = get_store()
    event = store.get_event(event_id)
    if not event:
        return fail('Event not found', 404)
    if not can_edit_event(event, current_user):
        return fail('You do not have permission to perform this action.', 403)
    store.delete_event(event_id)
    return jsonify({'ok': True, 'msg': 'Event deleted'})


@api.route('/events/<event_id>/register', methods=['POST'])
@login_required
def register_for_event(event_id):
    if not _find_visible_event(event_id):
        return fail('Event not found', 404)
    get_store().register_for_event(event_id, current_user['username'])
    return jsonify({'ok': True, 'registered': True})


@api.route('/events/<event_id>/registrations', methods=['GET'])
@login_required
def event_registrations(event_id):
    if not can_view_registrations(current_user):
        return fail('Only Admin or Coordinator can view registrations', 403)
    if not get_store().get_event(event_id):
        return fail('Event not found', 404)
    return jsonify({'ok': True, 'registrations': get_store().get_event_registrations(event_id)})


# Complaints

def _complaint_response(complaint):
    store = get_store()
    return {
        **complaint,
        'reactions': store.get_complaint_reaction_counts(complaint['id']),
        'myReaction': store.get_complaint_reaction(complaint['id'], current_user['username']),
        'editable': can_edit_complaint(complaint, current_user),
    }


@api.route('/complaints', methods=['GET'])
@login_required
def list_complaints():
    complaints = visible_complaints(get_store().get_complaints(), current_user)
    return jsonify({'ok': True, 'complaints': [_complaint_response(c) for c in complaints]})


@api.route('/complaints', methods=['POST'])
@login_required
def add_complaint():
    data = request.get_json(silent=True) or {}
    description = str(data.get('description') or '').strip()
    if not description:
        return fail('Please enter a description')
    complaint = get_store().add_complaint(current_user['username'], data.get('category'), description)
    return jsonify({'ok': True, 'complaint': _complaint_response(complaint)})


@api.route('/complaints/<complaint_id>', methods=['PATCH'])
@login_required
def update_complaint(complaint_id):
    store = get_store()
    complaint = store.get_complaint(complaint_id)
    if not complaint:
        return fail('Complaint not found', 404)
    if not can_edit_complaint(complaint, current_user):
        return fail('You cannot modify this complaint', 403)
    data = request.get_json(silent=True) or {}
    updates = {k: data[k] for k in ('category', 'description') if k in data}
    if 'status' in data:
        if not is_admin(current_user):
            return fail('Only Admin can change complaint status', 403)
        if data['status'] not in COMPLAINT_STATUSES:
            return fail('Unknown complaint status')
        updates['status'] = data['status']
    updated = store.update_complaint(complaint_id, updates)
    return jsonify({'ok': True, 'complaint': _complaint_response(updated)})


@api.route('/complaints/<complaint_id>', methods=['DELETE'])
@login_required
def delete_complaint(complaint_id):
    store = get_store()
    complaint = store.get_complaint(complaint_id)
    if not complaint:
        return fail('Complaint not found', 404)
    if not can_edit_complaint(complaint, current_user):
        return fail('You cannot modify this complaint', 403)
    store.delete_complaint(complaint_id)
    return jsonify({'ok': True, 'msg': 'Complaint deleted'})


@api.route('/complaints/<complaint_id>/reaction', methods=['POST'])
@login_required
def react_to_complaint(complaint_id):
    store = get_store()
    complaint = store.get_complaint(complaint_id)
    if not complaint or not visible_complaints([complaint], current_user):
        return fail('Complaint not found', 404)
    data = request.get_json(silent=True) or {}
    store.set_complaint_reaction(complaint_id, current_user['username'], data.get('reaction'))
    return jsonify({
        'ok': True,
        'reaction': store.get_complaint_reaction(complaint_id, current_user['username']),
        'counts': store.get_complaint_reaction_counts(complaint_id),
    })


# Permissions

def _permission_summary(permission):
    return {k: v for k, v in permission.items() if k != 'fileData'}


@api.route('/permissions', methods=['GET'])
@login_required
def list_permissions():
    permissions = visible_permissions(get_store().get_permissions(), current_user)
    permissions = search_permissions(permissions, request.args.get('q', ''))
    return jsonify({'ok': True, 'permissions': [_permission_summary(p) for p in permissions]})


@api.route('/permissions', methods=['POST'])
@login_required
def add_permission():
    if not can_manage_permissions(current_user):
        return fail('Only Admin can upload permission letters', 403)
    file = request.files.get('file')
    if file and file.filename:
        if file.mimetype != 'application/pdf' and not file.filename.lower().endswith('.pdf'):
            return fail('Please select a PDF file')
        filename = file.filename
        file_data = base64.b64encode(file.read()).decode('ascii')
    else:
        data = request.get_json(silent=True) or {}
        filename = data.get('filename')
        file_data = data.get('fileData') or ''
        try:
            base64.b64decode(file_data, validate=True)
        except (binascii.Error, ValueError):
            return fail('fileData must be base64 encoded')
        if not file_data:
            return fail('Please select a PDF file')
    permission = get_store().add_permission(filename, file_data, current_user['username'])
    return jsonify({'ok': True, 'permission': _permission_summary(permission)})


@api.route('/permissions/<permission_id>', methods=['PATCH'])
@login_required
def rename_permission(permission_id):
    if not can_manage_permissions(current_user):
        return fail('Only Admin can rename permission letters', 403)
    data = request.get_json(silent=True) or {}
    filename = str(data.get('filename') or '').strip()
    if not filename:
        return fail('filename is required')
    updated = get_store().update_permission(permission_id, {'filename': filename})
    if not updated:
        return fail('Permission not found', 404)
    return jsonify({'ok': True, 'permission': _permission_summary(updated)})


@api.route('/permissions/<permission_id>', methods=['DELETE'])
@login_required
def delete_permission(permission_id):
    if not can_manage_permissions(current_user):
        return fail('Only Admin can delete permission letters', 403)
    store = get_store()
    if not store.get_permission(permission_id):
        return fail('Permission not found', 404)
    store.delete_permission(permission_id)
    return jsonify({'ok': True, 'msg': 'Permission deleted'})


@api.route('/permissions/<permission_id>/download', methods=['GET'])
@login_required
def download_permission(permission_id):
    permission = get_store().get_permission(permission_id)
    if not permission:
        return fail('Permission not found', 404)
    try:
        content = base64.b64decode(permission.get('fileData') or '')
    except (binascii.Error, ValueError):
        current_app.logger.exception('Stored permission %s is not valid base64', permission_id)
        return fail('Stored file is corrupted', 500)
    return send_file(io.BytesIO(content), mimetype='application/pdf',
                     as_attachment=True, download_name=permission['filename'])


# Feedback

@api.route('/feedback', methods=['GET'])
@login_required
def list_feedback():
    feedback = visible_feedback(get_store().get_feedback(), current_user)
    return jsonify({'ok': True, 'feedback': feedback, 'title': 'All Feedback' if is_admin(current_user) else 'My Feedback'})


@api.route('/feedback', methods=['POST'])
@login_required
def add_feedback():
    data = request.get_json(silent=True) or {}
    message = str(data.get('message') or '').strip()
    if not message:
        return fail('Please enter a message')
    entry = get_store().add_feedback(current_user['username'], message, data.get('rating'))
    return jsonify({'ok': True, 'feedback': entry})


# Backup (admin only)

@api.route('/admin/export', methods=['GET'])
@login_required
def export_backup():
    if not is_admin(current_user):
        return fail('Permission denied. Admin access is required.', 403)
    payload = backup.export_data(get_store())
    filename = f'campus-app-backup-{datetime.date.today().isoformat()}.json'
    response = jsonify(payload)
    response.headers['Content-Disposition'] = f'attachment; filename={filename}'
    return response


@api.route('/admin/import', methods=['POST'])
@login_required
def import_backup():
    if not is_admin(current_user):
        return fail('Permission denied. Admin access is required.', 403)
    file = request.files.get('file')
    if file:
        if not file.filename.lower().endswith('.json'):
            return fail('Invalid file type. Please select a .json backup file.')
        try:
            payload = json.load(file.stream)
        except ValueError:
            return fail('Bad JSON file. Please verify the backup and try again.')
    else:
        payload = request.get_json(silent=True)
        if payload is None:
            return fail('Bad JSON file. Please verify the backup and try again.')
    try:
        mode = backup.import_data(get_store(), payload, request.args.get('mode', 'replace'))
    except backup.BackupFormatError as e:
        current_app.logger.warning('Rejected backup import: %s', e)
        return fail(str(e))
    msg = 'Merge successful.' if mode == 'merge' else 'Import successful.'
    return jsonify({'ok': True, 'mode': mode, 'msg': f'{msg} Please log in again.'})


# AI assistant

@api.route('/ai', methods=['POST'])
@login_required
def ask_ai():
    data = request.get_json(silent=True) or {}
    message = str(data.get('message') or '').strip()
    if not message:
        return fail('⚠ Please enter a prompt before sending.')
    context = ai_bridge.build_ai_context(get_store(), dict(current_user))
    try:
        reply = ai_bridge.ask_assistant(
            message, context, current_app.config['AI_SERVER_URL'], current_app.config['AI_TIMEOUT_SECONDS'])
    except ai_bridge.AssistantOfflineError as e:
        return fail(e.message, 503)
    except ai_bridge.AssistantError as e:
        return fail(e.message, 502)
    return jsonify({'ok': True, 'response': reply})


@api.route('/ai/save-task', methods=['POST'])
@login_required
def save_ai_task():
    data = request.get_json(silent=True) or {}
    text = str(data.get('text') or '').strip()
    if not text:
        return fail('Generate an AI response before saving.')
    visibility = ai_bridge.resolve_ai_visibility(current_user, data.get('visibility'))
    task = get_store().add_task(text, current_user['username'], visibility)
    return jsonify({'ok': True, 'msg': 'AI response saved as a new task.', 'task': _task_response(task)})


if __name__ == '__main__':
    create_app().run(debug=True)
