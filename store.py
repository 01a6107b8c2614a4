# store.py
import hmac
import json
import logging

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from werkzeug.security import check_password_hash, generate_password_hash

import normalizers
from models import Base, DEFAULT_ROLE, DEFAULT_VISIBILITY, REACTIONS, ROLES, Record

logger = logging.getLogger(__name__)

USERS_KEY = 'users'
SESSION_KEY = 'session'
SESSION_GENERATION_KEY = 'session_generation'
TASKS_KEY = 'tasks'
TASK_PARTITION_PREFIX = 'tasks:'
COMPLAINTS_KEY = 'complaints'
PERMISSIONS_KEY = 'permissions'
FEEDBACK_KEY = 'feedback'
EVENTS_KEY = 'events'
REGISTRATIONS_KEY = 'registrations'
COMPLAINT_REACTIONS_KEY = 'complaint_reactions'

_HASH_PREFIXES = ('scrypt:', 'pbkdf2:')


class DuplicateUserError(ValueError):
    pass


class KeyValueStore:
    """Named JSON records in the ``records`` table.

    Reads never fail: a missing record, undecodable JSON or a value whose type
    differs from ``default`` all come back as ``default``. Write failures are
    logged and swallowed so a broken database degrades instead of erroring.
    """

    def __init__(self, db_url):
        self.engine = create_engine(db_url, echo=False)
        self.SessionLocal = sessionmaker(bind=self.engine)
        Base.metadata.create_all(self.engine)

    def read(self, key, default=None):
        db = self.SessionLocal()
        try:
            row = db.get(Record, key)
            if row is None:
                return default
            value = json.loads(row.value)
        except (SQLAlchemyError, ValueError):
            logger.exception('Unable to read record %s', key)
            return default
        finally:
            db.close()
        if default is not None and not isinstance(value, type(default)):
            logger.warning('Record %s is a %s, expected %s; using default',
                           key, type(value).__name__, type(default).__name__)
            return default
        return value

    def write(self, key, value):
        db = self.SessionLocal()
        try:
            db.merge(Record(key=key, value=json.dumps(value)))
            db.commit()
        except (SQLAlchemyError, TypeError, ValueError):
            db.rollback()
            logger.exception('Unable to save record %s', key)
        finally:
            db.close()

    def remove(self, key):
        db = self.SessionLocal()
        try:
            db.query(Record).filter_by(key=key).delete()
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception('Unable to remove record %s', key)
        finally:
            db.close()

    def keys(self, prefix=''):
        db = self.SessionLocal()
        try:
            rows = db.query(Record.key).filter(Record.key.startswith(prefix, autoescape=True)).all()
            return [key for (key,) in rows]
        except SQLAlchemyError:
            logger.exception('Unable to list records under %r', prefix)
            return []
        finally:
            db.close()


def _password_matches(stored, password):
    stored = stored or ''
    if stored.startswith(_HASH_PREFIXES):
        return check_password_hash(stored, password or '')
    # Backups from older installs carry plain passwords.
    return bool(stored) and hmac.compare_digest(stored, password or '')


class CampusStore:
    """All persisted campus data, on top of one KeyValueStore.

    Tasks are partitioned per owner (``tasks:<username>``); ``tasks`` is the
    legacy unpartitioned record that only the normalization sweep touches.
    Everything else lives in one record per collection.
    """

    def __init__(self, records):
        self.records = records

    # Tasks

    def _task_key(self, owner=None):
        return f'{TASK_PARTITION_PREFIX}{owner}' if owner else TASKS_KEY

    def _task_owners(self):
        owners = [user.get('username') for user in self.get_users() if isinstance(user, dict)]
        owners += [key[len(TASK_PARTITION_PREFIX):] for key in self.records.keys(TASK_PARTITION_PREFIX)]
        return [owner for owner in dict.fromkeys(owners) if owner]

    def get_tasks(self, owner=None):
        stored = self.records.read(self._task_key(owner), [])
        return normalizers.normalize_tasks(stored, owner or 'unknown')

    def save_tasks(self, tasks, owner=None):
        if not isinstance(tasks, list):
            raise TypeError('Data must be a list')
        normalized = normalizers.normalize_tasks(tasks, owner or 'unknown')
        self.records.write(self._task_key(owner), normalized)
        return normalized

    def add_task(self, text, owner, visibility=DEFAULT_VISIBILITY):
        tasks = self.get_tasks(owner)
        task = normalizers.create_task({'text': text, 'visibility': visibility, 'owner': owner})
        tasks.append(task)
        self.save_tasks(tasks, owner)
        return task

    @staticmethod
    def _apply_task_changes(current, value):
        if isinstance(value, str):
            changes = {'text': value}
        elif isinstance(value, dict):
            changes = value
        else:
            return current
        merged = {**current, **changes}
        merged['id'] = current['id']
        merged['owner'] = current['owner']
        merged['createdAt'] = current['createdAt']
        merged['visibility'] = changes.get('visibility') or current.get('visibility') or DEFAULT_VISIBILITY
        return normalizers.create_task(merged)

    def update_task_at(self, index, value, owner=None):
        """Replace the task at ``index`` in ``owner``'s partition.

        An out-of-range index leaves the partition untouched. The index must
        come from a fresh ``get_tasks(owner)``.
        """
        tasks = self.get_tasks(owner)
        if not 0 <= index < len(tasks):
            return tasks
        tasks[index] = self._apply_task_changes(tasks[index], value)
        return self.save_tasks(tasks, owner)

    def remove_task_at(self, index, owner=None):
        tasks = self.get_tasks(owner)
        if 0 <= index < len(tasks):
            del tasks[index]
            self.save_tasks(tasks, owner)
        return tasks

    def _locate_task(self, task_id):
        for owner in self._task_owners():
            for index, task in enumerate(self.get_tasks(owner)):
                if task['id'] == task_id:
                    return owner, index, task
        return None, -1, None

    def get_task(self, task_id):
        return self._locate_task(task_id)[2]

    def update_task(self, task_id, changes):
        owner, index, _ = self._locate_task(task_id)
        if index < 0:
            return None
        return self.update_task_at(index, changes, owner)[index]

    def remove_task(self, task_id):
        owner, index, _ = self._locate_task(task_id)
        if index < 0:
            return False
        self.remove_task_at(index, owner)
        return True

    def get_all_tasks(self):
        all_tasks = []
        for owner in self._task_owners():
            for task in self.get_tasks(owner):
                all_tasks.append({
                    **task,
                    'owner': task.get('owner') or owner,
                    'visibility': task.get('visibility') or DEFAULT_VISIBILITY,
                    'id': task.get('id') or normalizers.generate_task_id(),
                })
        return all_tasks

    def clear_task_partitions(self):
        for key in [TASKS_KEY] + self.records.keys(TASK_PARTITION_PREFIX):
            self.records.remove(key)

    def normalize_tasks(self):
        """Rewrite every stored task record in canonical shape."""
        session = self.get_session() or {}
        fallback_owner = session.get('username') or 'unknown'
        keys = [TASKS_KEY] + [self._task_key(owner) for owner in self._task_owners()]

        for key in keys:
            stored = self.records.read(key)
            if stored is None:
                continue
            if not isinstance(stored, list):
                self.records.write(key, [])
                continue
            key_owner = key[len(TASK_PARTITION_PREFIX):] if key.startswith(TASK_PARTITION_PREFIX) else None
            normalized = []
            for task in stored:
                hint = task.get('owner') if isinstance(task, dict) else None
                normalized.append(normalizers.ensure_task_shape(task, hint or key_owner or fallback_owner))
            self.records.write(key, normalized)

    # Users

    def get_users(self):
        return self.records.read(USERS_KEY, [])

    def save_users(self, users):
        self.records.write(USERS_KEY, users)
        return users

    def get_user(self, username):
        for user in self.get_users():
            if isinstance(user, dict) and user.get('username') == username:
                return user
        return None

    def admin_usernames(self):
        return {user.get('username') for user in self.get_users()
                if isinstance(user, dict) and user.get('role') == 'admin'}

    def is_admin(self, username):
        return username in self.admin_usernames()

    def create_user(self, username, password, role=DEFAULT_ROLE, metadata=None):
        metadata = metadata or {}
        username = (username or '').strip()
        users = [u for u in self.get_users() if isinstance(u, dict)]
        if any(str(u.get('username', '')).lower() == username.lower() for u in users):
            raise DuplicateUserError('Email already exists')
        usn = (metadata.get('usn') or '').strip().upper()
        if usn and any(str(u.get('usn') or '').upper() == usn for u in users):
            raise DuplicateUserError('USN already exists')

        user = {
            'username': username,
            'password': generate_password_hash(password),
            'role': normalizers.clamp_choice((role or '').lower(), ROLES, DEFAULT_ROLE),
            'name': metadata.get('name') or '',
            'usn': usn,
            'email': metadata.get('email') or username,
        }
        users.append(user)
        self.save_users(users)
        logger.info('Created %s account %s', user['role'], username)
        return normalizers.public_user(user)

    def authenticate_user(self, usn, password):
        usn = (usn or '').strip().upper()
        if not usn:
            return None
        for user in self.get_users():
            if not isinstance(user, dict):
                continue
            if str(user.get('usn') or '').upper() == usn and _password_matches(user.get('password'), password):
                return normalizers.public_user(user)
        return None

    # Session

    def session_generation(self):
        return self.records.read(SESSION_GENERATION_KEY, 0)

    def load_session_user(self, user_id):
        """Resolve a ``username|generation`` id to the stored user, or None if stale."""
        username, _, generation = str(user_id).rpartition('|')
        if not username or generation != str(self.session_generation()):
            return None
        return normalizers.public_user(self.get_user(username))

    def get_session(self):
        session = self.records.read(SESSION_KEY)
        return session if isinstance(session, dict) else None

    def set_session(self, user):
        if user:
            user = normalizers.public_user(user)
            self.records.write(SESSION_KEY, user)
        else:
            self.records.remove(SESSION_KEY)
        return user

    def clear_session(self):
        """Drop the stored session and sign out every client."""
        self.set_session(None)
        self.records.write(SESSION_GENERATION_KEY, self.session_generation() + 1)

    # Complaints

    def get_complaints(self, owner=None):
        complaints = self.records.read(COMPLAINTS_KEY, [])
        if not owner:
            return complaints
        return [c for c in complaints if c.get('owner') == owner]

    def get_complaint(self, complaint_id):
        return next((c for c in self.get_complaints() if c.get('id') == complaint_id), None)

    def add_complaint(self, owner, category, description):
        complaints = self.get_complaints()
        complaint = normalizers.create_complaint({'owner': owner, 'category': category, 'description': description})
        complaints.append(complaint)
        self.records.write(COMPLAINTS_KEY, complaints)
        return complaint

    def update_complaint(self, complaint_id, updates):
        complaints = self.get_complaints()
        for index, complaint in enumerate(complaints):
            if complaint.get('id') == complaint_id:
                complaints[index] = normalizers.create_complaint({**complaint, **updates, 'id': complaint_id})
                self.records.write(COMPLAINTS_KEY, complaints)
                return complaints[index]
        return None

    def delete_complaint(self, complaint_id):
        remaining = [c for c in self.get_complaints() if c.get('id') != complaint_id]
        self.records.write(COMPLAINTS_KEY, remaining)
        return remaining

    def get_complaint_reactions(self):
        return self.records.read(COMPLAINT_REACTIONS_KEY, {})

    def set_complaint_reaction(self, complaint_id, username, reaction):
        reactions = self.get_complaint_reactions()
        per_complaint = reactions.setdefault(complaint_id, {})
        per_complaint[username] = reaction if reaction in REACTIONS else None
        self.records.write(COMPLAINT_REACTIONS_KEY, reactions)
        return per_complaint

    def get_complaint_reaction(self, complaint_id, username):
        return self.get_complaint_reactions().get(complaint_id, {}).get(username)

    def get_complaint_reaction_counts(self, complaint_id):
        values = list(self.get_complaint_reactions().get(complaint_id, {}).values())
        return {'likes': values.count('like'), 'dislikes': values.count('dislike')}

    # Permissions

    def get_permissions(self):
        return self.records.read(PERMISSIONS_KEY, [])

    def get_permission(self, permission_id):
        return next((p for p in self.get_permissions() if p.get('id') == permission_id), None)

    def add_permission(self, filename, file_data, uploaded_by):
        permissions = self.get_permissions()
        permission = normalizers.create_permission(
            {'filename': filename, 'fileData': file_data, 'uploadedBy': uploaded_by})
        permissions.append(permission)
        self.records.write(PERMISSIONS_KEY, permissions)
        return permission

    def update_permission(self, permission_id, updates):
        permissions = self.get_permissions()
        for index, permission in enumerate(permissions):
            if permission.get('id') == permission_id:
                permissions[index] = normalizers.create_permission({**permission, **updates, 'id': permission_id})
                self.records.write(PERMISSIONS_KEY, permissions)
                return permissions[index]
        return None

    def delete_permission(self, permission_id):
        remaining = [p for p in self.get_permissions() if p.get('id') != permission_id]
        self.records.write(PERMISSIONS_KEY, remaining)
        return remaining

    # Feedback

    def get_feedback(self, owner=None):
        feedback = self.records.read(FEEDBACK_KEY, [])
        if not owner:
            return feedback
        return [f for f in feedback if f.get('owner') == owner]

    def add_feedback(self, owner, message, rating=None):
        feedback = self.get_feedback()
        entry = normalizers.create_feedback({'owner': owner, 'message': message, 'rating': rating})
        feedback.append(entry)
        self.records.write(FEEDBACK_KEY, feedback)
        return entry

    # Events

    def get_events(self):
        return self.records.read(EVENTS_KEY, [])

    def get_event(self, event_id):
        return next((e for e in self.get_events() if e.get('id') == event_id), None)

    def add_event(self, data):
        events = self.get_events()
        event = normalizers.create_event(data)
        events.append(event)
        self.records.write(EVENTS_KEY, events)
        return event

    def update_event(self, event_id, updates):
        events = self.get_events()
        for index, event in enumerate(events):
            if event.get('id') == event_id:
                events[index] = normalizers.create_event({**event, **updates, 'id': event_id})
                self.records.write(EVENTS_KEY, events)
                return events[index]
        return None

    def delete_event(self, event_id):
        remaining = [e for e in self.get_events() if e.get('id') != event_id]
        self.records.write(EVENTS_KEY, remaining)
        return remaining

    def get_registrations(self):
        return self.records.read(REGISTRATIONS_KEY, {})

    def register_for_event(self, event_id, username):
        registrations = self.get_registrations()
        registrants = registrations.setdefault(event_id, [])
        if username not in registrants:
            registrants.append(username)
            self.records.write(REGISTRATIONS_KEY, registrations)
        return registrants

    def is_registered_for_event(self, event_id, username):
        return username in self.get_registrations().get(event_id, [])

    def get_event_registrations(self, event_id):
        return self.get_registrations().get(event_id, [])
