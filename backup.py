# backup.py
"""Export the user and task universe to a portable document and load it back.

Only users and tasks travel; events, complaints, feedback, permissions and
reactions stay where they are. Imports are not transactional: replace mode
writes the user table and the task partitions one record at a time.
"""
import logging

import normalizers

logger = logging.getLogger(__name__)

APP_VERSION = '1.0'
REQUIRED_BACKUP_KEYS = ('users', 'tasks', 'appVersion', 'exportedAt')
IMPORT_MODES = ('replace', 'merge')


class BackupFormatError(ValueError):
    pass


def export_data(store):
    return {
        'users': store.get_users(),
        'tasks': store.get_all_tasks(),
        'appVersion': APP_VERSION,
        'exportedAt': normalizers.now_millis(),
    }


def validate_backup_payload(payload):
    if not isinstance(payload, dict):
        raise BackupFormatError('Invalid backup format.')
    if not all(key in payload for key in REQUIRED_BACKUP_KEYS):
        raise BackupFormatError('Backup file is missing required keys.')
    users, tasks = payload['users'], payload['tasks']
    if not isinstance(users, list) or not isinstance(tasks, list):
        raise BackupFormatError('Backup file has invalid users or tasks format.')
    return users, tasks


def _task_owner(task):
    return (task.get('owner') if isinstance(task, dict) else None) or 'unknown'


def bucket_tasks_by_owner(tasks):
    buckets = {}
    for task in tasks:
        normalized = normalizers.ensure_task_shape(task, _task_owner(task))
        buckets.setdefault(normalized['owner'], []).append(normalized)
    return buckets


def ensure_unique_task_id(task, existing_ids):
    """Return ``task`` with an id not in ``existing_ids``, and reserve it."""
    candidate = task.get('id')
    while not candidate or candidate in existing_ids:
        candidate = normalizers.generate_task_id()
    existing_ids.add(candidate)
    return {**task, 'id': candidate}


def replace_all_data(store, users, tasks):
    store.save_users([u for u in users if isinstance(u, dict) and isinstance(u.get('username'), str)])
    store.clear_task_partitions()
    for owner, owner_tasks in bucket_tasks_by_owner(tasks).items():
        store.save_tasks(owner_tasks, owner)


def merge_users(store, imported_users):
    merged = list(store.get_users())
    known = {str(u.get('username', '')).lower() for u in merged if isinstance(u, dict)}

    for user in imported_users:
        if not isinstance(user, dict) or not isinstance(user.get('username'), str):
            continue
        username = user['username'].strip()
        if not username or username.lower() in known:
            continue
        merged.append({**user, 'username': username})
        known.add(username.lower())

    store.save_users(merged)
    return merged


def merge_tasks(store, imported_tasks):
    existing_ids = {task['id'] for task in store.get_all_tasks()}
    buckets = {}

    for task in imported_tasks:
        owner = _task_owner(task)
        unique = ensure_unique_task_id(normalizers.ensure_task_shape(task, owner), existing_ids)
        if unique['owner'] not in buckets:
            buckets[unique['owner']] = store.get_tasks(unique['owner'])
        buckets[unique['owner']].append(unique)

    for owner, bucket in buckets.items():
        store.save_tasks(bucket, owner)


def import_data(store, payload, mode='replace'):
    """Load a backup document; returns the mode actually applied.

    Anything other than ``merge`` is a replace. Either way the task records
    are re-normalized afterwards and the session is cleared, so the next
    request has to log in against the imported user table.
    """
    users, tasks = validate_backup_payload(payload)
    mode = 'merge' if mode == 'merge' else 'replace'
    logger.info('Importing backup (%s): %d users, %d tasks', mode, len(users), len(tasks))

    if mode == 'merge':
        merge_users(store, users)
        merge_tasks(store, tasks)
    else:
        replace_all_data(store, users, tasks)

    store.normalize_tasks()
    store.clear_session()
    return mode
