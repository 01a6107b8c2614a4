# visibility.py
"""Who may see and who may change what.

Everything here is a pure function of the records and the acting user (the
session dict: ``username`` and ``role``). Visibility and editability are
deliberately separate: a regular user sees an admin's public task but can
never change it.
"""
import unicodedata

from models import DEFAULT_VISIBILITY

TASK_FILTERS = ('all', 'my', 'public', 'admin')
TASK_SORTS = ('newest', 'oldest', 'az', 'za')

FILTER_OPTIONS_BY_ROLE = {
    'admin': ('all', 'my', 'public', 'admin'),
    'user': ('all', 'my', 'public'),
}


def is_admin(user):
    return bool(user) and user.get('role') == 'admin'


def is_coordinator(user):
    return bool(user) and user.get('role') == 'coordinator'


def allowed_filters(user):
    if not user:
        return ()
    return FILTER_OPTIONS_BY_ROLE['admin' if is_admin(user) else 'user']


def _visibility(record):
    return record.get('visibility') or DEFAULT_VISIBILITY


def _sort_text(value):
    # Case- and accent-insensitive ordering key.
    decomposed = unicodedata.normalize('NFKD', value or '')
    return ''.join(ch for ch in decomposed if not unicodedata.combining(ch)).casefold()


def tasks_visible_to(tasks, user, admin_usernames):
    if not user:
        return []
    if is_admin(user):
        return list(tasks)
    username = user.get('username')
    return [
        task for task in tasks
        if task.get('owner') == username
        or (_visibility(task) == 'public' and task.get('owner') in admin_usernames)
    ]


def visible_tasks(all_tasks, user, active_filter='all', search='', sort='newest', admin_usernames=()):
    """Tasks ``user`` may see, narrowed by filter and search, then sorted."""
    if not user or not isinstance(all_tasks, list):
        return []

    working = tasks_visible_to(all_tasks, user, set(admin_usernames))

    active_filter = active_filter or 'all'
    if active_filter == 'my':
        working = [t for t in working if t.get('owner') == user.get('username')]
    elif active_filter == 'public':
        working = [t for t in working if _visibility(t) == 'public']
    elif active_filter == 'admin' and is_admin(user):
        working = [t for t in working if t.get('visibility') == 'admin']

    query = (search or '').strip().lower()
    if query:
        working = [t for t in working if query in (t.get('text') or '').lower()]

    if sort == 'az':
        return sorted(working, key=lambda t: _sort_text(t.get('text')))
    if sort == 'za':
        return sorted(working, key=lambda t: _sort_text(t.get('text')), reverse=True)
    if sort == 'oldest':
        return sorted(working, key=lambda t: t.get('createdAt') or 0)
    return sorted(working, key=lambda t: t.get('createdAt') or 0, reverse=True)


def can_modify_task(task, user):
    if not user or not task:
        return False
    if is_admin(user):
        return True
    return task.get('owner') == user.get('username')


def is_event_public(event):
    return bool(event) and event.get('visibility') != 'admin'


def visible_events(events, user):
    if not user:
        return []
    if is_admin(user):
        return list(events)
    if is_coordinator(user):
        return [e for e in events if e.get('createdBy') == user.get('username') or is_event_public(e)]
    return [e for e in events if is_event_public(e)]


def can_manage_events(user):
    return is_admin(user) or is_coordinator(user)


def can_edit_event(event, user):
    if not event or not user:
        return False
    return is_admin(user) or (is_coordinator(user) and event.get('createdBy') == user.get('username'))


def can_view_registrations(user):
    return can_manage_events(user)


def search_events(events, query):
    query = (query or '').strip().lower()
    if not query:
        return list(events)
    return [
        e for e in events
        if query in (e.get('title') or '').lower()
        or query in (e.get('clubName') or '').lower()
        or query in (e.get('status') or '').lower()
    ]


def _owned_or_all(records, user):
    if not user:
        return []
    if is_admin(user):
        return list(records)
    return [r for r in records if r.get('owner') == user.get('username')]


def visible_complaints(complaints, user):
    return _owned_or_all(complaints, user)


def visible_feedback(feedback, user):
    return _owned_or_all(feedback, user)


def can_edit_complaint(complaint, user):
    if not complaint or not user:
        return False
    return is_admin(user) or complaint.get('owner') == user.get('username')


def visible_permissions(permissions, user):
    return list(permissions) if user else []


def can_manage_permissions(user):
    return is_admin(user)


def search_permissions(permissions, query):
    query = (query or '').strip().lower()
    if not query:
        return list(permissions)
    return [p for p in permissions if query in (p.get('filename') or '').lower()]
