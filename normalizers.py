# normalizers.py
"""Lenient constructors for every stored entity.

Each function takes a loosely shaped mapping (fields may be missing or of the
wrong type) and returns the canonical record. Nothing here raises on bad
input: unknown enum values fall back to their defaults, missing ids are
generated and unusable timestamps become "now".
"""
import math
import random
import string
import time

from models import (
    COMPLAINT_CATEGORIES,
    COMPLAINT_STATUSES,
    DEFAULT_STATUS,
    DEFAULT_VISIBILITY,
    EVENT_STATUSES,
    PUBLIC_USER_FIELDS,
    TASK_STATUSES,
    VISIBILITIES,
)

DAY_MS = 86400000

_ID_ALPHABET = string.digits + string.ascii_lowercase


def now_millis():
    return int(time.time() * 1000)


def generate_id(prefix='id'):
    suffix = ''.join(random.choices(_ID_ALPHABET, k=9))
    return f'{prefix}_{now_millis()}_{suffix}'


def generate_task_id():
    return generate_id('task')


def clamp_choice(value, choices, default):
    return value if value in choices else default


def coerce_timestamp(value, fallback=None):
    """Epoch millis from ``value``, or ``fallback`` (default: now) when not finite."""
    if isinstance(value, bool):
        value = None
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = math.nan
    if math.isfinite(number):
        return int(number) if number.is_integer() else number
    return now_millis() if fallback is None else fallback


def _text(value):
    if value is None:
        return ''
    return str(value).strip()


def _given_id(value, prefix='id'):
    text = _text(value) if value else ''
    return text or generate_id(prefix)


def create_task(raw):
    return {
        'id': _given_id(raw.get('id'), 'task'),
        'text': _text(raw.get('text')),
        'createdAt': coerce_timestamp(raw.get('createdAt')),
        'status': clamp_choice(raw.get('status'), TASK_STATUSES, DEFAULT_STATUS),
        'visibility': clamp_choice(raw.get('visibility'), VISIBILITIES, DEFAULT_VISIBILITY),
        'owner': str(raw.get('owner') or 'unknown'),
    }


def ensure_task_shape(task, fallback_owner='unknown'):
    # A bare value (legacy records stored plain strings) becomes the task text.
    if not isinstance(task, dict):
        return create_task({'text': task, 'owner': fallback_owner})
    return create_task({**task, 'owner': task.get('owner') or fallback_owner})


def normalize_tasks(items, default_owner='unknown'):
    if not isinstance(items, list):
        return []
    return [ensure_task_shape(item, default_owner) for item in items]


def create_complaint(raw):
    return {
        'id': _given_id(raw.get('id')),
        'owner': str(raw.get('owner') or 'unknown'),
        'category': clamp_choice(raw.get('category'), COMPLAINT_CATEGORIES, COMPLAINT_CATEGORIES[0]),
        'description': _text(raw.get('description')),
        'createdAt': coerce_timestamp(raw.get('createdAt')),
        'status': clamp_choice(raw.get('status'), COMPLAINT_STATUSES, COMPLAINT_STATUSES[0]),
    }


def create_permission(raw):
    return {
        'id': _given_id(raw.get('id')),
        'filename': _text(raw.get('filename')) or 'untitled.pdf',
        'fileData': str(raw.get('fileData') or ''),
        'uploadedBy': str(raw.get('uploadedBy') or 'unknown'),
        'createdAt': coerce_timestamp(raw.get('createdAt')),
    }


def coerce_rating(value):
    """Ratings are 1..5 or None."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or not 1 <= number <= 5:
        return None
    return int(number) if number.is_integer() else number


def create_feedback(raw):
    return {
        'id': _given_id(raw.get('id')),
        'owner': str(raw.get('owner') or 'unknown'),
        'message': _text(raw.get('message')),
        'rating': coerce_rating(raw.get('rating')),
        'createdAt': coerce_timestamp(raw.get('createdAt')),
    }


def derive_event_status(start, end, now=None):
    now = now_millis() if now is None else now
    if end < now:
        return 'Ended'
    if start <= now <= end:
        return 'Started'
    return 'Upcoming'


def attendance_summary(allowed, timing):
    if not allowed:
        return 'Attendance limited to members'
    return f'Attendance allowed ({timing})' if timing else 'Attendance allowed'


def create_event(raw, now=None):
    now = now_millis() if now is None else now
    start = coerce_timestamp(raw.get('startDate'), fallback=now)
    end = coerce_timestamp(raw.get('endDate'), fallback=now + DAY_MS)
    status = raw.get('status')
    if status not in EVENT_STATUSES:
        status = derive_event_status(start, end, now)

    allowed = bool(raw.get('attendanceAllowed'))
    timing = _text(raw.get('attendanceTiming')) if allowed else ''
    attendance_info = _text(raw.get('attendanceInfo')) or attendance_summary(allowed, timing)

    return {
        'id': _given_id(raw.get('id')),
        'title': _text(raw.get('title')) or 'Untitled Event',
        'clubName': _text(raw.get('clubName')) or 'Unknown Club',
        'description': _text(raw.get('description')) or 'Description coming soon.',
        'registrationLink': _text(raw.get('registrationLink')),
        'attendanceInfo': attendance_info,
        'startDate': start,
        'endDate': end,
        'status': status,
        'createdBy': str(raw.get('createdBy') or 'unknown'),
        'image': str(raw.get('image') or ''),
        'registrationFee': _text(raw.get('registrationFee')),
        'attendanceAllowed': allowed,
        'attendanceTiming': timing,
        'duration': _text(raw.get('duration')),
        'visibility': clamp_choice(raw.get('visibility'), VISIBILITIES, DEFAULT_VISIBILITY),
    }


def public_user(user):
    """Strip a stored user down to what a session may hold."""
    if not isinstance(user, dict):
        return None
    return {field: user.get(field, '') for field in PUBLIC_USER_FIELDS}
