# ai_bridge.py
"""Campus assistant: snapshot what the user may see and ask the AI proxy.

The proxy is an external HTTP service: ``POST {message, context}`` answers
``{response}`` on success and ``{error}`` with a non-2xx status otherwise.
"""
import logging

import requests

import normalizers
from models import DEFAULT_VISIBILITY
from visibility import (
    is_admin,
    tasks_visible_to,
    visible_complaints,
    visible_events,
    visible_feedback,
    visible_permissions,
)

logger = logging.getLogger(__name__)

AI_OFFLINE_MESSAGE = '⚠ AI server offline. Make sure the AI proxy is running.'
AI_ERROR_MESSAGE = '⚠ Error contacting AI server.'
AI_EMPTY_MESSAGE = '⚠ No response received from AI.'

DATA_SECTIONS = ('tasks', 'events', 'complaints', 'permissions', 'feedback')


class AssistantError(Exception):
    def __init__(self, message, status=None):
        super().__init__(message)
        self.message = message
        self.status = status


class AssistantOfflineError(AssistantError):
    pass


def _empty_data():
    return {section: [] for section in DATA_SECTIONS}


def _task_view(task, username, now):
    return {
        'text': task.get('text') or '',
        'status': task.get('status') or 'Pending',
        'owner': task.get('owner') or username,
        'visibility': task.get('visibility') or DEFAULT_VISIBILITY,
        'createdAt': task.get('createdAt') or now,
        'id': task.get('id') or '',
    }


def _event_view(event):
    return {
        'title': event.get('title') or '',
        'clubName': event.get('clubName') or '',
        'description': event.get('description') or '',
        'status': event.get('status') or 'Upcoming',
        'startDate': event.get('startDate') or '',
        'endDate': event.get('endDate') or '',
        'registrationFee': event.get('registrationFee') or '',
        'createdBy': event.get('createdBy') or '',
    }


def _complaint_view(complaint, username, now):
    return {
        'category': complaint.get('category') or '',
        'description': complaint.get('description') or '',
        'status': complaint.get('status') or 'Pending',
        'owner': complaint.get('owner') or username,
        'createdAt': complaint.get('createdAt') or now,
    }


def _permission_view(permission, now):
    return {
        'filename': permission.get('filename') or '',
        'uploadedBy': permission.get('uploadedBy') or '',
        'createdAt': permission.get('createdAt') or now,
    }


def _feedback_view(entry, username, now):
    return {
        'message': entry.get('message') or '',
        'rating': entry.get('rating') or None,
        'owner': entry.get('owner') or username,
        'createdAt': entry.get('createdAt') or now,
    }


def build_ai_context(store, session=None):
    session = session or store.get_session()
    if not session:
        return {'user': None, 'role': None, 'data': _empty_data()}

    role = session.get('role') or 'user'
    username = session.get('username')
    if not username:
        logger.warning('Session has no username; sending empty assistant context')
        return {'user': session, 'role': role, 'data': _empty_data()}

    user = {**session, 'role': role}
    now = normalizers.now_millis()
    tasks = tasks_visible_to(store.get_all_tasks(), user, store.admin_usernames())
    data = {
        'tasks': [_task_view(t, username, now) for t in tasks],
        'events': [_event_view(e) for e in visible_events(store.get_events(), user)],
        'complaints': [_complaint_view(c, username, now) for c in visible_complaints(store.get_complaints(), user)],
        'permissions': [_permission_view(p, now) for p in visible_permissions(store.get_permissions(), user)],
        'feedback': [_feedback_view(f, username, now) for f in visible_feedback(store.get_feedback(), user)],
    }
    logger.info('Assistant context for %s (%s): %s', username, role,
                ', '.join(f'{len(data[s])} {s}' for s in DATA_SECTIONS))
    return {'user': session, 'role': role, 'data': data}


def extract_reply(body):
    if isinstance(body, str):
        return body
    if not isinstance(body, dict):
        return None
    if isinstance(body.get('response'), str) and body['response']:
        return body['response']
    message = body.get('message')
    if isinstance(message, str) and message:
        return message
    if isinstance(message, dict) and isinstance(message.get('content'), str):
        return message['content']
    messages = body.get('messages')
    if isinstance(messages, list) and messages and isinstance(messages[0], dict):
        content = messages[0].get('content')
        return content if isinstance(content, str) else None
    return None


def ask_assistant(message, context, url, timeout=60):
    try:
        response = requests.post(url, json={'message': message, 'context': context}, timeout=timeout)
    except requests.RequestException as exc:
        logger.exception('AI proxy request failed')
        raise AssistantOfflineError(AI_OFFLINE_MESSAGE) from exc

    if not response.ok:
        try:
            body = response.json()
        except ValueError:
            body = {}
        error = body.get('error') if isinstance(body, dict) else None
        logger.warning('AI proxy returned %s: %s', response.status_code, error)
        raise AssistantError(error or AI_ERROR_MESSAGE, status=response.status_code)

    try:
        body = response.json()
    except ValueError as exc:
        logger.error('AI proxy returned a non-JSON body (%d bytes)', len(response.content or b''))
        raise AssistantError(AI_EMPTY_MESSAGE) from exc

    reply = extract_reply(body)
    if not reply or not reply.strip():
        raise AssistantError(AI_EMPTY_MESSAGE)
    return reply


def resolve_ai_visibility(user, requested):
    """Visibility for a task saved from an assistant reply."""
    return 'admin' if is_admin(user) and requested == 'admin' else 'public'
