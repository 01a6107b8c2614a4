import re

import normalizers
from normalizers import (
    DAY_MS,
    create_complaint,
    create_event,
    create_feedback,
    create_permission,
    create_task,
    ensure_task_shape,
    normalize_tasks,
)


def test_invalid_status_and_visibility_fall_back_to_defaults():
    task = create_task({'text': 'x', 'status': 'Bogus', 'visibility': 'secret'})
    assert task['status'] == 'Pending'
    assert task['visibility'] == 'public'


def test_task_fields_are_trimmed_and_defaulted():
    task = create_task({'text': '  read chapter 4  ', 'createdAt': 'not a number'})
    assert task['text'] == 'read chapter 4'
    assert task['owner'] == 'unknown'
    assert isinstance(task['createdAt'], int)
    assert re.fullmatch(r'task_\d+_[0-9a-z]{9}', task['id'])


def test_given_id_is_kept_and_blank_id_regenerated():
    assert create_task({'id': ' t-1 '})['id'] == 't-1'
    assert create_task({'id': '   '})['id'].startswith('task_')


def test_numeric_string_timestamp_is_coerced():
    assert create_task({'createdAt': '1700000000000'})['createdAt'] == 1700000000000


def test_non_dict_task_becomes_text():
    task = ensure_task_shape('legacy entry', 'alice')
    assert task['text'] == 'legacy entry'
    assert task['owner'] == 'alice'


def test_ensure_task_shape_keeps_existing_owner():
    assert ensure_task_shape({'owner': 'bob'}, 'alice')['owner'] == 'bob'


def test_normalize_tasks_rejects_non_lists():
    assert normalize_tasks({'text': 'x'}) == []
    assert len(normalize_tasks([{'text': 'a'}, 'b'])) == 2


def test_complaint_defaults():
    complaint = create_complaint({'category': 'Food', 'status': 'Open', 'description': ' leaky tap '})
    assert complaint['category'] == 'Academic'
    assert complaint['status'] == 'Pending'
    assert complaint['description'] == 'leaky tap'
    assert complaint['id'].startswith('id_')


def test_permission_filename_defaults():
    assert create_permission({'filename': '  '})['filename'] == 'untitled.pdf'


def test_feedback_rating_range():
    assert create_feedback({'rating': 4})['rating'] == 4
    assert create_feedback({'rating': '5'})['rating'] == 5
    assert create_feedback({'rating': 0})['rating'] is None
    assert create_feedback({'rating': 6})['rating'] is None
    assert create_feedback({'rating': None})['rating'] is None
    assert create_feedback({'rating': 'great'})['rating'] is None


def test_event_status_derived_from_dates():
    now = 10 * DAY_MS
    assert create_event({'startDate': now + 1000, 'endDate': now + 2000}, now=now)['status'] == 'Upcoming'
    assert create_event({'startDate': now - 1000, 'endDate': now + 1000}, now=now)['status'] == 'Started'
    assert create_event({'startDate': now - 2000, 'endDate': now - 1000}, now=now)['status'] == 'Ended'


def test_explicit_event_status_wins():
    now = 10 * DAY_MS
    event = create_event({'startDate': now - 2000, 'endDate': now - 1000, 'status': 'Upcoming'}, now=now)
    assert event['status'] == 'Upcoming'


def test_event_defaults():
    now = 10 * DAY_MS
    event = create_event({}, now=now)
    assert event['title'] == 'Untitled Event'
    assert event['clubName'] == 'Unknown Club'
    assert event['description'] == 'Description coming soon.'
    assert event['startDate'] == now
    assert event['endDate'] == now + DAY_MS
    assert event['attendanceInfo'] == 'Attendance limited to members'
    assert event['visibility'] == 'public'


def test_event_attendance_timing_only_kept_when_allowed():
    allowed = create_event({'attendanceAllowed': True, 'attendanceTiming': ' 2-4 PM '})
    assert allowed['attendanceTiming'] == '2-4 PM'
    assert allowed['attendanceInfo'] == 'Attendance allowed (2-4 PM)'
    denied = create_event({'attendanceAllowed': False, 'attendanceTiming': '2-4 PM'})
    assert denied['attendanceTiming'] == ''


def test_public_user_drops_password():
    user = normalizers.public_user({'username': 'a', 'password': 'x', 'role': 'user'})
    assert 'password' not in user
    assert user['usn'] == ''
