import itertools

import pytest

from conftest import make_user
from visibility import (
    allowed_filters,
    can_edit_complaint,
    can_edit_event,
    can_modify_task,
    search_events,
    search_permissions,
    visible_complaints,
    visible_events,
    visible_feedback,
    visible_permissions,
    visible_tasks,
)

ADMIN = {'username': 'admin1', 'role': 'admin'}
ALICE = {'username': 'alice', 'role': 'user'}
BOB = {'username': 'bob', 'role': 'user'}
COORD = {'username': 'coord', 'role': 'coordinator'}
ADMINS = {'admin1'}


def task(id, owner, visibility='public', text='t', created=0):
    return {'id': id, 'owner': owner, 'visibility': visibility, 'text': text, 'createdAt': created,
            'status': 'Pending'}


UNIVERSE = [
    task('1', 'admin1', 'public'),
    task('2', 'admin1', 'admin'),
    task('3', 'alice', 'public'),
    task('4', 'alice', 'admin'),
    task('5', 'bob', 'public'),
    task('6', 'coord', 'public'),
]


def ids(tasks):
    return sorted(t['id'] for t in tasks)


def test_admin_sees_everything():
    assert ids(visible_tasks(UNIVERSE, ADMIN, admin_usernames=ADMINS)) == ['1', '2', '3', '4', '5', '6']


@pytest.mark.parametrize('user', [ALICE, BOB, COORD])
def test_non_admin_visibility_rule(user):
    seen = {t['id'] for t in visible_tasks(UNIVERSE, user, admin_usernames=ADMINS)}
    for t in UNIVERSE:
        expected = t['owner'] == user['username'] or (t['visibility'] == 'public' and t['owner'] in ADMINS)
        assert (t['id'] in seen) == expected


@pytest.mark.parametrize('user', [ALICE, BOB, COORD])
def test_editable_implies_visible(user):
    seen = {t['id'] for t in visible_tasks(UNIVERSE, user, admin_usernames=ADMINS)}
    for t in UNIVERSE:
        if can_modify_task(t, user):
            assert t['id'] in seen


def test_admin_public_task_visible_but_not_editable():
    admin_task = UNIVERSE[0]
    assert admin_task in visible_tasks(UNIVERSE, ALICE, admin_usernames=ADMINS)
    assert not can_modify_task(admin_task, ALICE)
    assert can_modify_task(UNIVERSE[2], ALICE)
    assert can_modify_task(UNIVERSE[2], ADMIN)
    assert not can_modify_task(UNIVERSE[2], None)


def test_filter_gate():
    assert ids(visible_tasks(UNIVERSE, ALICE, 'my', admin_usernames=ADMINS)) == ['3', '4']
    assert ids(visible_tasks(UNIVERSE, ALICE, 'public', admin_usernames=ADMINS)) == ['1', '3']
    # the admin filter is ignored for non-admins
    assert ids(visible_tasks(UNIVERSE, ALICE, 'admin', admin_usernames=ADMINS)) == ['1', '3', '4']
    assert ids(visible_tasks(UNIVERSE, ADMIN, 'admin', admin_usernames=ADMINS)) == ['2', '4']


def test_search_is_case_insensitive():
    tasks = [task('a', 'alice', text='Buy Milk'), task('b', 'alice', text='lab report')]
    assert ids(visible_tasks(tasks, ALICE, search='MILK', admin_usernames=ADMINS)) == ['a']
    assert ids(visible_tasks(tasks, ALICE, search='   ', admin_usernames=ADMINS)) == ['a', 'b']


def test_sort_orders():
    tasks = [
        task('a', 'alice', text='banana', created=2),
        task('b', 'alice', text='Apple', created=3),
        task('c', 'alice', text='cherry', created=1),
        task('d', 'alice', text='Éclair', created=4),
    ]
    texts = lambda order: [t['text'] for t in visible_tasks(tasks, ALICE, sort=order, admin_usernames=ADMINS)]
    assert texts('az') == ['Apple', 'banana', 'cherry', 'Éclair']
    assert texts('za') == list(reversed(texts('az')))
    assert [t['createdAt'] for t in visible_tasks(tasks, ALICE, sort='oldest')] == [1, 2, 3, 4]
    assert [t['createdAt'] for t in visible_tasks(tasks, ALICE, sort='newest')] == [4, 3, 2, 1]
    assert [t['createdAt'] for t in visible_tasks(tasks, ALICE, sort='bogus')] == [4, 3, 2, 1]


def test_sorts_are_consistent_orders():
    tasks = [task(str(i), 'alice', text=t, created=c)
             for i, (t, c) in enumerate(itertools.product(['b', 'A', 'c'], [5, 1]))]
    az = visible_tasks(tasks, ALICE, sort='az')
    for left, right in zip(az, az[1:]):
        assert left['text'].lower() <= right['text'].lower()
    newest = visible_tasks(tasks, ALICE, sort='newest')
    for left, right in zip(newest, newest[1:]):
        assert left['createdAt'] >= right['createdAt']


def test_no_user_sees_nothing():
    assert visible_tasks(UNIVERSE, None) == []
    assert allowed_filters(None) == ()
    assert 'admin' in allowed_filters(ADMIN)
    assert 'admin' not in allowed_filters(ALICE)


def test_policy_update_scenario(store):
    make_user(store, 'alice', 'user')
    make_user(store, 'admin1', 'admin')
    policy = store.add_task('Policy update', 'admin1', 'admin')

    all_tasks = store.get_all_tasks()
    admins = store.admin_usernames()
    assert policy['id'] not in ids(visible_tasks(all_tasks, ALICE, 'all', admin_usernames=admins))
    assert policy['id'] in ids(visible_tasks(all_tasks, ADMIN, 'admin', admin_usernames=admins))

    before = store.get_tasks('alice')
    assert store.update_task_at(0, 'hijacked', 'alice') == before
    assert store.get_task(policy['id'])['text'] == 'Policy update'


def test_event_visibility():
    events = [
        {'id': 'e1', 'createdBy': 'admin1', 'visibility': 'public', 'title': 'Fest', 'clubName': 'IEEE', 'status': 'Upcoming'},
        {'id': 'e2', 'createdBy': 'admin1', 'visibility': 'admin', 'title': 'Board', 'clubName': 'Council', 'status': 'Ended'},
        {'id': 'e3', 'createdBy': 'coord', 'visibility': 'admin', 'title': 'Prep', 'clubName': 'IEEE', 'status': 'Started'},
    ]
    assert [e['id'] for e in visible_events(events, ADMIN)] == ['e1', 'e2', 'e3']
    assert [e['id'] for e in visible_events(events, COORD)] == ['e1', 'e3']
    assert [e['id'] for e in visible_events(events, ALICE)] == ['e1']
    assert visible_events(events, None) == []

    assert can_edit_event(events[2], COORD)
    assert not can_edit_event(events[0], COORD)
    assert can_edit_event(events[0], ADMIN)
    assert not can_edit_event(events[0], ALICE)

    assert [e['id'] for e in search_events(events, 'ieee')] == ['e1', 'e3']
    assert [e['id'] for e in search_events(events, 'ended')] == ['e2']


def test_complaint_feedback_permission_visibility():
    complaints = [{'id': 'c1', 'owner': 'alice'}, {'id': 'c2', 'owner': 'bob'}]
    assert visible_complaints(complaints, ALICE) == [complaints[0]]
    assert visible_complaints(complaints, ADMIN) == complaints
    assert visible_feedback(complaints, BOB) == [complaints[1]]
    assert can_edit_complaint(complaints[0], ALICE)
    assert not can_edit_complaint(complaints[1], ALICE)
    assert can_edit_complaint(complaints[1], ADMIN)

    permissions = [{'id': 'p1', 'filename': 'Trip-Letter.pdf'}, {'id': 'p2', 'filename': 'fest.pdf'}]
    assert visible_permissions(permissions, ALICE) == permissions
    assert visible_permissions(permissions, None) == []
    assert search_permissions(permissions, 'letter') == [permissions[0]]
