import pytest

from app import create_app
from store import CampusStore, KeyValueStore

ADMIN = {'name': 'Admin One', 'usn': '1BM24CS001', 'email': 'admin1@bmsce.ac.in', 'password': 'Admin@123', 'role': 'admin'}
COORDINATOR = {'name': 'Coord', 'usn': '1BM24CS002', 'email': 'coord@bmsce.ac.in', 'password': 'Coord@123', 'role': 'coordinator'}
ALICE = {'name': 'Alice', 'usn': '1BM24CS003', 'email': 'alice@bmsce.ac.in', 'password': 'Alice@123', 'role': 'user'}
BOB = {'name': 'Bob', 'usn': '1BM24CS004', 'email': 'bob@bmsce.ac.in', 'password': 'Bobby@123', 'role': 'user'}


@pytest.fixture
def records(tmp_path):
    return KeyValueStore(f"sqlite:///{tmp_path / 'campus.db'}")


@pytest.fixture
def store(records):
    return CampusStore(records)


def make_user(store, username, role='user', usn=''):
    return store.create_user(username, 'Secret@123', role, {'name': username.title(), 'usn': usn})


@pytest.fixture
def app(tmp_path):
    app = create_app({
        'TESTING': True,
        'CAMPUS_DB_PATH': str(tmp_path / 'app.db'),
        'AI_SERVER_URL': 'http://ai.test/ai',
        'AI_TIMEOUT_SECONDS': 1,
    })
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


def register(client, form):
    return client.post('/auth/register', json=form)


def login(client, form):
    return client.post('/auth/login', json={'usn': form['usn'], 'password': form['password']})


@pytest.fixture
def accounts(client):
    """Register admin, coordinator, alice and bob; nobody stays logged in."""
    for form in (ADMIN, COORDINATOR, ALICE, BOB):
        assert register(client, form).get_json()['ok']
    client.post('/auth/logout')
    return {'admin': ADMIN, 'coordinator': COORDINATOR, 'alice': ALICE, 'bob': BOB}
