from datetime import datetime, timedelta, timezone

import pytest

import accounts
from app import create_app
from leaves import LeaveManager
from models import Identity
from passes import PassVerifier
from store import MemoryStore


class FakeClock:
    """Callable clock that only moves when told to"""
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 2, 18, 9, 30, tzinfo=timezone.utc))


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def leaves(store, clock):
    return LeaveManager(store, clock=clock)


@pytest.fixture
def verifier(store, clock):
    return PassVerifier(store, clock=clock)


@pytest.fixture
def student():
    return Identity('stu-1', 'John Doe', 'student', 'Computer Science', 'REG2024001')


@pytest.fixture
def other_student():
    return Identity('stu-2', 'Jane Roe', 'student', 'Mechanical', 'REG2024002')


@pytest.fixture
def faculty():
    return Identity('fac-1', 'Dr. Smith', 'faculty', 'Computer Science')


@pytest.fixture
def pending_request(leaves, student):
    return leaves.create(student, 'medical', '2024-02-20', '2024-02-20', 'Doctor appointment')


@pytest.fixture
def approved_request(leaves, pending_request, faculty):
    return leaves.respond(pending_request.id, 'approve', faculty)


@pytest.fixture
def app(store):
    """Flask app backed by the in-memory store"""
    return create_app(store=store, config={'TESTING': True, 'SECRET_KEY': 'test-secret'})


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def create_user(store):
    """Factory fixture for creating users"""
    def _create_user(username, password='testpass123', role='student', **kwargs):
        kwargs.setdefault('email', '%s@college.edu' % username)
        return accounts.register_user(store, username, password=password, role=role, **kwargs)
    return _create_user


@pytest.fixture
def login(client):
    """Log the test client in as username, replacing any previous session"""
    def _login(username, password='testpass123'):
        client.get('/logout')
        response = client.post('/login', json={'username': username, 'password': password})
        assert response.status_code == 200
        return response
    return _login
