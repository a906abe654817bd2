import re

import pytest

import accounts
from errors import StorageError
from store import LEAVE_REQUESTS

LEAVE = {
    'type': 'medical',
    'start_date': '2024-02-20',
    'end_date': '2024-02-20',
    'reason': 'Doctor appointment',
}


@pytest.fixture
def users(create_user):
    return {
        'student': create_user('student1', name='John Doe', department='Computer Science',
                               registration_number='REG2024001'),
        'other': create_user('student2', name='Jane Roe', department='Mechanical'),
        'faculty': create_user('smith', role='faculty', name='Dr. Smith', department='Computer Science'),
        'guard': create_user('guard', role='security_guard', name='Main Gate'),
        'admin': create_user('root', role='admin', name='Administrator'),
    }


@pytest.fixture
def submit(client, login, users):
    """Submit a leave request as a student and return it"""
    def _submit(username='student1', **overrides):
        login(username)
        response = client.post('/leaves', json=dict(LEAVE, **overrides))
        assert response.status_code == 201
        return response.get_json()['request']
    return _submit


@pytest.mark.auth
class TestSession:
    """Login, registration and role checks"""

    def test_register_then_login(self, client):
        response = client.post('/register', json={
            'username': 'newbie',
            'email': 'newbie@college.edu',
            'password': 'secret1',
            'confirm_password': 'secret1',
            'name': 'New Student',
        })
        assert response.status_code == 201
        assert response.get_json()['user']['role'] == 'student'

        response = client.post('/login', data={'username': 'newbie', 'password': 'secret1'})
        assert response.status_code == 200
        assert client.get('/me').get_json()['user']['name'] == 'New Student'

    def test_register_password_mismatch(self, client):
        response = client.post('/register', json={
            'username': 'newbie',
            'email': 'newbie@college.edu',
            'password': 'secret1',
            'confirm_password': 'secret2',
        })
        assert response.status_code == 400
        assert response.get_json()['error'] == 'Passwords do not match'

    def test_login_invalid_password(self, client, users):
        response = client.post('/login', json={'username': 'student1', 'password': 'wrongpassword'})
        assert response.status_code == 401

    def test_requires_login(self, client):
        assert client.get('/leaves').status_code == 401
        assert client.post('/passes/verify', json={'token': 'x'}).status_code == 401

    def test_logout(self, client, login, users):
        login('student1')
        client.get('/logout')
        assert client.get('/me').status_code == 401

    def test_student_cannot_respond(self, client, submit):
        request = submit()
        response = client.post('/leaves/%s/respond' % request['id'], json={'action': 'approve'})
        assert response.status_code == 403

    def test_faculty_cannot_apply_or_scan(self, client, login, users):
        login('smith')
        assert client.post('/leaves', json=LEAVE).status_code == 403
        assert client.post('/passes/verify', json={'token': 'x'}).status_code == 403


@pytest.mark.lifecycle
class TestLeaveRoutes:
    """Leave request endpoints"""

    def test_exit_pass_scenario(self, client, login, submit, store):
        request = submit()
        assert request['status'] == 'pending'
        assert request['qr_code_token'] is None

        login('smith')
        response = client.post('/leaves/%s/respond' % request['id'], json={'action': 'approve'})
        assert response.status_code == 200
        approved = response.get_json()['request']
        assert approved['status'] == 'approved'
        assert approved['responded_by'] == 'Dr. Smith'
        assert approved['is_scanned'] is False
        assert re.match(r'^PASS-[A-Z0-9]{7}-\d+$', approved['qr_code_token'])

        login('guard')
        first = client.post('/passes/verify', json={'token': approved['qr_code_token']}).get_json()
        assert first['success'] is True
        assert first['message'] == 'Verified Successfully'
        assert first['request']['is_scanned'] is True
        assert store.get(LEAVE_REQUESTS, request['id'])['is_scanned'] is True

        second = client.post('/passes/verify', json={'token': approved['qr_code_token']}).get_json()
        assert second == {'success': False, 'message': 'QR Code already used/scanned', 'request': None}

    def test_verify_unknown_token(self, client, login, users):
        login('guard')
        response = client.post('/passes/verify', json={'token': 'PASS-XXXXXXX-1'})
        assert response.status_code == 200
        assert response.get_json()['message'] == 'Invalid QR Code'

    def test_validation_error(self, client, login, users):
        login('student1')
        response = client.post('/leaves', json=dict(LEAVE, reason=''))
        assert response.status_code == 400
        assert 'reason' in response.get_json()['error']

        response = client.post('/leaves', json=dict(LEAVE, start_date='2024-02-21'))
        assert response.status_code == 400

    def test_respond_twice_conflicts(self, client, login, submit):
        request = submit()
        login('smith')
        url = '/leaves/%s/respond' % request['id']
        assert client.post(url, json={'action': 'reject', 'remarks': 'No'}).status_code == 200

        response = client.post(url, json={'action': 'approve'})
        assert response.status_code == 409
        assert client.get('/leaves/%s' % request['id']).get_json()['request']['status'] == 'rejected'

    def test_respond_unknown(self, client, login, users):
        login('smith')
        assert client.post('/leaves/missing/respond', json={'action': 'approve'}).status_code == 404

    def test_respond_invalid_action(self, client, login, submit):
        request = submit()
        login('root')
        response = client.post('/leaves/%s/respond' % request['id'], json={'action': 'archive'})
        assert response.status_code == 400

    def test_listing_per_role(self, client, login, submit):
        submit('student1', reason='Mine')
        submit('student2', reason='Theirs')

        login('student1')
        assert [r['reason'] for r in client.get('/leaves').get_json()['requests']] == ['Mine']

        login('smith')
        faculty_view = client.get('/leaves').get_json()['requests']
        assert [r['department'] for r in faculty_view] == ['Computer Science']

        login('root')
        assert len(client.get('/leaves').get_json()['requests']) == 2
        assert client.get('/leaves?status=approved').get_json()['requests'] == []

    def test_students_cannot_see_each_other(self, client, login, submit):
        request = submit('student2')
        login('student1')
        assert client.get('/leaves/%s' % request['id']).status_code == 404

    def test_pass_image(self, client, login, submit):
        request = submit()
        assert client.get('/leaves/%s/pass.png' % request['id']).status_code == 404

        login('smith')
        client.post('/leaves/%s/respond' % request['id'], json={'action': 'approve'})

        login('student1')
        response = client.get('/leaves/%s/pass.png' % request['id'])
        assert response.status_code == 200
        assert response.mimetype == 'image/png'
        assert response.data.startswith(b'\x89PNG')

    def test_balance(self, client, login, submit):
        request = submit(type='casual', start_date='2024-02-15', end_date='2024-02-17')
        login('smith')
        client.post('/leaves/%s/respond' % request['id'], json={'action': 'approve'})

        login('student1')
        balance = client.get('/balance').get_json()['balance']
        assert balance['casual'] == {'used': 3, 'total': 12, 'remaining': 9}

    def test_non_text_reason_is_rejected(self, client, login, users, store):
        login('student1')
        response = client.post('/leaves', json=dict(LEAVE, reason=42))
        assert response.status_code == 400
        assert response.get_json()['error'] == 'reason must be text'

        response = client.post('/leaves', json=dict(LEAVE, type=['medical']))
        assert response.status_code == 400
        assert store.find(LEAVE_REQUESTS) == []

    def test_non_text_action_is_rejected(self, client, login, submit):
        request = submit()
        login('smith')
        url = '/leaves/%s/respond' % request['id']
        assert client.post(url, json={'action': ['approve']}).status_code == 400
        assert client.post(url, json={'action': 'approve', 'remarks': {'note': 'ok'}}).status_code == 400
        assert client.get('/leaves/%s' % request['id']).get_json()['request']['status'] == 'pending'

    def test_non_text_token_is_unknown(self, client, login, users):
        login('guard')
        for token in (12345, ['PASS-XXXXXXX-1'], {'token': 'x'}):
            response = client.post('/passes/verify', json={'token': token})
            assert response.status_code == 200
            assert response.get_json()['message'] == 'Invalid QR Code'

    def test_guard_refused_for_known_and_unknown_ids(self, client, login, submit):
        request = submit()
        login('guard')
        assert client.get('/leaves/%s' % request['id']).status_code == 403
        assert client.get('/leaves/missing').status_code == 403

    def test_storage_failure(self, client, login, users, store, monkeypatch):
        login('student1')

        def broken(*args, **kwargs):
            raise StorageError('connection refused')

        monkeypatch.setattr(store, 'insert', broken)
        response = client.post('/leaves', json=LEAVE)
        assert response.status_code == 503
        assert response.get_json() == {'error': 'System Error'}


class TestAdminRoutes:
    """Reports and user management"""

    def test_summary(self, client, login, submit):
        first = submit()
        submit('student2', type='casual')
        login('smith')
        client.post('/leaves/%s/respond' % first['id'], json={'action': 'approve'})

        login('root')
        report = client.get('/reports/summary').get_json()
        assert report['total'] == 2
        assert report['by_status'] == {'pending': 1, 'approved': 1, 'rejected': 0}
        assert report['by_type'] == {'medical': 1, 'casual': 1}

    def test_summary_admin_only(self, client, login, users):
        login('smith')
        assert client.get('/reports/summary').status_code == 403

    def test_manage_users(self, client, login, users):
        login('root')
        response = client.post('/admin/users', json={
            'username': 'guard2',
            'email': 'guard2@college.edu',
            'password': 'guard123',
            'role': 'security_guard',
        })
        assert response.status_code == 201

        listed = client.get('/admin/users?role=security_guard').get_json()['users']
        assert [u['username'] for u in listed] == ['guard', 'guard2']
        assert all('password_hash' not in u for u in listed)

    def test_toggle_user(self, client, login, users):
        login('root')
        url = '/admin/users/%s/toggle' % users['student']['id']
        response = client.post(url)
        assert response.status_code == 200
        assert response.get_json()['user']['active'] is False

        response = client.post('/login', json={'username': 'student1', 'password': 'testpass123'})
        assert response.status_code == 401

        login('root')
        assert client.post(url).get_json()['user']['active'] is True
        login('student1')

    def test_deactivated_session_ends(self, client, login, users, store):
        login('student1')
        accounts.set_user_active(store, users['student']['id'], False)
        assert client.get('/me').status_code == 401

    def test_delete_user(self, client, login, submit, users, store):
        request = submit()
        login('root')
        response = client.delete('/admin/users/%s' % users['student']['id'])
        assert response.status_code == 200
        assert response.get_json()['user']['username'] == 'student1'
        assert store.get(LEAVE_REQUESTS, request['id']) is None

        assert client.delete('/admin/users/%s' % users['student']['id']).status_code == 404
        assert client.post('/admin/users/missing/toggle').status_code == 404

    def test_admin_cannot_remove_self(self, client, login, users):
        login('root')
        assert client.delete('/admin/users/%s' % users['admin']['id']).status_code == 400
        assert client.post('/admin/users/%s/toggle' % users['admin']['id']).status_code == 400

    def test_user_management_admin_only(self, client, login, users):
        login('smith')
        assert client.delete('/admin/users/%s' % users['student']['id']).status_code == 403
        assert client.post('/admin/users/%s/toggle' % users['student']['id']).status_code == 403

    def test_student_directory_search(self, client, login, users):
        login('smith')
        students = client.get('/students').get_json()['students']
        assert [s['username'] for s in students] == ['student1', 'student2']
        assert all('password_hash' not in s for s in students)

        by_registration = client.get('/students?search=reg2024001').get_json()['students']
        assert [s['name'] for s in by_registration] == ['John Doe']
        by_name = client.get('/students?search=jane').get_json()['students']
        assert [s['username'] for s in by_name] == ['student2']
        by_email = client.get('/students?search=student1@college').get_json()['students']
        assert [s['username'] for s in by_email] == ['student1']

    def test_student_directory_hidden_from_students(self, client, login, users):
        login('student1')
        assert client.get('/students').status_code == 403

    def test_create_admin(self, client):
        assert client.get('/create_admin').status_code == 201
        assert client.get('/create_admin').get_json()['message'] == 'Admin user already exists'
        assert client.post('/login', json={'username': 'admin', 'password': 'admin123'}).status_code == 200
