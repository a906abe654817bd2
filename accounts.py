# User accounts: registration, login and admin user management

import logging

from werkzeug.security import check_password_hash, generate_password_hash

from errors import NotFoundError, ValidationError
from models import ROLES, Identity, utc_now
from store import LEAVE_REQUESTS, USERS

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
DEFAULT_ADMIN = {
    'username': 'admin',
    'email': 'admin@college.edu',
    'password': 'admin123',
    'name': 'Administrator',
}


def _public(user):
    """User document without the password hash"""
    return {key: value for key, value in user.items() if key != 'password_hash'}


def _text(value):
    return value.strip() if isinstance(value, str) else ''


def _is_active(user):
    return user.get('active', True) is not False


def register_user(store, username, email, password, name=None, role='student',
                  department='', registration_number=''):
    """Create a user and return its public document"""
    username = _text(username)
    email = _text(email)
    if not username or not email or not password or not isinstance(password, str):
        raise ValidationError('Username, email and password are required')
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError('Password must be at least %d characters long' % MIN_PASSWORD_LENGTH)
    if role not in ROLES:
        raise ValidationError('Unknown role: %s' % role)

    # Check if user already exists
    if store.find(USERS, {'username': username}) or store.find(USERS, {'email': email}):
        raise ValidationError('Username or email already exists')

    user = {
        'username': username,
        'email': email,
        'password_hash': generate_password_hash(password),
        'name': _text(name) or username,
        'role': role,
        'department': _text(department),
        'registration_number': _text(registration_number),
        'created_at': utc_now(),
        'active': True,
    }
    user['id'] = store.insert(USERS, user)
    logger.info('Registered %s user %s', role, username)
    return _public(user)


def authenticate(store, username, password):
    """Identity for valid credentials of an active user, otherwise None"""
    users = store.find(USERS, {'username': _text(username)})
    if users and isinstance(password, str) and check_password_hash(users[0]['password_hash'], password):
        if _is_active(users[0]):
            return Identity.from_user(users[0])
        logger.info('Refused login for inactive user %s', username)
        return None
    logger.info('Failed login for %s', username)
    return None


def get_identity(store, user_id):
    """Identity of an active user; deactivated or deleted users get None"""
    user = store.get(USERS, user_id) if user_id else None
    return Identity.from_user(user) if user and _is_active(user) else None


def get_user(store, user_id):
    user = store.get(USERS, user_id)
    if user is None:
        raise NotFoundError('User %s not found' % user_id)
    return _public(user)


def _matches_search(user, search):
    search = search.lower()
    return any(search in (user.get(field) or '').lower()
               for field in ('name', 'registration_number', 'email'))


def list_users(store, role=None, search=None):
    """Users ordered by username; search matches name, registration number or email"""
    filters = {'role': role} if role else {}
    if store.supports_ordered_query:
        users = store.find(USERS, filters, order_by=('username', False))
    else:
        users = sorted(store.find(USERS, filters), key=lambda u: u['username'])
    search = _text(search)
    if search:
        users = [user for user in users if _matches_search(user, search)]
    return [_public(user) for user in users]


def ensure_admin(store):
    """Create the default admin user unless an admin exists; returns True if created"""
    if store.find(USERS, {'role': 'admin'}):
        return False
    register_user(store, role='admin', **DEFAULT_ADMIN)
    return True


def set_user_active(store, user_id, active):
    """Enable or disable logins for a user"""
    if not store.update(USERS, user_id, {'active': bool(active)}):
        raise NotFoundError('User %s not found' % user_id)
    logger.info('User %s %s', user_id, 'activated' if active else 'deactivated')
    return get_user(store, user_id)


def delete_user(store, user_id):
    """Remove a user together with their leave requests"""
    user = get_user(store, user_id)
    for request in store.find(LEAVE_REQUESTS, {'student_id': user_id}):
        store.delete(LEAVE_REQUESTS, request['id'])
    if not store.delete(USERS, user_id):
        raise NotFoundError('User %s not found' % user_id)
    logger.info('Deleted %s user %s', user['role'], user['username'])
    return user
