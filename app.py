import os
import logging
from flask import Blueprint, Flask, current_app, jsonify, request, session

import accounts
from errors import (AuthenticationError, AuthorizationError, LeaveError, NotFoundError,
                    StorageError, ValidationError)
from leaves import LeaveManager, summarize
from models import APPROVED
from passes import PassVerifier, render_qr
from store import MemoryStore, PostgresStore

# Configure logging
logging.basicConfig(level=logging.DEBUG)
logger = logging.getLogger(__name__)

bp = Blueprint('leave', __name__)


def create_app(store=None, config=None):
    """Create the Flask app; without DATABASE_URL the data lives in memory"""
    app = Flask(__name__)
    app.secret_key = os.environ.get("SESSION_SECRET", "your-secret-key-change-this")
    app.config['DATABASE_URL'] = os.environ.get('DATABASE_URL')
    app.config['ENFORCE_BALANCE'] = os.environ.get('LEAVE_ENFORCE_BALANCE') == '1'
    if config:
        app.config.update(config)

    if store is None:
        if app.config['DATABASE_URL']:
            store = PostgresStore(app.config['DATABASE_URL'])
            store.init_schema()
        else:
            logger.warning('DATABASE_URL not set, using an in-memory store')
            store = MemoryStore()

    app.extensions['store'] = store
    app.extensions['leaves'] = LeaveManager(store, enforce_balance=app.config['ENFORCE_BALANCE'])
    app.extensions['passes'] = PassVerifier(store)
    app.register_blueprint(bp)
    app.register_error_handler(LeaveError, handle_leave_error)
    return app


def handle_leave_error(error):
    if isinstance(error, StorageError):
        # backend details stay in the log
        return jsonify({'error': 'System Error'}), error.status_code
    return jsonify({'error': error.message}), error.status_code


def _store():
    return current_app.extensions['store']


def _leaves():
    return current_app.extensions['leaves']


def _form():
    return request.get_json(silent=True) or request.form


def _jsonable(user):
    user = dict(user)
    if user.get('created_at') is not None:
        user['created_at'] = user['created_at'].isoformat()
    return user


def current_identity(*roles):
    """Logged in identity, restricted to roles when given"""
    if 'user_id' not in session:
        raise AuthenticationError('Please login first')
    identity = accounts.get_identity(_store(), session['user_id'])
    if identity is None:
        session.clear()
        raise AuthenticationError('Please login first')
    if roles and identity.role not in roles:
        raise AuthorizationError('Unauthorized access')
    return identity


def _visible_request(request_id, identity):
    """Leave request the identity is allowed to see"""
    if identity.role == 'security_guard':
        raise AuthorizationError('Unauthorized access')
    leave = _leaves().get(request_id)
    if identity.role == 'student' and leave.student_id != identity.id:
        # don't reveal other students' requests
        raise NotFoundError('Leave request %s not found' % request_id)
    return leave


@bp.route('/')
def index():
    """Home page"""
    return jsonify({'service': 'college-leave-management', 'status': 'ok'})


@bp.route('/login', methods=['POST'])
def login():
    """User login"""
    data = _form()
    identity = accounts.authenticate(_store(), data.get('username'), data.get('password'))
    if identity is None:
        raise AuthenticationError('Invalid username or password')

    session['user_id'] = identity.id
    session['username'] = data.get('username')
    session['role'] = identity.role
    return jsonify({'user': identity.to_dict()})


@bp.route('/register', methods=['POST'])
def register():
    """User registration"""
    data = _form()
    password = data.get('password') or ''

    # Validation
    if password != data.get('confirm_password', password):
        raise ValidationError('Passwords do not match')

    user = accounts.register_user(
        _store(),
        username=data.get('username'),
        email=data.get('email'),
        password=password,
        name=data.get('name'),
        role='student',
        department=data.get('department'),
        registration_number=data.get('registration_number'),
    )
    return jsonify({'message': 'Registration successful! Please login.', 'user': _jsonable(user)}), 201


@bp.route('/logout')
def logout():
    """User logout"""
    session.clear()
    return jsonify({'message': 'You have been logged out'})


@bp.route('/me')
def me():
    return jsonify({'user': current_identity().to_dict()})


@bp.route('/leaves', methods=['POST'])
def apply_leave():
    """Apply for leave"""
    identity = current_identity('student')
    data = _form()
    leave = _leaves().create(
        identity,
        type=data.get('type'),
        start_date=data.get('start_date'),
        end_date=data.get('end_date'),
        reason=data.get('reason'),
    )
    return jsonify({'message': 'Leave application submitted successfully', 'request': leave.to_dict()}), 201


@bp.route('/leaves')
def list_leaves():
    """Leave history for students, department queue for faculty, everything for admins"""
    identity = current_identity('student', 'faculty', 'admin')
    if identity.role == 'student':
        leaves = _leaves().list_by_requester(identity.id)
    elif identity.role == 'faculty' and identity.department:
        leaves = _leaves().list_by_department(identity.department)
    else:
        leaves = _leaves().list_all()

    status = request.args.get('status')
    if status:
        leaves = [leave for leave in leaves if leave.status == status]
    return jsonify({'requests': [leave.to_dict() for leave in leaves]})


@bp.route('/leaves/<request_id>')
def leave_detail(request_id):
    identity = current_identity()
    return jsonify({'request': _visible_request(request_id, identity).to_dict()})


@bp.route('/leaves/<request_id>/respond', methods=['POST'])
def respond_leave(request_id):
    """Approve or reject a leave request"""
    identity = current_identity('faculty', 'admin')
    data = _form()
    leave = _leaves().respond(request_id, data.get('action'), identity, remarks=data.get('remarks'))
    return jsonify({'message': 'Leave request %s successfully' % leave.status, 'request': leave.to_dict()})


@bp.route('/leaves/<request_id>/pass.png')
def leave_pass(request_id):
    """QR image of the exit pass for an approved request"""
    identity = current_identity('student')
    leave = _visible_request(request_id, identity)
    if leave.status != APPROVED or not leave.qr_code_token:
        raise NotFoundError('No exit pass for leave request %s' % request_id)
    return current_app.response_class(render_qr(leave.qr_code_token), mimetype='image/png')


@bp.route('/balance')
def balance():
    identity = current_identity('student')
    return jsonify({'balance': _leaves().balance_for(identity.id)})


@bp.route('/passes/verify', methods=['POST'])
def verify_pass():
    """Scan an exit pass at the gate"""
    current_identity('security_guard', 'admin')
    result = current_app.extensions['passes'].verify(_form().get('token'))
    return jsonify(result.to_dict())


@bp.route('/reports/summary')
def reports_summary():
    current_identity('admin')
    return jsonify(summarize(_leaves().list_all()))


@bp.route('/admin/users', methods=['GET', 'POST'])
def admin_users():
    """List users, or create one with any role"""
    current_identity('admin')
    if request.method == 'POST':
        data = _form()
        user = accounts.register_user(
            _store(),
            username=data.get('username'),
            email=data.get('email'),
            password=data.get('password'),
            name=data.get('name'),
            role=data.get('role') or 'student',
            department=data.get('department'),
            registration_number=data.get('registration_number'),
        )
        return jsonify({'user': _jsonable(user)}), 201

    users = accounts.list_users(_store(), role=request.args.get('role'), search=request.args.get('search'))
    return jsonify({'users': [_jsonable(user) for user in users]})


@bp.route('/admin/users/<user_id>', methods=['DELETE'])
def delete_user(user_id):
    identity = current_identity('admin')
    if user_id == identity.id:
        raise ValidationError('You cannot delete your own account')
    user = accounts.delete_user(_store(), user_id)
    return jsonify({'message': 'User deleted successfully', 'user': _jsonable(user)})


@bp.route('/admin/users/<user_id>/toggle', methods=['POST'])
def toggle_user(user_id):
    """Switch a user between active and inactive"""
    identity = current_identity('admin')
    if user_id == identity.id:
        raise ValidationError('You cannot deactivate your own account')
    user = accounts.get_user(_store(), user_id)
    user = accounts.set_user_active(_store(), user_id, not user.get('active', True))
    return jsonify({'user': _jsonable(user)})


@bp.route('/students')
def student_directory():
    """Student directory for faculty, searchable by name, registration number or email"""
    current_identity('faculty', 'admin')
    students = accounts.list_users(_store(), role='student', search=request.args.get('search'))
    return jsonify({'students': [_jsonable(student) for student in students]})


@bp.route('/create_admin')
def create_admin():
    """Create admin user - for initial setup"""
    if not accounts.ensure_admin(_store()):
        return jsonify({'message': 'Admin user already exists'})
    return jsonify({'message': 'Admin user created successfully! Username: admin, Password: admin123'}), 201


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    create_app().run(debug=False, host='0.0.0.0', port=port)
