# This file contains the models for the Leave Management System
# Records are stored as plain documents; these classes convert to and from them

from datetime import date, datetime, timezone

LEAVE_TYPES = ('casual', 'medical', 'emergency', 'holiday')
ROLES = ('student', 'faculty', 'admin', 'security_guard')

PENDING = 'pending'
APPROVED = 'approved'
REJECTED = 'rejected'
STATUSES = (PENDING, APPROVED, REJECTED)

# Yearly allowance in days, shown on the student dashboard
LEAVE_ALLOWANCE = {
    'casual': 12,
    'medical': 5,
    'emergency': 3,
}


def utc_now():
    return datetime.now(timezone.utc)


def parse_date(value):
    """Parse a YYYY-MM-DD string (or pass through a date)"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(value, '%Y-%m-%d').date()


def days_between(from_date, to_date):
    """Calculate days between two dates, both ends inclusive"""
    try:
        from_date = parse_date(from_date)
        to_date = parse_date(to_date)
    except (TypeError, ValueError):
        return 1
    return (to_date - from_date).days + 1


def _isoformat(value):
    return value.isoformat() if value is not None else None


class Identity:
    """The authenticated user a lifecycle operation acts on behalf of"""
    def __init__(self, id, name, role, department='', registration_number=''):
        self.id = id
        self.name = name
        self.role = role  # 'student', 'faculty', 'admin' or 'security_guard'
        self.department = department or ''
        self.registration_number = registration_number or ''

    @classmethod
    def from_user(cls, user):
        return cls(
            id=user['id'],
            name=user.get('name') or user.get('username'),
            role=user['role'],
            department=user.get('department'),
            registration_number=user.get('registration_number'),
        )

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'role': self.role,
            'department': self.department,
            'registration_number': self.registration_number,
        }


class LeaveRequest:
    """Leave model representing a student's leave application"""

    FIELDS = (
        'id', 'student_id', 'student_name', 'registration_number', 'department',
        'type', 'start_date', 'end_date', 'reason', 'status', 'applied_on',
        'responded_on', 'responded_by', 'remarks',
        'qr_code_token', 'qr_code_expires_at', 'is_scanned',
    )

    def __init__(self, id, student_id, student_name, registration_number, department,
                 type, start_date, end_date, reason, status=PENDING, applied_on=None,
                 responded_on=None, responded_by=None, remarks=None,
                 qr_code_token=None, qr_code_expires_at=None, is_scanned=None):
        self.id = id
        self.student_id = student_id
        self.student_name = student_name
        self.registration_number = registration_number
        self.department = department
        self.type = type
        self.start_date = start_date
        self.end_date = end_date
        self.reason = reason
        self.status = status  # 'pending', 'approved', 'rejected'
        self.applied_on = applied_on
        self.responded_on = responded_on
        self.responded_by = responded_by
        self.remarks = remarks
        self.qr_code_token = qr_code_token
        self.qr_code_expires_at = qr_code_expires_at
        self.is_scanned = is_scanned

    @classmethod
    def from_document(cls, document):
        return cls(**{field: document.get(field) for field in cls.FIELDS})

    def to_document(self):
        return {field: getattr(self, field) for field in self.FIELDS}

    @property
    def is_pending(self):
        return self.status == PENDING

    @property
    def days(self):
        return days_between(self.start_date, self.end_date)

    def to_dict(self):
        """JSON-friendly representation"""
        data = self.to_document()
        for field in ('start_date', 'end_date', 'applied_on', 'responded_on', 'qr_code_expires_at'):
            data[field] = _isoformat(data[field])
        data['days'] = self.days
        return data

    def __repr__(self):
        return '<LeaveRequest %s %s %s>' % (self.id, self.type, self.status)


class VerificationResult:
    """Outcome of scanning an exit pass"""
    def __init__(self, success, message, request=None):
        self.success = success
        self.message = message
        self.request = request

    def to_dict(self):
        return {
            'success': self.success,
            'message': self.message,
            'request': self.request.to_dict() if self.request is not None else None,
        }
