# Exceptions raised by the leave lifecycle, pass verification and storage layers

class LeaveError(Exception):
    """Base class for all leave management errors"""
    status_code = 400

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class ValidationError(LeaveError):
    """A required field is missing or a named policy check failed"""
    status_code = 400


class AuthorizationError(LeaveError):
    """The current session may not perform the operation"""
    status_code = 403


class AuthenticationError(AuthorizationError):
    """No user is logged in"""
    status_code = 401


class NotFoundError(LeaveError):
    status_code = 404


class InvalidStateError(LeaveError):
    """The request is not in a state that allows the operation"""
    status_code = 409


class StorageError(LeaveError):
    """The backing store failed"""
    status_code = 503
