# Leave request lifecycle: create, respond and the filtered views over requests

import logging
from collections import Counter

from errors import InvalidStateError, NotFoundError, ValidationError
from models import (APPROVED, LEAVE_ALLOWANCE, LEAVE_TYPES, PENDING, REJECTED,
                    STATUSES, LeaveRequest, days_between, parse_date, utc_now)
from passes import issue_credential
from store import LEAVE_REQUESTS

logger = logging.getLogger(__name__)

DECISIONS = {
    'approve': APPROVED,
    'reject': REJECTED,
}

NEWEST_FIRST = ('applied_on', True)


def check_date_order(start_date, end_date):
    """The leave must not end before it starts"""
    if end_date < start_date:
        raise ValidationError('End date cannot be earlier than start date')


def leave_balance(requests):
    """Days used and remaining per leave kind, counting approved requests only"""
    used = Counter()
    for request in requests:
        if request.status == APPROVED and request.type in LEAVE_ALLOWANCE:
            used[request.type] += request.days
    return {
        kind: {
            'used': used[kind],
            'total': total,
            'remaining': max(total - used[kind], 0),
        }
        for kind, total in LEAVE_ALLOWANCE.items()
    }


def check_balance(requests, leave_type, days):
    """The requested days must fit in what is left of the yearly allowance"""
    if leave_type not in LEAVE_ALLOWANCE:
        return
    remaining = leave_balance(requests)[leave_type]['remaining']
    if days > remaining:
        raise ValidationError('Only %d %s leave day(s) remaining' % (remaining, leave_type))


def summarize(requests):
    """Totals for the admin reports page"""
    requests = list(requests)
    by_status = Counter({status: 0 for status in STATUSES})
    by_status.update(r.status for r in requests)
    return {
        'total': len(requests),
        'by_status': dict(by_status),
        'by_type': dict(Counter(r.type for r in requests)),
        'by_department': dict(Counter(r.department or 'Unassigned' for r in requests)),
        'passes_scanned': sum(1 for r in requests if r.is_scanned),
    }


class LeaveManager:
    """Owns the state transitions of leave requests

    pending -> approved | rejected; both outcomes are terminal.
    """

    def __init__(self, store, clock=utc_now, enforce_date_order=True, enforce_balance=False):
        self.store = store
        self.clock = clock
        self.enforce_date_order = enforce_date_order
        self.enforce_balance = enforce_balance

    def create(self, requester, type, start_date, end_date, reason):
        """Submit a new leave request on behalf of requester"""
        if requester is None or not requester.id or not requester.name:
            raise ValidationError('Requester identity is required')
        for name, value in (('type', type), ('reason', reason)):
            if value is not None and not isinstance(value, str):
                raise ValidationError('%s must be text' % name)
        missing = [name for name, value in (('type', type), ('start_date', start_date),
                                            ('end_date', end_date), ('reason', reason))
                   if not value or not str(value).strip()]
        if missing:
            raise ValidationError('Missing required field(s): %s' % ', '.join(missing))
        if type not in LEAVE_TYPES:
            raise ValidationError('Unknown leave type: %s' % type)
        try:
            start = parse_date(start_date)
            end = parse_date(end_date)
        except (TypeError, ValueError):
            raise ValidationError('Invalid date format')

        if self.enforce_date_order:
            check_date_order(start, end)
        if self.enforce_balance:
            check_balance(self.list_by_requester(requester.id), type, days_between(start, end))

        request = LeaveRequest(
            id=None,
            student_id=requester.id,
            student_name=requester.name,
            registration_number=requester.registration_number,
            department=requester.department,
            type=type,
            start_date=start,
            end_date=end,
            reason=reason.strip(),
            status=PENDING,
            applied_on=self.clock().date(),
        )
        document = request.to_document()
        del document['id']
        request.id = self.store.insert(LEAVE_REQUESTS, document)
        logger.info('Leave request %s created by %s (%s, %s to %s)',
                    request.id, requester.name, type, start, end)
        return request

    def get(self, request_id):
        document = self.store.get(LEAVE_REQUESTS, request_id)
        if document is None:
            raise NotFoundError('Leave request %s not found' % request_id)
        return LeaveRequest.from_document(document)

    def respond(self, request_id, decision, responder, remarks=None):
        """Approve or reject a pending request; approval issues an exit pass"""
        if not isinstance(decision, str) or decision not in DECISIONS:
            raise ValidationError('Invalid action: %s' % decision)
        if remarks is not None and not isinstance(remarks, str):
            raise ValidationError('remarks must be text')
        request = self.get(request_id)
        if not request.is_pending:
            raise InvalidStateError('Leave request %s has already been %s' % (request_id, request.status))

        now = self.clock()
        updates = {
            'status': DECISIONS[decision],
            'responded_on': now,
            'responded_by': (responder.name if responder is not None else None) or 'Unknown Faculty',
            'remarks': remarks or None,
        }
        if decision == 'approve':
            updates.update(issue_credential(now))

        # the pending check and the write happen in one conditional update
        if not self.store.update_if(LEAVE_REQUESTS, request_id, {'status': PENDING}, updates):
            current = self.get(request_id)
            raise InvalidStateError('Leave request %s has already been %s' % (request_id, current.status))

        for field, value in updates.items():
            setattr(request, field, value)
        logger.info('Leave request %s %s by %s', request_id, request.status, updates['responded_by'])
        return request

    def _list(self, filters):
        if self.store.supports_ordered_query:
            documents = self.store.find(LEAVE_REQUESTS, filters, order_by=NEWEST_FIRST)
        else:
            documents = self.store.find(LEAVE_REQUESTS, filters)
            documents.sort(key=lambda d: str(d['applied_on']), reverse=True)
        return [LeaveRequest.from_document(d) for d in documents]

    def list_by_requester(self, student_id):
        return self._list({'student_id': student_id})

    def list_by_department(self, department):
        return self._list({'department': department})

    def list_all(self):
        return self._list({})

    def balance_for(self, student_id):
        return leave_balance(self.list_by_requester(student_id))
