# Exit pass issuing and verification
#
# An approved leave request carries a single-use bearer token. Security
# scans (or types) the token at the gate; the first valid scan consumes it.

import io
import logging
import re
import secrets
import string
from datetime import timedelta, timezone

import qrcode

from models import LeaveRequest, VerificationResult, utc_now
from store import LEAVE_REQUESTS

logger = logging.getLogger(__name__)

PASS_VALIDITY = timedelta(hours=24)
TOKEN_ALPHABET = string.digits + string.ascii_uppercase
TOKEN_PATTERN = re.compile(r'^PASS-[A-Z0-9]{7}-\d+$')

INVALID = 'Invalid QR Code'
ALREADY_SCANNED = 'QR Code already used/scanned'
EXPIRED = 'QR Code expired'
VERIFIED = 'Verified Successfully'


def generate_token(now):
    """PASS-<7 base-36 chars>-<milliseconds since epoch>"""
    suffix = ''.join(secrets.choice(TOKEN_ALPHABET) for _ in range(7))
    return 'PASS-%s-%d' % (suffix, int(now.timestamp() * 1000))


def issue_credential(now):
    """Fields written onto a request at the moment it is approved"""
    return {
        'qr_code_token': generate_token(now),
        'qr_code_expires_at': now + PASS_VALIDITY,
        'is_scanned': False,
    }


def render_qr(token):
    """PNG bytes of a QR code encoding the pass token"""
    img = qrcode.make(token)
    buffer = io.BytesIO()
    img.save(buffer, format='PNG')
    return buffer.getvalue()


def _as_utc(moment):
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


class PassVerifier:
    """Checks a scanned token against its leave request and consumes it"""

    def __init__(self, store, clock=utc_now):
        self.store = store
        self.clock = clock

    def verify(self, token):
        """Validate a token; rules are checked in order and the first failure wins

        1. unknown token
        2. already scanned (replay is reported before staleness)
        3. expired
        4. mark scanned with a compare-and-set on is_scanned
        """
        token = token.strip() if isinstance(token, str) else ''
        documents = self.store.find(LEAVE_REQUESTS, {'qr_code_token': token}) if token else []
        if not documents:
            logger.info('Pass rejected: unknown token %r', token)
            return VerificationResult(False, INVALID)

        request = LeaveRequest.from_document(documents[0])
        if request.is_scanned:
            logger.info('Pass rejected: request %s already scanned', request.id)
            return VerificationResult(False, ALREADY_SCANNED)

        now = self.clock()
        if request.qr_code_expires_at and _as_utc(request.qr_code_expires_at) < now:
            logger.info('Pass rejected: request %s expired at %s', request.id, request.qr_code_expires_at)
            return VerificationResult(False, EXPIRED)

        if not self.store.update_if(LEAVE_REQUESTS, request.id, {'is_scanned': False}, {'is_scanned': True}):
            # another scan consumed the pass between our read and write
            logger.warning('Pass rejected: request %s consumed by a concurrent scan', request.id)
            return VerificationResult(False, ALREADY_SCANNED)

        request.is_scanned = True
        logger.info('Pass verified for request %s (%s)', request.id, request.student_name)
        return VerificationResult(True, VERIFIED, request)
