# Document store used by the leave lifecycle and pass verification
#
# Both backends expose the same small interface over named collections:
#   find(collection, filters, order_by=None) -> list of documents
#   get(collection, id) -> document or None
#   insert(collection, document) -> id
#   update(collection, id, fields) -> bool
#   update_if(collection, id, expected, fields) -> bool (atomic)
#   delete(collection, id) -> bool

import logging
import threading
import uuid

import psycopg2
from psycopg2 import sql
from psycopg2.extras import RealDictCursor

from errors import StorageError
from models import LeaveRequest

logger = logging.getLogger(__name__)

USERS = 'users'
LEAVE_REQUESTS = 'leave_requests'

SCHEMA = {
    USERS: ('id', 'username', 'email', 'password_hash', 'name', 'role',
            'department', 'registration_number', 'created_at', 'active'),
    LEAVE_REQUESTS: LeaveRequest.FIELDS,
}

CREATE_TABLES = (
    '''
    CREATE TABLE IF NOT EXISTS users (
        id VARCHAR(64) PRIMARY KEY,
        username VARCHAR(255) UNIQUE NOT NULL,
        email VARCHAR(255) UNIQUE NOT NULL,
        password_hash VARCHAR(255) NOT NULL,
        name VARCHAR(255) NOT NULL,
        role VARCHAR(50) NOT NULL DEFAULT 'student',
        department VARCHAR(255) NOT NULL DEFAULT '',
        registration_number VARCHAR(255) NOT NULL DEFAULT '',
        created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
        active BOOLEAN NOT NULL DEFAULT TRUE
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS leave_requests (
        id VARCHAR(64) PRIMARY KEY,
        student_id VARCHAR(64) NOT NULL REFERENCES users (id) ON DELETE CASCADE,
        student_name VARCHAR(255) NOT NULL,
        registration_number VARCHAR(255) NOT NULL DEFAULT '',
        department VARCHAR(255) NOT NULL DEFAULT '',
        type VARCHAR(50) NOT NULL,
        start_date DATE NOT NULL,
        end_date DATE NOT NULL,
        reason TEXT NOT NULL,
        status VARCHAR(50) NOT NULL DEFAULT 'pending',
        applied_on DATE NOT NULL DEFAULT CURRENT_DATE,
        responded_on TIMESTAMPTZ,
        responded_by VARCHAR(255),
        remarks TEXT,
        qr_code_token VARCHAR(64) UNIQUE,
        qr_code_expires_at TIMESTAMPTZ,
        is_scanned BOOLEAN
    )
    ''',
    'ALTER TABLE users ADD COLUMN IF NOT EXISTS active BOOLEAN NOT NULL DEFAULT TRUE',
    'CREATE INDEX IF NOT EXISTS leave_requests_student_idx ON leave_requests (student_id, applied_on DESC)',
    'CREATE INDEX IF NOT EXISTS leave_requests_department_idx ON leave_requests (department, applied_on DESC)',
)


def new_id():
    return uuid.uuid4().hex


def _check_fields(collection, fields):
    if collection not in SCHEMA:
        raise StorageError('Unknown collection: %s' % collection)
    unknown = set(fields) - set(SCHEMA[collection])
    if unknown:
        raise StorageError('Unknown fields for %s: %s' % (collection, ', '.join(sorted(unknown))))


class PostgresStore:
    """Documents stored as rows, one table per collection"""

    supports_ordered_query = True

    def __init__(self, dsn):
        self.dsn = dsn

    def get_connection(self):
        """Get database connection"""
        conn = psycopg2.connect(self.dsn)
        conn.autocommit = True
        return conn

    def _execute(self, query, params=(), fetch=False):
        try:
            conn = self.get_connection()
            try:
                cursor = conn.cursor(cursor_factory=RealDictCursor)
                cursor.execute(query, params)
                if fetch:
                    return [dict(row) for row in cursor.fetchall()]
                return cursor.rowcount
            finally:
                conn.close()
        except psycopg2.Error as e:
            logger.exception('Database operation failed')
            raise StorageError('Database operation failed: %s' % e) from e

    def init_schema(self):
        """Initialize database with tables"""
        for statement in CREATE_TABLES:
            self._execute(statement)

    def drop_schema(self):
        self._execute('DROP TABLE IF EXISTS leave_requests CASCADE')
        self._execute('DROP TABLE IF EXISTS users CASCADE')

    @staticmethod
    def _conditions(filters):
        clauses = []
        params = []
        for field, value in filters.items():
            if value is None:
                clauses.append(sql.SQL('{} IS NULL').format(sql.Identifier(field)))
            else:
                clauses.append(sql.SQL('{} = %s').format(sql.Identifier(field)))
                params.append(value)
        return clauses, params

    def find(self, collection, filters=None, order_by=None):
        filters = filters or {}
        _check_fields(collection, list(filters) + ([order_by[0]] if order_by else []))
        query = sql.SQL('SELECT * FROM {}').format(sql.Identifier(collection))
        clauses, params = self._conditions(filters)
        if clauses:
            query += sql.SQL(' WHERE ') + sql.SQL(' AND ').join(clauses)
        if order_by:
            field, descending = order_by
            query += sql.SQL(' ORDER BY {} {}').format(
                sql.Identifier(field), sql.SQL('DESC' if descending else 'ASC'))
        return self._execute(query, params, fetch=True)

    def get(self, collection, id):
        rows = self.find(collection, {'id': id})
        return rows[0] if rows else None

    def insert(self, collection, document):
        document = dict(document)
        document['id'] = document.get('id') or new_id()
        _check_fields(collection, document)
        columns = list(document)
        query = sql.SQL('INSERT INTO {} ({}) VALUES ({})').format(
            sql.Identifier(collection),
            sql.SQL(', ').join(sql.Identifier(c) for c in columns),
            sql.SQL(', ').join(sql.Placeholder() for _ in columns),
        )
        self._execute(query, [document[c] for c in columns])
        return document['id']

    def update(self, collection, id, fields):
        return self.update_if(collection, id, {}, fields)

    def update_if(self, collection, id, expected, fields):
        _check_fields(collection, list(fields) + list(expected))
        assignments = sql.SQL(', ').join(
            sql.SQL('{} = %s').format(sql.Identifier(f)) for f in fields)
        clauses, params = self._conditions(dict(expected, id=id))
        query = sql.SQL('UPDATE {} SET {} WHERE {}').format(
            sql.Identifier(collection), assignments, sql.SQL(' AND ').join(clauses))
        return self._execute(query, list(fields.values()) + params) > 0

    def delete(self, collection, id):
        _check_fields(collection, ['id'])
        query = sql.SQL('DELETE FROM {} WHERE id = %s').format(sql.Identifier(collection))
        return self._execute(query, [id]) > 0


class MemoryStore:
    """In-process store for demos and tests

    Set supports_ordered_query=False to behave like a backend without a
    composite index: find() then refuses to order results.
    """

    def __init__(self, supports_ordered_query=True):
        self.supports_ordered_query = supports_ordered_query
        self._collections = {name: {} for name in SCHEMA}
        self._lock = threading.Lock()

    def _collection(self, collection):
        if collection not in self._collections:
            raise StorageError('Unknown collection: %s' % collection)
        return self._collections[collection]

    @staticmethod
    def _matches(document, filters):
        return all(document.get(field) == value for field, value in filters.items())

    def find(self, collection, filters=None, order_by=None):
        if order_by and not self.supports_ordered_query:
            raise StorageError('Ordered queries are not supported by this store')
        filters = filters or {}
        with self._lock:
            documents = [dict(d) for d in self._collection(collection).values()
                         if self._matches(d, filters)]
        if order_by:
            field, descending = order_by
            documents.sort(key=lambda d: d[field], reverse=descending)
        return documents

    def get(self, collection, id):
        with self._lock:
            document = self._collection(collection).get(id)
            return dict(document) if document is not None else None

    def insert(self, collection, document):
        _check_fields(collection, document)
        document = dict(document)
        document['id'] = document.get('id') or new_id()
        with self._lock:
            documents = self._collection(collection)
            if document['id'] in documents:
                raise StorageError('Duplicate id: %s' % document['id'])
            documents[document['id']] = document
        return document['id']

    def update(self, collection, id, fields):
        return self.update_if(collection, id, {}, fields)

    def update_if(self, collection, id, expected, fields):
        _check_fields(collection, list(fields) + list(expected))
        with self._lock:
            document = self._collection(collection).get(id)
            if document is None or not self._matches(document, expected):
                return False
            document.update(fields)
            return True

    def delete(self, collection, id):
        with self._lock:
            return self._collection(collection).pop(id, None) is not None
