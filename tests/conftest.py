import fnmatch
import importlib

import pytest
import redis

from apps import create_app
from apps.config import TestingConfig

# Modules that borrow connections through ``from apps import get_db_connection``
DB_MODULES = [
    'apps.statistics.queries',
    'apps.hierarchy.routes',
    'apps.authentication.routes',
    'apps.password_reset.routes',
    'apps.submissions.routes',
]


def _normalize(sql):
    return ' '.join(sql.split())


class FakeDatabase:
    """
    Canned query results keyed by a fragment of the SQL text.

    The most recently registered fragment found in a query wins. Results
    may be a list of rows or a callable taking the query params.
    """

    def __init__(self):
        self.responses = []
        self.executed = []
        self.commits = 0
        self.rollbacks = 0
        self.lastrowid = 0
        self.error = None

    def on(self, fragment, rows):
        self.responses.append((_normalize(fragment), rows))

    def match(self, query, params):
        query = _normalize(query)
        for fragment, rows in reversed(self.responses):
            if fragment in query:
                return rows(params) if callable(rows) else rows
        return []

    def queries(self, fragment):
        fragment = _normalize(fragment)
        return [(sql, params) for sql, params in self.executed if fragment in sql]


class FakeCursor:
    def __init__(self, db):
        self.db = db
        self.lastrowid = None
        self._result = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        pass

    def execute(self, query, params=None):
        if self.db.error is not None:
            raise self.db.error
        self.db.executed.append((_normalize(query), params))
        self._result = self.db.match(query, params)
        if query.lstrip().upper().startswith('INSERT'):
            self.db.lastrowid += 1
            self.lastrowid = self.db.lastrowid

    def fetchall(self):
        return [dict(row) for row in self._result]

    def fetchone(self):
        return dict(self._result[0]) if self._result else None

    def close(self):
        pass


class FakeConnection:
    def __init__(self, db):
        self.db = db

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type:
            self.rollback()

    def cursor(self, *args, **kwargs):
        return FakeCursor(self.db)

    def commit(self):
        self.db.commits += 1

    def rollback(self):
        self.db.rollbacks += 1

    def close(self):
        pass


class FakeRedis:
    def __init__(self):
        self.store = {}
        self.ttls = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise redis.ConnectionError("redis is down")

    def get(self, key):
        self._check()
        return self.store.get(key)

    def set(self, key, value, ex=None):
        self._check()
        self.store[key] = value
        self.ttls[key] = ex
        return True

    def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    def scan_iter(self, match='*'):
        self._check()
        return [key for key in list(self.store) if fnmatch.fnmatchcase(key, match)]


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db(monkeypatch):
    fake = FakeDatabase()
    for name in DB_MODULES:
        module = importlib.import_module(name)
        monkeypatch.setattr(module, 'get_db_connection', lambda: FakeConnection(fake))
    return fake


@pytest.fixture
def cache(app):
    fake = FakeRedis()
    app.extensions['redis'] = fake
    return fake


@pytest.fixture
def login(client, db):
    """Put a signed-in user in the test client's session."""
    def _login(user_id=1, role='admin', token='session-token'):
        db.on('FROM sessions WHERE token', [{'user_id': user_id}])
        with client.session_transaction() as sess:
            sess['loggedin'] = True
            sess['id'] = user_id
            sess['token'] = token
            sess['role'] = role
        return user_id
    return _login
