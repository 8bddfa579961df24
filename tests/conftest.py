"""Shared test fixtures."""
import os

os.environ.setdefault('DATABASE_URL', 'sqlite:///:memory:')

import itertools
from collections import defaultdict
from unittest.mock import patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from command_center.database import Base
from command_center.errors import PersistenceError
from command_center.services.registry import DatabaseRegistry


# ── Redis fake ───────────────────────────────────────────────────────────────

class FakeRedis:
    """Minimal in-memory Redis fake (strings, hashes, lists, pipelines)."""

    def __init__(self):
        self.get_store = {}
        self.hash_store = {}

    def get(self, key):
        return self.get_store.get(key)

    def set(self, key, value):
        self.get_store[key] = str(value)

    def incr(self, key):
        val = int(self.get_store.get(key, 0)) + 1
        self.get_store[key] = str(val)
        return val

    def delete(self, *keys):
        for k in keys:
            self.get_store.pop(k, None)
            self.hash_store.pop(k, None)

    def hset(self, key, field, value):
        self.hash_store.setdefault(key, {})[field] = value

    def hincrby(self, key, field, amount):
        h = self.hash_store.setdefault(key, {})
        h[field] = str(int(h.get(field, 0)) + amount)

    def hgetall(self, key):
        return dict(self.hash_store.get(key, {}))

    def llen(self, key):
        return 0

    def pipeline(self):
        return FakePipeline(self)


class FakePipeline:
    """Queues calls and applies them to the FakeRedis on execute()."""

    def __init__(self, redis):
        self._redis = redis
        self._ops = []

    def __getattr__(self, name):
        def _queue(*args):
            self._ops.append((name, args))
            return self
        return _queue

    def execute(self):
        for name, args in self._ops:
            getattr(self._redis, name)(*args)
        self._ops = []


@pytest.fixture(autouse=True)
def fake_redis():
    """Route every Redis use (breakers, stats) to an in-memory fake."""
    from command_center.services import circuit_breaker
    fake = FakeRedis()
    saved = dict(circuit_breaker._registry)
    circuit_breaker._registry.clear()
    with patch('command_center.extensions.redis_client', fake):
        yield fake
    circuit_breaker._registry.clear()
    circuit_breaker._registry.update(saved)


# ── Command center DB (retry queue) ──────────────────────────────────────────

@pytest.fixture
def db_engine():
    """In-memory SQLite engine with schema created."""
    engine = create_engine('sqlite:///:memory:')
    import command_center.models.sync_failure  # noqa: F401
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    """Session bound to in-memory SQLite. Rolls back after each test."""
    Session = sessionmaker(bind=db_engine)
    session = Session()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def sync_sessions(db_engine):
    """
    Route get_session() inside services.sync_queue to the in-memory engine.

    The module binds get_session at import time, so patch the local name.
    Each call returns a new session on the same engine so close() in
    production code leaves the test DB intact.
    """
    TestSession = sessionmaker(bind=db_engine)
    with patch('command_center.services.sync_queue.get_session', side_effect=lambda: TestSession()):
        yield TestSession


# ── Registry + fake tenant stores ────────────────────────────────────────────

TEST_DATABASES = {
    'pitchModularSpaces': {
        'name': 'Pitch Modular Spaces', 'url': 'https://master.example.supabase.co',
        'anon_key': 'master-anon', 'service_key': 'master-service',
        'is_master': True, 'sync_to': None,
    },
    'pitchMarketingAgency': {
        'name': 'Pitch Marketing Agency', 'url': 'https://agency.example.supabase.co',
        'anon_key': 'agency-anon', 'service_key': 'agency-service',
        'is_master': False, 'sync_to': 'pitchModularSpaces',
    },
    'creditprenuers': {
        'name': 'CreditPreneurs', 'url': 'https://credit.example.supabase.co',
        'anon_key': 'credit-anon', 'service_key': 'credit-service',
        'is_master': False, 'sync_to': 'pitchMarketingAgency',
    },
    'coyslogistics': {
        'name': 'Coys Logistics', 'url': 'https://coys.example.supabase.co',
        'anon_key': 'coys-anon', 'service_key': 'coys-service',
        'is_master': False, 'sync_to': 'pitchMarketingAgency',
    },
}


@pytest.fixture
def test_databases():
    return TEST_DATABASES


@pytest.fixture
def registry():
    return DatabaseRegistry.from_config(TEST_DATABASES)


class FakeTenantClient:
    """Stands in for TenantClient against FakeStores tables."""

    def __init__(self, stores, db, elevated):
        self.stores = stores
        self.db = db
        self.elevated = elevated

    def _check(self, op, table):
        self.stores.calls.append((self.db, op, table, self.elevated))
        if self.db in self.stores.failing:
            raise PersistenceError(f"{self.db} {op} {table} → 503 unavailable", db=self.db, status_code=503)

    def _table(self, table):
        return self.stores.tables[self.db][table]

    def _new_row(self, table, row):
        stored = dict(row)
        stored['id'] = f'{self.db}-{next(self.stores.ids)}'
        self._table(table).append(stored)
        return dict(stored)

    def insert(self, table, row):
        self._check('insert', table)
        return self._new_row(table, row)

    def upsert(self, table, row, on_conflict):
        self._check('upsert', table)
        keys = on_conflict.split(',')
        for existing in self._table(table):
            if all(existing.get(k) == row.get(k) for k in keys):
                existing.update(row)
                return [dict(existing)]
        return [self._new_row(table, row)]

    def select(self, table, since=None, limit=1000):
        self._check('select', table)
        rows = [r for r in self._table(table) if since is None or r.get('created_at', '') >= since]
        rows.sort(key=lambda r: r.get('created_at', ''))
        return [dict(r) for r in rows[:limit]]

    def update(self, table, row_id, values):
        self._check('update', table)
        for existing in self._table(table):
            if existing['id'] == row_id:
                existing.update(values)
                return [dict(existing)]
        return []


class FakeStores:
    """In-memory tenant databases keyed by registry key, then table name."""

    def __init__(self):
        self.tables = defaultdict(lambda: defaultdict(list))
        self.ids = itertools.count(1)
        self.failing = set()
        self.unconfigured = set()
        self.calls = []

    def client_factory(self, registry, db_key, elevated=False):
        if db_key in self.unconfigured or db_key not in registry:
            return None
        return FakeTenantClient(self, db_key, elevated)

    def rows(self, db, table='crm_leads'):
        return self.tables[db][table]

    def writes_to(self, db):
        return [c for c in self.calls if c[0] == db and c[1] in ('insert', 'upsert')]


@pytest.fixture
def stores():
    return FakeStores()


@pytest.fixture
def sync_service(registry, stores):
    """UplineSync over the test registry + fake stores; dispatch is recorded, not queued."""
    from command_center.services.sync import UplineSync
    return UplineSync(registry, client_factory=stores.client_factory, stamp_local=False)


@pytest.fixture
def sample_lead():
    return {
        'name': 'Dana Whitfield',
        'email': 'dana@example.com',
        'phone': '+1-555-0100',
        'message': 'Interested in the membership',
        'utm_source': 'facebook',
        'utm_campaign': 'spring-credit',
    }


# ── Flask ────────────────────────────────────────────────────────────────────

@pytest.fixture
def app():
    """Flask test app."""
    from command_center import create_app
    app = create_app()
    app.config['TESTING'] = True
    yield app


@pytest.fixture
def client(app):
    """Flask test client."""
    with app.test_client() as c:
        yield c
