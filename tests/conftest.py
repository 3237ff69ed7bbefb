from contextlib import contextmanager
from datetime import datetime, timedelta

import pytest
from sqlalchemy import text

from app import create_app
from config import load_settings
from database import create_db_engine, init_db
from sync_service import SyncService


class FakeClock:
    """Ticks one second per call so server timestamps always move forward."""

    def __init__(self, start=datetime(2024, 1, 1, 9, 0, 0)):
        self.now = start

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


class FailingConnection:
    """Passes statements through until the `fail_at`-th one, which raises."""

    def __init__(self, conn, fail_at, error):
        self._conn = conn
        self.fail_at = fail_at
        self.error = error
        self.calls = 0

    def execute(self, statement, params=None):
        self.calls += 1
        if self.calls == self.fail_at:
            raise self.error
        return self._conn.execute(statement, params)

    def commit(self):
        self._conn.commit()


class FailingEngine:
    """Wraps a real engine; its connections fail on the `fail_at`-th statement."""

    def __init__(self, engine, fail_at, error):
        self._engine = engine
        self.dialect = engine.dialect
        self.fail_at = fail_at
        self.error = error

    @contextmanager
    def connect(self):
        with self._engine.connect() as conn:
            yield FailingConnection(conn, self.fail_at, self.error)


def sqlite_engine(path, **options):
    return create_db_engine(f"sqlite:///{path}", **options)


@pytest.fixture
def settings():
    return load_settings({"CORS_ORIGIN": "*", "ORDERS_MAX_LIMIT": "50"})


@pytest.fixture
def engine(tmp_path):
    engine = sqlite_engine(tmp_path / "sync.db", pool_size=3, pool_timeout=5)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sync_service(engine, clock):
    return SyncService(engine, clock=clock)


@pytest.fixture
def app(sync_service, settings):
    app = create_app(sync_service, settings)
    app.testing = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def count_rows(engine, table):
    with engine.connect() as conn:
        return conn.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar_one()
