"""
Shared fixtures: a throwaway SQLite database per test, a controllable clock,
the registry and pro status built on top of it, and a Flask test client.
"""

from datetime import datetime, timedelta, timezone

import pytest

from artqr.config import Settings
from artqr.database import create_db_engine, init_db
from artqr.gate import ProStatus
from artqr.registry import LinkRegistry
from artqr.server import create_app


class FakeClock:
    """Returns a fixed time until moved."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def set(self, when: datetime):
        self.now = when

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'test.db'}")
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return init_db(engine)


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def registry(session_factory, clock):
    return LinkRegistry(session_factory, clock=clock)


@pytest.fixture
def pro_status(session_factory):
    return ProStatus(session_factory)


@pytest.fixture
def settings():
    return Settings(_env_file=None, base_url="http://x.test", output_size=512)


@pytest.fixture
def client(registry, pro_status, settings):
    app = create_app(registry, pro_status, settings)
    app.config["TESTING"] = True
    with app.test_client() as test_client:
        yield test_client
