"""Shared fixtures: a controllable clock, engines on both stores, and the Flask app."""

from datetime import datetime, timedelta

import pytest

from app import create_app
from holds import HoldEngine
from models import db
from store import MemoryTicketStore, SqlTicketStore

ADMIN_PASSWORD = "letmein"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start=datetime(2025, 3, 1, 12, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(clock):
    return HoldEngine(MemoryTicketStore(), clock=clock)


@pytest.fixture
def app(clock):
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "SECRET_KEY": "test-secret",
        "ADMIN_PASSWORD": ADMIN_PASSWORD,
        "TICKET_STORE": "sql",
    })
    app.extensions["hold_engine"].clock = clock
    app.extensions["pricing_ledger"].clock = clock
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def sql_engine(app, clock):
    return HoldEngine(SqlTicketStore(), clock=clock)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_client(client):
    response = client.post("/admin/login", json={"password": ADMIN_PASSWORD})
    assert response.status_code == 200
    return client


@pytest.fixture
def runner(app):
    return app.test_cli_runner()
