"""Shared fixtures for the check-in tests."""
import os
from datetime import datetime, timedelta, timezone

import pytest

# Set testing environment before importing app
os.environ.setdefault('SECRET_KEY', 'test-secret-key')

from werkzeug.security import generate_password_hash

from app import create_app
from models import db

ADMIN_PASSWORD = "letmein"
CRON_SECRET = "cron-secret"

# 10:00 in New York on a school day
SCHOOL_MORNING = datetime(2026, 10, 19, 14, 0, 0, tzinfo=timezone.utc)


def eastern(hour, minute, second=0, day=19, month=10):
    """UTC instant for a New York wall-clock time in 2026 (EDT Apr-Oct, EST in winter)."""
    offset = 4 if 4 <= month <= 10 else 5
    return datetime(2026, month, day, hour, minute, second, tzinfo=timezone.utc) + timedelta(hours=offset)


class FakeClock:
    def __init__(self, start=SCHOOL_MORNING):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


def make_app(store="memory"):
    return create_app({
        "TESTING": True,
        "SECRET_KEY": "test-secret-key",
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "CHECKIN_STORE": store,
        "ADMIN_PASSWORD_HASH": generate_password_hash(ADMIN_PASSWORD),
        "CRON_SECRET": CRON_SECRET,
        "AUTO_LOGOUT_ENABLED": False,
    })


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(params=["memory", "sql"])
def app(request, clock):
    """The app once per store backend, with the ledger on a fake clock."""
    app = make_app(request.param)
    app.extensions["presence_ledger"].clock = clock
    app.extensions["auto_logout_sweeper"].clock = clock
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def sql_app(clock):
    app = make_app("sql")
    app.extensions["presence_ledger"].clock = clock
    app.extensions["auto_logout_sweeper"].clock = clock
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ledger(app):
    return app.extensions["presence_ledger"]


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_client(client):
    with client.session_transaction() as sess:
        sess['is_admin'] = True
    return client
