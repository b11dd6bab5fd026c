"""
Shared fixtures: a fresh app with an in-memory database per test, a Ledger
bound to it, and an account factory.
"""
import itertools
import os
from decimal import Decimal

import pytest

os.environ.setdefault("FLASK_ENV", "testing")

from app import create_app
from config import TestConfig
from extensions import db
from ledger.service import Ledger

PASSWORD = "secret123"
ADMIN_PASSWORD = "admin-pass-1"


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        Ledger(db.session, app.config).settings.ensure_defaults()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def app_ctx(app):
    with app.app_context():
        yield app


@pytest.fixture
def ledger(app_ctx):
    return Ledger(db.session, app_ctx.config)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_account(ledger):
    counter = itertools.count(1)

    def _make(balance=0, kyc_status="unverified", is_admin=False, password=PASSWORD,
              referral_code=None, name=None, email=None, uid=None):
        n = next(counter)
        account = ledger.accounts.create_account(
            name or f"test user {n}",
            email or f"user{n}@example.com",
            password,
            referral_code=referral_code,
            is_admin=is_admin,
            uid=uid,
        )
        if balance:
            account.balance = Decimal(str(balance))
            ledger.store.refresh_vip(account)
        account.kyc_status = kyc_status
        ledger.store.save()
        return account

    return _make


@pytest.fixture
def admin(make_account):
    return make_account(is_admin=True, password=ADMIN_PASSWORD, name="site admin", email="admin@fortress.com")
