"""
Pytest fixtures for the CRM engine test suite.

Provides:
- a Flask app on in-memory SQLite with all tables created
- ``session``: the Flask-SQLAlchemy session inside a pushed app context
- ``clock``: a FixedClock pinned to the current minute and installed as the
  app clock, which the lazy AMC expiry hook also reads
- small factories for users, clients, leads, quotations, invoices and AMCs
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from config import TestConfig
from crm import create_app, db
from crm.clock import FixedClock
from crm.engine import amc as amc_engine
from crm.engine import documents
from crm.logging_config import reset_logging
from crm.models import CallLog, Client, Lead, User
from factories import line


@pytest.fixture
def clock():
    return FixedClock(datetime.utcnow().replace(second=0, microsecond=0))


@pytest.fixture
def app(clock):
    reset_logging()
    app = create_app(TestConfig)
    app.extensions["crm_clock"] = clock
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def session(app):
    return db.session


# -------------------------
# Factories
# -------------------------
@pytest.fixture
def make_user(session):
    counter = {"n": 0}

    def _make(role="Admin", name=None):
        counter["n"] += 1
        n = counter["n"]
        user = User(email=f"user{n}@example.com", name=name or f"User {n}", role=role)
        user.set_password("secret")
        session.add(user)
        session.commit()
        return user

    return _make


@pytest.fixture
def admin(make_user):
    return make_user("Admin", "Asha Admin")


@pytest.fixture
def customer(session):
    c = Client(
        client_name="Acme Traders",
        company_name="Acme Traders Pvt Ltd",
        email="accounts@acme.example",
        gst_number="29ABCDE1234F1Z5",
        pan_number="ABCDE1234F",
        credit_limit=Decimal("250000.00"),
    )
    session.add(c)
    session.commit()
    return c


@pytest.fixture
def make_lead(session, clock):
    def _make(**kwargs):
        now = clock.now()
        kwargs.setdefault("contact_name", "Ravi Kumar")
        kwargs.setdefault("company_name", "Kumar Industries")
        kwargs.setdefault("status", "Open")
        kwargs.setdefault("stage", "New")
        kwargs.setdefault("created_at", now)
        kwargs.setdefault("updated_at", now)
        lead = Lead(**kwargs)
        session.add(lead)
        session.commit()
        return lead

    return _make


@pytest.fixture
def make_call(session, clock, admin):
    def _make(**kwargs):
        kwargs.setdefault("contact_person", "Meera Shah")
        kwargs.setdefault("outcome", "Connected")
        kwargs.setdefault("created_by_id", admin.id)
        kwargs.setdefault("created_at", clock.now())
        call = CallLog(**kwargs)
        session.add(call)
        session.commit()
        return call

    return _make


@pytest.fixture
def make_invoice(session, clock, customer):
    def _make(items=None, due_in_days=30, send=True, **kwargs):
        inv = documents.new_invoice(
            customer,
            items or [line(unit_price="10000")],
            clock=clock,
            due_date=clock.now() + timedelta(days=due_in_days),
            **kwargs,
        )
        if send:
            documents.send_invoice(inv, clock=clock)
        session.commit()
        return inv

    return _make


@pytest.fixture
def make_quotation(session, clock, customer):
    def _make(items=None, **kwargs):
        q = documents.new_quotation(
            customer, "Annual service proposal", items or [line(unit_price="5000", tax_rate=18)],
            clock=clock, **kwargs,
        )
        session.commit()
        return q

    return _make


@pytest.fixture
def make_amc(session, clock, customer):
    def _make(days=360, frequency="Monthly", start=None, **kwargs):
        start = start or clock.now()
        amc = amc_engine.new_contract(
            customer, "Chiller maintenance", "HVAC",
            start, start + timedelta(days=days), frequency,
            contract_value=kwargs.pop("contract_value", "120000"),
            clock=clock, **kwargs,
        )
        session.commit()
        return amc

    return _make


# -------------------------
# HTTP
# -------------------------
@pytest.fixture
def http(app):
    return app.test_client()


@pytest.fixture
def login(http):
    def _login(user):
        with http.session_transaction() as sess:
            sess["_user_id"] = str(user.id)
            sess["_fresh"] = True
        return http

    return _login
