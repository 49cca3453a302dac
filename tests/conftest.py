import os
import sys
from datetime import timedelta

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import pytest
from fastapi.testclient import TestClient

from errors import UpstreamFailure
from memory import memory_store
from payments import PaymentIntent
from schemas import utcnow


class FakeGateway:
    key_id = "rzp_test_key"

    def __init__(self):
        self.calls = []
        self.fail = False

    async def create_intent(self, amount_minor_units, currency, receipt):
        if self.fail:
            raise UpstreamFailure("Payment gateway request failed", "PAYMENT_GATEWAY_ERROR")
        self.calls.append((amount_minor_units, currency, receipt))
        return PaymentIntent(id=f"order_rzp_{len(self.calls)}", amount=amount_minor_units, currency=currency)


class FakeMailer:
    def __init__(self):
        self.sent = []
        self.fail = False

    async def send(self, to, subject, html_body):
        if self.fail:
            raise ConnectionError("smtp unavailable")
        self.sent.append({"to": to, "subject": subject, "html": html_body})


def add_product(store, name="Wireless Mouse", price=100.0, **extra):
    return store.products.table.insert({"name": name, "price": price, **extra})


def add_discount(store, code, discount_type="percentage", value=10, **extra):
    data = {
        "code": code,
        "discount_type": discount_type,
        "discount_value": value,
        "start_date": utcnow() - timedelta(days=1),
    }
    data.update(extra)
    return store.discounts.table.insert(data)


def add_user(store, email="buyer@example.com", username="buyer", role="user"):
    return store.users.table.insert({"email": email, "username": username, "role": role})


ADDRESS = {"street": "12 MG Road", "city": "Bengaluru", "state": "KA", "zip": "560001", "country": "IN"}


@pytest.fixture
def store():
    return memory_store()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def client(store, gateway, mailer):
    from main import app

    app.state.store = store
    app.state.gateway = gateway
    app.state.mailer = mailer
    with TestClient(app) as c:
        yield c
    app.state.store = None
    app.state.gateway = None
    app.state.mailer = None
