"""
Shared fixtures for the pizza service test suite.

Every test gets its own data directory. Outbound HTTP goes to the mock
gateway apps in mock_services through httpx.ASGITransport, so nothing
leaves the process.
"""

import os

# Settings are read at import time; keep tests off the real log file and data dir.
os.environ.setdefault("LOG_FILE", "")
os.environ.setdefault("DATA_DIR", os.path.join(os.path.dirname(__file__), ".data"))

import httpx
import pytest
import pytest_asyncio

from mock_services import mock_mail_service, mock_payment_service
from pizza_service.catalog import Catalog
from pizza_service.clients import MailClient, PaymentClient
from pizza_service.datastore import DataStore
from pizza_service.models import UserCreateRequest
from pizza_service.orders import OrderLifecycle
from pizza_service.tokens import TokenService
from pizza_service.users import UserLedger
from pizza_service.workflow import CheckoutWorkflow

MAIL_DOMAIN = "mg.pizza.test"
PASSWORD = "correct-horse"


@pytest.fixture(autouse=True)
def reset_mock_gateways():
    mock_payment_service.charges_by_key.clear()
    mock_mail_service.outbox.clear()
    yield
    mock_payment_service.charges_by_key.clear()
    mock_mail_service.outbox.clear()


@pytest.fixture
def store(tmp_path):
    return DataStore(tmp_path / "data")


@pytest_asyncio.fixture
async def payment():
    client = PaymentClient(
        base_url="http://payment.test",
        secret_key="sk_test_123",
        transport=httpx.ASGITransport(app=mock_payment_service.app),
    )
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def mailer():
    client = MailClient(
        base_url="http://mail.test",
        api_key="key-test",
        domain=MAIL_DOMAIN,
        transport=httpx.ASGITransport(app=mock_mail_service.app),
    )
    yield client
    await client.aclose()


@pytest.fixture
def catalog(store):
    return Catalog(store)


@pytest_asyncio.fixture
async def menu(catalog):
    """A small catalog keyed by a short name."""
    return {
        "margherita": await catalog.create("Margherita", 10.00, "Tomato, mozzarella, basil"),
        "pepperoni": await catalog.create("Pepperoni", 12.50, "Spicy salami"),
        "itemX": await catalog.create("Garlic Bread", 7.50),
        "cola": await catalog.create("Cola", 2.50, "0.5l"),
    }


@pytest.fixture
def tokens(store):
    return TokenService(store)


@pytest.fixture
def users(store, catalog):
    return UserLedger(store, catalog)


@pytest.fixture
def orders(store, catalog, payment, mailer):
    return OrderLifecycle(store, catalog, payment, mailer)


@pytest_asyncio.fixture
async def workflow(tokens, users, orders):
    flow = CheckoutWorkflow(tokens, users, orders)
    yield flow
    await flow.background.drain()


def new_user_request(email="mario@pizza.com", **overrides):
    fields = {
        "email": email,
        "password": PASSWORD,
        "firstName": "Mario",
        "lastName": "Rossi",
        "tosAgreement": True,
        "streetAddress": "Via Roma 1",
    }
    fields.update(overrides)
    return UserCreateRequest(**fields)


@pytest_asyncio.fixture
async def user(users):
    return await users.create(new_user_request())
