import os

# Must be set before anything imports storefront.core_settings
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("RUN_MIGRATIONS", "false")
os.environ.setdefault("SUBSCRIPTION_SWEEP_INTERVAL_SECONDS", "0")
os.environ.setdefault("JWT_SECRET", "test-secret-that-is-long-enough-for-hs256")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from datetime import datetime
from decimal import Decimal

import jwt
import pytest
from fastapi.testclient import TestClient

from storefront.core_settings import get_settings
from storefront.domain.models import Base, Product, StoreProfile
from storefront.infrastructure.db import engine, SessionLocal
from storefront.application.principal import Principal
from storefront.main import app


class RecordingNotifier:
    """Collects events instead of posting them."""

    def __init__(self):
        self.events = []

    def notify(self, event, payload):
        self.events.append((event, payload))

    def names(self):
        return [name for name, _ in self.events]


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture(autouse=True)
def schema():
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 1, 1))


@pytest.fixture
def customer():
    return Principal(id="user-1", email="alice@example.com", role="user")


@pytest.fixture
def other_customer():
    return Principal(id="user-2", email="bob@example.com", role="user")


@pytest.fixture
def admin():
    return Principal(id="admin-1", email="admin@example.com", role="admin")


@pytest.fixture
def products(db):
    """A stock-managed apple box and an unmanaged banana bunch."""
    apples = Product(name="Apple Box", price=Decimal("10.00"), images=["apples.jpg"], stock=5, category="fruit")
    bananas = Product(name="Banana Bunch", price=Decimal("5.00"), images=[], stock=None, category="fruit")
    db.add_all([apples, bananas])
    db.commit()
    return {"apples": apples.id, "bananas": bananas.id}


@pytest.fixture
def store_profiles(db):
    first = StoreProfile(name="FruitBowl Central", is_active=True)
    second = StoreProfile(name="FruitBowl Harbour", is_active=False)
    db.add_all([first, second])
    db.commit()
    return [first.id, second.id]


def make_token(sub: str, email: str = None, role: str = "user") -> str:
    settings = get_settings()
    claims = {"sub": sub, "role": role}
    if email:
        claims["email"] = email
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def auth_headers(sub: str, email: str = None, role: str = "user") -> dict:
    return {"Authorization": f"Bearer {make_token(sub, email, role)}"}


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def user_headers():
    return auth_headers("user-1", "alice@example.com")


@pytest.fixture
def admin_headers():
    return auth_headers("admin-1", "admin@example.com", role="admin")


def shipping_address() -> dict:
    return {
        "street": "1 Orchard Lane",
        "city": "Springfield",
        "state": "IL",
        "zip_code": "62701",
        "country": "USA",
    }


def customer_details(email: str = "alice@example.com") -> dict:
    return {
        "first_name": "Alice",
        "last_name": "Smith",
        "email": email,
        "phone": "+1-555-0100",
        "address": "1 Orchard Lane",
        "city": "Springfield",
        "state": "IL",
        "zip_code": "62701",
        "country": "USA",
    }
