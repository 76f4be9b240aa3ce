import os

# Settings are read at import time; point everything at in-process fakes first.
os.environ["POSTGRES_DSN"] = "sqlite://"
os.environ["KAFKA_BOOTSTRAP"] = ""
os.environ["JWT_SECRET"] = "test-secret"

import fakeredis
import pytest
from fastapi.testclient import TestClient

from storefront.api.deps import get_idempotency_store
from storefront.core.identity import GuestIdentity, UserIdentity
from storefront.db.models import Address, Product, User
from storefront.db.session import Base, SessionLocal, engine
from storefront.main import app
from storefront.security.utils import create_access_token, hash_password
from storefront.services.idempotency import IdempotencyStore


@pytest.fixture(autouse=True)
def schema():
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture()
def db():
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture()
def products(db):
    rows = {
        "tee": Product(sku="TEE-001", name="Basic Tee", price=100000, stock=5, is_active=True),
        "cap": Product(sku="CAP-001", name="Twill Cap", price=85000, stock=10, is_active=True),
        "hoodie": Product(sku="HOOD-001", name="Hoodie", price=325000, stock=2, is_active=True),
        "retired": Product(sku="OLD-001", name="Retired Mug", price=50000, stock=3, is_active=False),
    }
    db.add_all(rows.values())
    db.commit()
    return rows


def make_user(db, email="ana@example.com", name="Ana Putri", phone="081234567890"):
    user = User(name=name, email=email, phone=phone, password_hash=hash_password("secret-pass"))
    db.add(user)
    db.commit()
    return user


@pytest.fixture()
def user(db):
    return make_user(db)


@pytest.fixture()
def other_user(db):
    return make_user(db, email="budi@example.com", name="Budi Santoso")


def address_fields(**overrides):
    fields = {
        "label": "Home",
        "recipient_name": "Ana Putri",
        "phone_number": "081234567890",
        "street_address": "Jl. Merdeka No. 10",
        "village": "Gambir",
        "district": "Gambir",
        "city": "Jakarta Pusat",
        "state": "DKI Jakarta",
        "postal_code": "10110",
    }
    fields.update(overrides)
    return fields


def add_address(db, user_id, **overrides):
    address = Address(user_id=user_id, is_default=overrides.pop("is_default", True), **address_fields(**overrides))
    db.add(address)
    db.commit()
    return address


def token_for(user):
    token, _ = create_access_token(user.id, user.email)
    return token


@pytest.fixture()
def user_identity(user):
    return UserIdentity(user_id=user.id, email=user.email)


@pytest.fixture()
def guest_identity():
    return GuestIdentity(session_id="guest-session-token-0001")


@pytest.fixture()
def fake_redis():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture()
def client(fake_redis):
    app.dependency_overrides[get_idempotency_store] = lambda: IdempotencyStore(fake_redis)
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def user_client(client, user):
    client.cookies.set("token", token_for(user))
    return client
