"""Pytest configuration and fixtures."""

import mongomock
import pytest
from fastapi.testclient import TestClient

import database
import main
from auth import Principal, get_identity_verifier
from errors import ForbiddenError
from gateway import get_payment_gateway

ADMIN_EMAIL = "admin@x.com"
AGENT_EMAIL = "a@x.com"
BUYER_EMAIL = "b@x.com"
OTHER_BUYER_EMAIL = "c@x.com"


class FakeVerifier:
    """Identity verifier that accepts a fixed set of tokens."""

    def __init__(self) -> None:
        self.tokens = {
            "admin-token": Principal(uid="uid-admin", email=ADMIN_EMAIL),
            "agent-token": Principal(uid="uid-agent", email=AGENT_EMAIL),
            "buyer-token": Principal(uid="uid-buyer", email=BUYER_EMAIL),
            "other-buyer-token": Principal(uid="uid-other", email=OTHER_BUYER_EMAIL),
            # phone or anonymous sign-in: no email claim
            "anonymous-token": Principal(uid="uid-anon"),
        }
        self.deleted: list[str] = []

    def verify(self, token: str) -> Principal:
        if token not in self.tokens:
            raise ForbiddenError("Forbidden access")
        return self.tokens[token]

    def delete_user(self, uid: str) -> None:
        self.deleted.append(uid)


class FakeGateway:
    """Payment gateway that records calls instead of contacting Stripe."""

    def __init__(self) -> None:
        self.calls: list[tuple] = []

    def create_intent(self, amount: int, currency: str, idempotency_key=None) -> str:
        self.calls.append((amount, currency, idempotency_key))
        return f"pi_{len(self.calls)}_secret_test"


@pytest.fixture
def db(monkeypatch):
    """Fresh in-memory database installed as the application's store."""
    mock_db = mongomock.MongoClient()["realEstate_test"]
    database.ensure_indexes(mock_db)
    monkeypatch.setattr(database, "db", mock_db)
    return mock_db


@pytest.fixture
def verifier() -> FakeVerifier:
    return FakeVerifier()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def client(db, verifier, gateway):
    main.app.dependency_overrides[get_identity_verifier] = lambda: verifier
    main.app.dependency_overrides[get_payment_gateway] = lambda: gateway
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture
def headers() -> dict[str, dict[str, str]]:
    """Authorization headers keyed by role name."""
    return {
        name: {"Authorization": f"Bearer {name}-token"}
        for name in ("admin", "agent", "buyer", "other-buyer", "anonymous")
    }


@pytest.fixture
def admin(db) -> dict:
    doc = {"email": ADMIN_EMAIL, "role": "admin", "status": "normal"}
    db[database.USERS].insert_one(doc)
    return doc


@pytest.fixture
def agent(db) -> dict:
    doc = {"email": AGENT_EMAIL, "name": "Agent A", "role": "agent", "status": "normal"}
    db[database.USERS].insert_one(doc)
    return doc


@pytest.fixture
def listing(db, agent) -> str:
    """A pending property owned by the agent; returns its id."""
    result = db[database.PROPERTIES].insert_one(
        {
            "title": "Lake House",
            "location": "Dhaka, Gulshan",
            "agent_name": "Agent A",
            "agent_email": AGENT_EMAIL,
            "minPrice": 100.0,
            "maxPrice": 200.0,
            "status": "verified",
            "isAdvertised": False,
        }
    )
    return str(result.inserted_id)
