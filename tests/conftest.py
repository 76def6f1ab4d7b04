import hashlib
import hmac
import json
import time

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from vtc_api.config import Settings
from vtc_api.database import Database
from vtc_api.main import create_app
from vtc_api.stripe_service import IntentSnapshot

WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test.db"


@pytest.fixture
def settings(db_path):
    return Settings(
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret=WEBHOOK_SECRET,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        jwt_secret="test-jwt-secret",
        env="test",
    )


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as c:
        yield c


@pytest.fixture
def TestingSessionLocal(db_path, client):
    # sync view of the same SQLite file, for asserting on stored rows
    engine = create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
async def database(db_path):
    db = Database(f"sqlite+aiosqlite:///{db_path}")
    await db.connect()
    yield db
    await db.disconnect()


@pytest.fixture
def sign():
    """Build a Stripe-Signature header for a payload."""

    def _sign(payload: str, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
        timestamp = timestamp or int(time.time())
        signed = f"{timestamp}.{payload}".encode("utf-8")
        signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={signature}"

    return _sign


@pytest.fixture
def make_event():
    def _make_event(event_type: str, intent_id: str, event_id: str = "evt_test", **intent_fields) -> str:
        return json.dumps({
            "id": event_id,
            "object": "event",
            "type": event_type,
            "data": {"object": {"id": intent_id, "object": "payment_intent", **intent_fields}},
        })

    return _make_event


class FakeGateway:
    """Stands in for StripeGateway in reconciliation tests."""

    def __init__(self, intents=None):
        self.intents = dict(intents or {})
        self.retrieved = []

    async def retrieve_intent(self, intent_id, expand=None):
        self.retrieved.append((intent_id, tuple(expand or ())))
        return self.intents[intent_id]


@pytest.fixture
def fake_gateway():
    return FakeGateway({
        "pi_123": IntentSnapshot(
            id="pi_123",
            status="succeeded",
            amount=10000,
            currency="eur",
            receipt_url="https://example/receipt",
            payment_method="card",
        ),
    })
