import os
import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker

# CRITICAL: Set test database URL BEFORE importing any app modules
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["TESTING"] = "true"

from app.main import app
from app.database import Base
from app import models  # noqa: F401
import app.database as db_module
import app.dependencies as dependencies_module
from app.models.chat import MessageStatus, SenderType
from app.realtime.hub import RealtimeHub
from app.services.auth_service import create_access_token
from app.services.message_store import MessageStore

T0 = datetime(2020, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="session")
def test_engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,  # share same in-memory DB across connections
    )
    return engine


@pytest.fixture()
def session_factory(test_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture()
def db_session(test_engine, session_factory):
    # Fresh schema per test to avoid cross-test data (e.g., unique email)
    Base.metadata.drop_all(bind=test_engine)
    Base.metadata.create_all(bind=test_engine)

    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def hub(monkeypatch):
    fresh = RealtimeHub()
    monkeypatch.setattr(app.state, "hub", fresh, raising=False)
    return fresh


@pytest.fixture()
def store(db_session, hub):
    return MessageStore(db_session, hub)


@pytest.fixture(autouse=True)
def patch_sessionlocal(monkeypatch, test_engine, session_factory, db_session):
    monkeypatch.setattr(db_module, "engine", test_engine, raising=False)
    monkeypatch.setattr(db_module, "SessionLocal", session_factory, raising=True)
    # get_db resolves SessionLocal from app.dependencies at call time
    monkeypatch.setattr(dependencies_module, "SessionLocal", session_factory, raising=True)

    # Disable rate limiter globally for tests
    if hasattr(app.state, "limiter"):
        setattr(app.state.limiter, "enabled", False)
    yield


@pytest.fixture(autouse=True)
def patch_email(monkeypatch):
    from app.services import notifications as notifications_module

    sent = []

    def _mock_send_email(to_email: str, subject: str, body: str):
        sent.append((to_email, subject, body))
        return True  # No-op for tests

    monkeypatch.setattr(notifications_module, "send_email", _mock_send_email, raising=True)
    return sent


@pytest.fixture()
def client(hub):
    return TestClient(app)


# ---------- data helpers ----------
@pytest.fixture()
def make_business(store):
    def _make(email=None, phone=None, away_message=None, away_message_enabled=False):
        return store.insert_business(
            email=email or f"biz_{uuid.uuid4().hex[:8]}@example.com",
            password_hash="not-a-real-hash",
            business_name="Corner Bakery",
            phone=phone,
            away_message=away_message,
            away_message_enabled=away_message_enabled,
        )

    return _make


@pytest.fixture()
def make_conversation(store):
    def _make(business_id, customer_email=None, pinned=False):
        conversation, _ = store.get_or_insert_conversation(
            business_id=business_id,
            customer_email=customer_email or f"cust_{uuid.uuid4().hex[:8]}@example.com",
            pinned=pinned,
        )
        return conversation

    return _make


@pytest.fixture()
def add_message(store):
    def _add(
        conversation,
        content="hello",
        sender_type=SenderType.CUSTOMER,
        created_at=None,
        status=MessageStatus.SENT,
        image_url=None,
        id=None,
    ):
        fields = dict(
            conversation_id=conversation.id,
            sender_type=sender_type,
            sender_id=conversation.customer_email
            if sender_type == SenderType.CUSTOMER
            else conversation.business_id,
            content=content,
            image_url=image_url,
            status=status,
        )
        if id is not None:
            fields["id"] = id
        return store.insert_message(created_at=created_at, **fields)

    return _add


def auth_headers(business) -> dict:
    token = create_access_token(business.email, business.id)
    return {"Authorization": f"Bearer {token}"}


async def settle(rounds: int = 20):
    """Let queued call_soon_threadsafe callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)
