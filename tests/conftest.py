import os

# Must be set before cookmate.settings is imported
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["AI_MODE"] = "mock"
os.environ["JWT_SECRET"] = "cookmate-test-secret-key-0123456789abcdef"

import json
import sqlite3
import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Register adapters for SQLite to handle list/dict as JSON
sqlite3.register_adapter(list, json.dumps)
sqlite3.register_adapter(dict, json.dumps)

from cookmate.main import app
from cookmate.db import Base, get_db
from cookmate.deps import get_gateway
from cookmate.models import User
from cookmate.security import create_access_token, hash_password
from cookmate.ai.providers import AIGateway, AIResponse, TokenUsage

# --- Test Database Setup ---

from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, 'sqlite')
def compile_jsonb(element, compiler, **kw):
    return "JSON"


engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

PASSWORD = "Password1"


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


class ScriptedProvider:
    """Stands in for a vendor: returns queued replies or raises ``error``."""

    def __init__(self, name="fake", replies=None, error=None):
        self.name = name
        self.replies = list(replies or [])
        self.error = error
        self.calls = []

    async def generate(self, system, prompt):
        self.calls.append({"system": system, "prompt": prompt})
        if self.error is not None:
            raise self.error
        text = self.replies.pop(0) if self.replies else f"{self.name} reply {len(self.calls)}"
        return AIResponse(
            text=text,
            provider=self.name,
            usage=TokenUsage(prompt_tokens=8, completion_tokens=2, total_tokens=10),
        )


@pytest.fixture(autouse=True)
def setup_database():
    """Create tables before each test, drop after."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    """Direct database session for setup."""
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def make_provider():
    return ScriptedProvider


@pytest.fixture
def provider():
    return ScriptedProvider()


@pytest.fixture
def gateway(provider):
    return AIGateway([provider], timeout_sec=2)


@pytest.fixture
def client(gateway):
    """Test client with DB and AI gateway overrides."""
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def _make_user(db, email, skill_level="beginner"):
    user = User(
        email=email,
        name=email.split("@")[0].title(),
        password_hash=hash_password(PASSWORD),
        skill_level=skill_level,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def user(db_session):
    return _make_user(db_session, "cook@example.com")


@pytest.fixture
def other_user(db_session):
    return _make_user(db_session, "rival@example.com")


@pytest.fixture
def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
def other_headers(other_user):
    return {"Authorization": f"Bearer {create_access_token(other_user.id)}"}


@pytest.fixture
def start_session(client, auth_headers):
    """Start a session over the API; returns the session body."""
    def _start(total_steps=5, recipe_name="Pancakes", recipe_id=None, headers=None, context=None):
        body = {
            "recipe_id": recipe_id or str(uuid.uuid4()),
            "recipe_name": recipe_name,
            "total_steps": total_steps,
        }
        if context is not None:
            body["context"] = context
        resp = client.post("/api/sessions/start", json=body, headers=headers or auth_headers)
        assert resp.status_code == 201, resp.text
        return resp.json()["data"]["session"]
    return _start


import fakeredis
import fakeredis.aioredis
from cookmate.infra import redis_client


@pytest.fixture(autouse=True)
def mock_redis():
    server = fakeredis.FakeServer()
    # Async client for the app; sync client on the same server for assertions
    async_redis = fakeredis.aioredis.FakeRedis(server=server, decode_responses=True)
    sync_redis = fakeredis.FakeRedis(server=server, decode_responses=True)

    redis_client._redis_async = async_redis

    yield sync_redis

    redis_client._redis_async = None
