import os

# must be set before telemetry_kit.core.config is imported
os.environ.setdefault("APP_CONFIG__DB__URL", "sqlite+aiosqlite://")

import time
import uuid
from typing import Optional

import httpx
import pytest
import pytest_asyncio

from main import main_app
from telemetry_kit.db.db_helper import db_helper
from telemetry_kit.db.event_store import EventStore
from telemetry_kit.db.models.api_token import TokenTier
from telemetry_kit.schemas.config import SyncConfig
from telemetry_kit.schemas.events import Environment, Event, EventData, ServiceInfo
from telemetry_kit.services.auth_service import token_service
from telemetry_kit.services.signer import HmacSigner
from telemetry_kit.utils.redis_client import get_redis


ORG_ID = "550e8400-e29b-41d4-a716-446655440000"
APP_ID = "7c9e6679-7425-40de-944b-e07fc1f90ae7"
TOKEN = "tk_test_token"
SECRET = "test_secret"
USER_ID = "client_" + "a" * 64


class FakePipeline:
    """Queues commands like redis.asyncio pipelines and runs them on execute()."""

    def __init__(self, redis):
        self.redis = redis
        self.commands = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.commands = []

    def incr(self, key):
        self.commands.append(("incr", key))
        return self

    def expire(self, key, seconds):
        self.commands.append(("expire", key, seconds))
        return self

    async def execute(self):
        results = []
        for command, key, *args in self.commands:
            if command == "incr":
                self.redis.store[key] = int(self.redis.store.get(key, 0)) + 1
                results.append(self.redis.store[key])
            else:
                self.redis.ttls[key] = args[0]
                results.append(True)
        self.commands = []
        return results


class FakeRedis:
    def __init__(self):
        self.store = {}
        self.ttls = {}

    async def set(self, key, value, nx=False, ex=None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    async def aclose(self):
        pass


@pytest.fixture(autouse=True)
def clean_tracking_env(monkeypatch):
    monkeypatch.delenv("DNT", raising=False)
    monkeypatch.delenv("DO_NOT_TRACK", raising=False)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest_asyncio.fixture
async def server_db():
    # every test gets a fresh in-memory database
    await db_helper.create_all()
    yield db_helper
    await db_helper.dispose()


@pytest_asyncio.fixture
async def api_token(server_db):
    return await token_service.create_token(ORG_ID, APP_ID, TOKEN, SECRET, tier=TokenTier.PRO)


@pytest_asyncio.fixture
async def app_client(server_db, fake_redis):
    main_app.dependency_overrides[get_redis] = lambda: fake_redis
    transport = httpx.ASGITransport(app=main_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
    main_app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def event_store():
    store = await EventStore.open()
    yield store
    await store.close()


@pytest.fixture
def make_event():
    def _make_event(**overrides) -> Event:
        fields = {
            "service": ServiceInfo(name="test-cli", version="1.0.0", language_version="3.12"),
            "user_id": USER_ID,
            "session_id": "sess_" + uuid.uuid4().hex,
            "environment": Environment(os="linux", arch="x86_64", ci=False),
            "event": EventData(event_type="command_execution", data={"command": "build"}),
        }
        fields.update(overrides)
        return Event(**fields)

    return _make_event


@pytest.fixture
def signed_headers():
    def _signed_headers(
        body: str,
        *,
        token: str = TOKEN,
        secret: str = SECRET,
        timestamp: Optional[str] = None,
        nonce: Optional[str] = None,
    ) -> dict:
        timestamp = timestamp or str(int(time.time()))
        nonce = nonce or str(uuid.uuid4())
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "X-Signature": HmacSigner(secret).sign(timestamp, nonce, body),
            "X-Timestamp": timestamp,
            "X-Nonce": nonce,
        }

    return _signed_headers


@pytest.fixture
def sync_config():
    return SyncConfig(
        endpoint="http://testserver",
        org_id=ORG_ID,
        app_id=APP_ID,
        token=TOKEN,
        secret=SECRET,
        max_retries=2,
        base_delay_ms=1,
    )
