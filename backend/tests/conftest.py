"""Shared test fixtures and configuration for backend tests."""
from typing import Any, List, Optional

import jwt
import pytest
from fastapi.testclient import TestClient

from connectly.config import AppConfig, DatabaseSettings, JWTSecrets, Secrets
from connectly.engine import build_engine
from connectly.main import create_app
from connectly.realtime.connection import Connection

JWT_SECRET = "connectly-test-secret-0123456789abcdef"


class FakeSocket:
    """Records frames sent to it; optionally fails every send."""

    def __init__(self, fail: bool = False) -> None:
        self.frames: List[dict] = []
        self.fail = fail

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.frames.append(data)

    def events(self, name: Optional[str] = None) -> List[Any]:
        """Payloads received, optionally only those of one event."""
        return [f["data"] for f in self.frames if name is None or f["event"] == name]


def make_token(user_id: Any, secret: str = JWT_SECRET, **claims) -> str:
    return jwt.encode({"userId": user_id, **claims}, secret, algorithm="HS256")


@pytest.fixture
def config():
    """In-memory database and a known JWT secret."""
    return AppConfig(
        database=DatabaseSettings(path=":memory:"),
        secrets=Secrets(jwt=JWTSecrets(secret_key=JWT_SECRET)),
    )


@pytest.fixture
def engine(config):
    engine = build_engine(config)
    yield engine
    engine.close()


@pytest.fixture
def api_client(engine):
    """Provide a TestClient for an app wired to the test engine."""
    return TestClient(create_app(engine=engine))


@pytest.fixture
def auth_headers():
    """Factory for an ``Authorization`` header carrying a valid token."""
    def _headers(user_id: str) -> dict:
        return {"Authorization": f"Bearer {make_token(user_id)}"}
    return _headers


@pytest.fixture
def alice(engine):
    return engine.users.create("Alice", "alice@example.com")


@pytest.fixture
def bob(engine):
    return engine.users.create("Bob", "bob@example.com")


@pytest.fixture
def carol(engine):
    return engine.users.create("Carol", "carol@example.org")


@pytest.fixture
def chat(engine, alice, bob):
    """The chat between Alice and Bob."""
    return engine.chats.create(alice.id, bob.id)


@pytest.fixture
def connect(engine):
    """Factory registering a fake connection, optionally joined to rooms."""
    def _connect(user_id: str, *room_ids: str, fail: bool = False) -> Connection:
        connection = Connection(FakeSocket(fail=fail), user_id)
        engine.rooms.register(connection)
        for room_id in room_ids:
            engine.rooms.join(connection, room_id)
        return connection
    return _connect
