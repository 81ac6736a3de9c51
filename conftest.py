"""
Pytest configuration and shared fixtures.

Tests never reach Twilio: a FakeSender is put on app.state.sender, and
settings are built explicitly instead of being read from .env.
"""

import pytest
from fastapi.testclient import TestClient

# Clear settings cache before any app imports so test settings are not mixed with a cached .env
from smsrelay.config import Settings, get_settings
get_settings.cache_clear()

from smsrelay.errors import StorageError
from smsrelay.main import create_app
from smsrelay.schemas import Direction, Message
from smsrelay.storage import MemoryMessageStore, SqlMessageStore

SYSTEM_NUMBER = "+15550200"


def make_settings(**overrides) -> Settings:
    values = {
        "STORAGE_MODE": "memory",
        "LOG_LEVEL": "WARNING",
        "TWILIO_ACCOUNT_SID": "ACtest",
        "TWILIO_AUTH_TOKEN": "test-token",
        "TWILIO_PHONE_NUMBER": SYSTEM_NUMBER,
        "WEBHOOK_SECRET": "",
        "ENABLE_DEBUG_ROUTES": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_message(
    message_id: str,
    from_msisdn: str = "+15550100",
    to: str = SYSTEM_NUMBER,
    direction: Direction = Direction.INBOUND,
    at: str = "2025-01-15T10:00:00.000Z",
    body: str = "hi",
    media_urls=None,
) -> Message:
    return Message(
        id=message_id,
        from_msisdn=from_msisdn,
        to=to,
        body=body,
        direction=direction,
        at=at,
        media_urls=media_urls or [],
    )


class FakeSender:
    """Stands in for TwilioSender and remembers what it was asked to send."""

    def __init__(self, sid="SM0123456789abcdef", error=None):
        self.sid = sid
        self.error = error
        self.calls = []

    def send(self, from_, to, body, media_urls):
        self.calls.append({"from": from_, "to": to, "body": body, "media_urls": list(media_urls)})
        if self.error is not None:
            raise self.error
        return self.sid


class FailingStore(MemoryMessageStore):
    """Memory store whose writes always fail."""

    def put(self, message):
        raise StorageError("disk full")


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    """Each store test runs against both backends."""
    if request.param == "memory":
        message_store = MemoryMessageStore(capacity=100)
    else:
        message_store = SqlMessageStore(f"sqlite:///{tmp_path / 'messages.db'}")
    yield message_store
    message_store.close()


@pytest.fixture
def fake_sender() -> FakeSender:
    return FakeSender()


@pytest.fixture
def make_client(fake_sender):
    """Factory for test clients; keyword arguments override settings."""
    clients = []

    def _make(store=None, sender=None, **overrides) -> TestClient:
        app = create_app(make_settings(**overrides))
        app.state.store = store
        app.state.sender = sender or fake_sender
        test_client = TestClient(app)
        test_client.__enter__()
        clients.append(test_client)
        return test_client

    yield _make

    for test_client in clients:
        test_client.__exit__(None, None, None)


@pytest.fixture
def client(make_client) -> TestClient:
    """Client with a fresh in-memory store and the fake sender."""
    return make_client()
