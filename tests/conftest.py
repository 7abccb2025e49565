import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from itertools import count

import pytest
from sqlalchemy.orm import sessionmaker

import switchboard.models  # noqa: F401
from switchboard.config import Settings
from switchboard.database import Base, build_engine
from switchboard.runtime import build_runtime
from switchboard.services.clock import utcnow
from switchboard.services.ingress_service import InboundMessage
from switchboard.services.transport_supervisor import ConnectionOpened

BOUND_ADDRESS = "5215500000000"


class RecordingBroadcaster:
    """Collects published events instead of sending them to sockets."""

    def __init__(self):
        self.events = []

    def publish(self, topic, payload):
        self.events.append((topic, payload))

    def of(self, topic):
        return [payload for published, payload in self.events if published == topic]


class FakeDriver:
    def __init__(self, bound_address=BOUND_ADDRESS):
        self.bound_address = bound_address
        self.open_errors = []
        self.send_error = None
        self.open_calls = 0
        self.close_calls = 0
        self.sent = []

    async def open(self, emit):
        self.open_calls += 1
        if self.open_errors:
            raise self.open_errors.pop(0)
        emit(ConnectionOpened(bound_address=self.bound_address))

    async def close(self):
        self.close_calls += 1

    async def send_text(self, address, text):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((address, text))
        return f"wamid.{len(self.sent)}"

    def texts_to(self, address):
        return [text for sent_to, text in self.sent if sent_to == address]


@pytest.fixture
def session_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'switchboard.db'}")
    Base.metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture
def driver():
    return FakeDriver()


@pytest.fixture
def test_settings():
    return Settings(
        database_url="sqlite://",
        inactivity_timeout_minutes=30,
        transport_reconnect_delay_seconds=0.01,
        maintenance_interval_seconds=3600,
        alert_bot_token=None,
        alert_chat_id=None,
    )


@pytest.fixture
def runtime(test_settings, session_factory, driver, broadcaster):
    return build_runtime(test_settings, session_factory, driver=driver, broadcaster=broadcaster)


@pytest.fixture
def make_inbound():
    ids = count(1)

    def _make(address, text, event_id=None, received_at=None, display_name=None):
        return InboundMessage(
            event_id=event_id or f"evt-{next(ids)}",
            from_address=address,
            text=text,
            received_at=received_at or utcnow(),
            display_name=display_name,
        )

    return _make


@pytest.fixture
def api(runtime, session_factory):
    """TestClient with the runtime started and the transport connected."""
    from fastapi.testclient import TestClient

    from switchboard.database import get_db
    from switchboard.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.state.runtime = runtime
    try:
        with TestClient(app) as client:
            client.post("/transport/connect")
            yield client
    finally:
        app.dependency_overrides.clear()
        app.state.runtime = None
