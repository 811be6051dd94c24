import asyncio
import inspect
import json
import os
from datetime import datetime, timedelta

# Keep the module-level engine off the local disk before any app import.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_JSON", "false")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from chatcollab.core.config import Settings  # noqa: E402
from chatcollab.core.database import build_engine, build_session_factory, init_db  # noqa: E402
from chatcollab.core.errors import UpstreamFailure  # noqa: E402
from chatcollab.core.security import Actor, create_identity_token  # noqa: E402
from chatcollab.main import create_app  # noqa: E402
from chatcollab.models import Chat  # noqa: E402
from chatcollab.services.chat import load_messages  # noqa: E402
from chatcollab.services.completion import CompletionProvider  # noqa: E402
from chatcollab.services.orchestrator import ChatSessionOrchestrator  # noqa: E402
from chatcollab.services.presence import PresenceTracker  # noqa: E402

START = datetime(2024, 5, 1, 12, 0, 0)


class FakeClock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class ScriptedProvider(CompletionProvider):
    """Yields a fixed list of deltas and records every request."""

    def __init__(self, chunks=None):
        self.chunks = list(chunks if chunks is not None else ["Hello", " there"])
        self.calls = []
        self.closed = False

    async def stream(self, messages, model):
        self.calls.append({"messages": messages, "model": model})
        for chunk in self.chunks:
            await asyncio.sleep(0)
            yield chunk


class BlockingProvider(ScriptedProvider):
    """Yields its chunks, then hangs until cancelled or closed."""

    async def stream(self, messages, model):
        self.calls.append({"messages": messages, "model": model})
        try:
            for chunk in self.chunks:
                yield chunk
            await asyncio.sleep(3600)
        finally:
            self.closed = True


class FailingProvider(ScriptedProvider):
    def __init__(self, chunks=None, error=None):
        super().__init__(chunks if chunks is not None else [])
        self.error = error or UpstreamFailure("provider unavailable")

    async def stream(self, messages, model):
        self.calls.append({"messages": messages, "model": model})
        for chunk in self.chunks:
            yield chunk
        raise self.error


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        secret_key="test-secret-key",
        openai_api_key=None,
        stream_timeout_seconds=5.0,
        public_base_url="https://chat.example.com",
        log_json=False,
        cors_origins=["http://localhost:3000"],
    )


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite://")
    init_db(engine)
    try:
        yield build_session_factory(engine)
    finally:
        engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def provider():
    return ScriptedProvider()


@pytest.fixture
def make_orchestrator(session_factory, settings, clock):
    def _make(completion_provider=None, memory=None, **overrides):
        cfg = settings.model_copy(update=overrides) if overrides else settings
        return ChatSessionOrchestrator(
            session_factory=session_factory,
            completion_provider=completion_provider or ScriptedProvider(),
            presence=PresenceTracker(cfg.presence_window_seconds),
            settings=cfg,
            clock=clock,
            memory=memory,
        )

    return _make


@pytest.fixture
def orchestrator(make_orchestrator, provider):
    return make_orchestrator(provider)


@pytest.fixture
def owner():
    return Actor(id="user-owner", name="Olivia Owner", email="owner@example.com")


@pytest.fixture
def bob():
    return Actor(id="user-bob", name="Bob", email="bob@example.com")


@pytest.fixture
def alice():
    return Actor(id="user-alice", name="Alice", email="alice@example.com")


@pytest.fixture
def stored_messages(session_factory):
    """Read the persisted transcript through a fresh session."""

    def _load(chat_id):
        session = session_factory()
        try:
            chat = session.get(Chat, chat_id)
            return load_messages(chat) if chat is not None else None
        finally:
            session.close()

    return _load


@pytest.fixture
def drain():
    async def _drain(orchestrator, turn):
        return [event async for event in orchestrator.run_turn(turn)]

    return _drain


@pytest.fixture
def app(settings, session_factory, provider, clock):
    return create_app(settings=settings, session_factory=session_factory, completion_provider=provider, clock=clock)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth(settings):
    def _headers(actor):
        return {"Authorization": f"Bearer {create_identity_token(actor, settings)}"}

    return _headers


def parse_sse(body: str):
    events = []
    for block in body.strip().split("\n\n"):
        if not block.strip():
            continue
        event, data = None, None
        for line in block.splitlines():
            if line.startswith("event: "):
                event = line[len("event: "):]
            elif line.startswith("data: "):
                data = json.loads(line[len("data: "):])
        events.append((event, data))
    return events


@pytest.fixture
def sse():
    return parse_sse


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None
