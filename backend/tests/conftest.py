import os
from pathlib import Path

import fakeredis.aioredis
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:////tmp/meraki_test.db")

from backend.api import dependencies  # noqa: E402
from backend.api.database import close_database, init_database, session_factory  # noqa: E402
from backend.api.main import app  # noqa: E402
from backend.api.services.notifications import NotificationService  # noqa: E402

_DB_PATH = Path("/tmp/meraki_test.db")


class FakeNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[int, dict]] = []
        self.fail = False

    async def connect(self) -> None:  # pragma: no cover - compatibility stub
        return None

    async def close(self) -> None:  # pragma: no cover - compatibility stub
        return None

    async def notify(self, user_id: int, event: dict) -> None:
        if self.fail:
            raise RuntimeError("notifier offline")
        self.sent.append((user_id, event))

    async def poll(self, user_id: int, limit: int = 50) -> list[dict]:
        events, kept = [], []
        for target, event in self.sent:
            if target == user_id and len(events) < limit:
                events.append(event)
            else:
                kept.append((target, event))
        self.sent = kept
        return events

    async def pending(self, user_id: int) -> int:
        return sum(1 for target, _ in self.sent if target == user_id)

    def types_for(self, user_id: int) -> list[str]:
        return [event["type"] for target, event in self.sent if target == user_id]


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def fake_notifier() -> FakeNotifier:
    notifier = FakeNotifier()
    original = getattr(dependencies, "_notification_service", None)
    dependencies._notification_service = notifier  # type: ignore[assignment]
    try:
        yield notifier
    finally:
        if original is not None:
            dependencies._notification_service = original


@pytest.fixture
def redis_notifications() -> NotificationService:
    fake_redis = fakeredis.aioredis.FakeRedis(decode_responses=True)
    return NotificationService(
        os.environ.get("REDIS_URL", "redis://localhost:6379/0"),
        namespace="test",
        backlog=5,
        redis_client=fake_redis,
    )


@pytest_asyncio.fixture
async def db():
    if _DB_PATH.exists():
        _DB_PATH.unlink()
    await init_database()
    try:
        yield session_factory()
    finally:
        await close_database()
        if _DB_PATH.exists():
            _DB_PATH.unlink()


@pytest_asyncio.fixture
async def api_client(db, fake_notifier: FakeNotifier):
    await dependencies.connect_notifications()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client, fake_notifier
    await dependencies.close_notifications()
