import os

# --- SETUP: keep the app off real services before any app import ---
os.environ["SCHEDULER_ENABLED"] = "0"
os.environ["REMINDER_TIMEZONE"] = "UTC"
os.environ["FIREBASE_CREDENTIALS_PATH"] = "missing-test-credentials.json"

import asyncio
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from app.database.connection import Base
from app.database.models import User, Schedule
from app.services.notification_dispatcher import DeliveryOutcome
from app.services.schedule_store import ScheduleFeed


# --- Fakes ---

class FakePushChannel:
    """Records every push; can be told to fail or hang for particular tokens."""
    name = "push"

    def __init__(self, fail_tokens=(), hang_tokens=(), hang_seconds=5.0):
        self.calls = []
        self.fail_tokens = set(fail_tokens)
        self.hang_tokens = set(hang_tokens)
        self.hang_seconds = hang_seconds

    async def deliver(self, target, title, body, data=None):
        tokens = list(target)
        self.calls.append({"tokens": tokens, "title": title, "body": body, "data": data})
        if self.fail_tokens.intersection(tokens):
            raise RuntimeError("push service unavailable")
        if self.hang_tokens.intersection(tokens):
            await asyncio.sleep(self.hang_seconds)
        return DeliveryOutcome(channel="push", success_count=len(tokens))


class RecordingSocket:
    """Stands in for WebSocket.send_json."""

    def __init__(self):
        self.sent = []

    async def __call__(self, message: dict):
        self.sent.append(message)

    @property
    def alerts(self):
        return [m for m in self.sent if m["type"] == "notification"]


# --- Fixtures ---

@pytest_asyncio.fixture(scope="function")
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    # One connection per session: the sweep runs reminders concurrently in separate sessions
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def feed() -> ScheduleFeed:
    return ScheduleFeed()


@pytest.fixture
def push_channel() -> FakePushChannel:
    return FakePushChannel()


@pytest.fixture
def make_user(session_factory):
    async def _make_user(uid="uid-1", tokens=None) -> int:
        async with session_factory() as session:
            user = User(firebase_uid=uid, email=f"{uid}@example.com", fcm_tokens=list(tokens or []))
            session.add(user)
            await session.commit()
            return user.id
    return _make_user


@pytest.fixture
def make_schedule(session_factory):
    async def _make_schedule(user_id, time="2024-01-15T07:00:00.000Z", recurrence="none", title="Leg day",
                             notified=False, dismissed=False) -> int:
        async with session_factory() as session:
            schedule = Schedule(user_id=user_id, title=title, time=time, recurrence=recurrence,
                                notified=notified, dismissed=dismissed)
            session.add(schedule)
            await session.commit()
            return schedule.id
    return _make_schedule


@pytest.fixture
def load_schedule(session_factory):
    async def _load(schedule_id) -> Schedule:
        async with session_factory() as session:
            return await session.get(Schedule, schedule_id)
    return _load
