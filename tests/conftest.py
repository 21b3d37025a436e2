from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from canary.alerts.base import EmailMessage
from canary.db.models import Base, Check, HttpMethod, NotificationPreference, User
from canary.services.checker import ProbeOutcome, ProbeRequest


class RecordingSender:
    def __init__(self, fail_for: set[str] | None = None) -> None:
        self.messages: list[EmailMessage] = []
        self._fail_for = fail_for or set()

    async def send(self, message: EmailMessage) -> None:
        if message.to in self._fail_for:
            raise RuntimeError(f"mailbox {message.to} unavailable")
        self.messages.append(message)


class ScriptedChecker:
    """Returns queued outcomes per URL; ``True``/``False`` mean UP/DOWN."""

    def __init__(self) -> None:
        self._script: dict[str, list] = {}
        self._clock = datetime(2020, 1, 1, tzinfo=timezone.utc)
        self.requested: list[str] = []

    def queue(self, url: str, *results) -> None:
        self._script.setdefault(url, []).extend(results)

    async def probe(self, req: ProbeRequest) -> ProbeOutcome:
        self.requested.append(req.url)
        result = self._script[req.url].pop(0)
        if isinstance(result, Exception):
            raise result
        if callable(result):
            result = await result()
        self._clock += timedelta(minutes=1)
        ok = bool(result)
        return ProbeOutcome(
            ok=ok,
            status_code=200 if ok else 503,
            latency_ms=12,
            error_message=None,
            checked_at=self._clock,
        )


@pytest.fixture
async def engine(tmp_path) -> AsyncIterator[AsyncEngine]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'canary.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def owner(session_factory) -> User:
    async with session_factory() as session:
        async with session.begin():
            user = User(id=uuid.uuid4(), email="owner@example.com")
            session.add(user)
    return user


@pytest.fixture
def add_check(session_factory):
    async def _add(user: User, **overrides) -> Check:
        values = {
            "name": "Homepage",
            "url": "https://example.com/",
            "method": HttpMethod.GET,
            "interval_seconds": 60,
            "timeout_ms": 5000,
            "enabled": True,
        }
        values.update(overrides)
        async with session_factory() as session:
            async with session.begin():
                check = Check(id=uuid.uuid4(), user_id=user.id, **values)
                session.add(check)
        return check

    return _add


@pytest.fixture
def add_preference(session_factory):
    async def _add(user: User, address: str, *, channel: str = "email", enabled: bool = True) -> None:
        async with session_factory() as session:
            async with session.begin():
                session.add(
                    NotificationPreference(
                        user_id=user.id,
                        channel=channel,
                        address=address,
                        enabled=enabled,
                    )
                )

    return _add


@pytest.fixture
def checker() -> ScriptedChecker:
    return ScriptedChecker()


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()
