from __future__ import annotations

import asyncio
import json
import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from canary.core.config import get_settings
from canary.db.models import Base, Check, CheckResult, CheckStatus, HttpMethod, Incident, IncidentStatus, User
from canary.db.session import get_engine, get_sessionmaker
from canary.services.incidents import Transition
from canary.services.notifications import NotificationDispatcher
from canary.workers import runner as runner_module
from canary.workers.runner import BatchSummary, MonitoringRunner, PipelineOutcome

from conftest import RecordingSender, ScriptedChecker

DOWN, UP = False, True


def _runner(session_factory, checker, sender) -> MonitoringRunner:
    return MonitoringRunner(
        session_factory=session_factory,
        checker=checker,
        dispatcher=NotificationDispatcher(sender),
        concurrency=1,
    )


async def _incidents(session_factory, check_id: uuid.UUID) -> list[Incident]:
    async with session_factory() as session:
        rows = await session.scalars(select(Incident).where(Incident.check_id == check_id))
        return list(rows)


async def _result_count(session_factory, check_id: uuid.UUID) -> int:
    async with session_factory() as session:
        return await session.scalar(
            select(func.count()).select_from(CheckResult).where(CheckResult.check_id == check_id)
        )


async def test_three_failures_open_exactly_one_incident(session_factory, owner, add_check, checker, sender) -> None:
    check = await add_check(owner)
    checker.queue(check.url, DOWN, DOWN, DOWN, DOWN)
    runner = _runner(session_factory, checker, sender)

    for _ in range(2):
        await runner.run_batch()
    assert await _incidents(session_factory, check.id) == []
    assert sender.messages == []

    summary = await runner.run_batch()
    assert summary == BatchSummary(ran=1, successes=0, failures=1, errors=0)
    incidents = await _incidents(session_factory, check.id)
    assert len(incidents) == 1
    assert incidents[0].status is IncidentStatus.OPEN
    assert incidents[0].summary == "Consecutive failures detected"
    assert [m.subject for m in sender.messages] == ["[Canary] ❌ Homepage is DOWN"]
    assert sender.messages[0].to == "owner@example.com"
    assert "Status: 503" in sender.messages[0].body

    await runner.run_batch()
    assert len(await _incidents(session_factory, check.id)) == 1
    assert len(sender.messages) == 1
    assert await _result_count(session_factory, check.id) == 4


async def test_two_successes_resolve_the_incident_once(session_factory, owner, add_check, checker, sender) -> None:
    check = await add_check(owner)
    checker.queue(check.url, DOWN, DOWN, DOWN, UP, UP, UP)
    runner = _runner(session_factory, checker, sender)

    for _ in range(3):
        await runner.run_batch()
    assert len(sender.messages) == 1

    await runner.run_batch()
    [incident] = await _incidents(session_factory, check.id)
    assert incident.status is IncidentStatus.OPEN

    await runner.run_batch()
    [incident] = await _incidents(session_factory, check.id)
    assert incident.status is IncidentStatus.RESOLVED
    assert incident.resolved_at is not None
    assert [m.subject for m in sender.messages][-1] == "[Canary] ✅ Homepage recovered"
    assert "Error:" not in sender.messages[-1].body

    summary = await runner.run_batch()
    assert summary == BatchSummary(ran=1, successes=1, failures=0, errors=0)
    [incident] = await _incidents(session_factory, check.id)
    assert incident.status is IncidentStatus.RESOLVED
    assert len(sender.messages) == 2


async def test_new_incident_after_resolution(session_factory, owner, add_check, checker, sender) -> None:
    check = await add_check(owner)
    checker.queue(check.url, DOWN, DOWN, DOWN, UP, UP, DOWN, DOWN, DOWN)
    runner = _runner(session_factory, checker, sender)

    for _ in range(8):
        await runner.run_batch()

    incidents = await _incidents(session_factory, check.id)
    assert sorted(i.status.value for i in incidents) == ["OPEN", "RESOLVED"]
    assert len(sender.messages) == 3


async def test_check_state_is_updated(session_factory, owner, add_check, checker, sender) -> None:
    check = await add_check(owner)
    checker.queue(check.url, DOWN)

    await _runner(session_factory, checker, sender).run_batch()

    async with session_factory() as session:
        row = await session.get(Check, check.id)
    assert row.last_status is CheckStatus.DOWN
    assert row.last_checked_at is not None


async def test_only_due_checks_run(session_factory, owner, add_check, checker, sender) -> None:
    now = datetime.now(timezone.utc)
    due = await add_check(owner, url="https://due.example.com/", last_checked_at=now - timedelta(seconds=90))
    await add_check(owner, url="https://fresh.example.com/", last_checked_at=now - timedelta(seconds=30))
    await add_check(owner, url="https://off.example.com/", enabled=False)
    checker.queue(due.url, UP)

    summary = await _runner(session_factory, checker, sender).run_batch(now=now)

    assert checker.requested == [due.url]
    assert summary == BatchSummary(ran=1, successes=1, failures=0, errors=0)


async def test_crashing_probe_is_isolated(session_factory, owner, add_check, checker, sender) -> None:
    healthy = await add_check(owner, url="https://a.example.com/")
    broken = await add_check(owner, url="https://b.example.com/")
    failing = await add_check(owner, url="https://c.example.com/")
    checker.queue(healthy.url, UP)
    checker.queue(broken.url, RuntimeError("boom"))
    checker.queue(failing.url, DOWN)

    summary = await _runner(session_factory, checker, sender).run_batch()

    assert summary == BatchSummary(ran=3, successes=1, failures=1, errors=1)
    assert await _result_count(session_factory, healthy.id) == 1
    assert await _result_count(session_factory, failing.id) == 1
    assert await _result_count(session_factory, broken.id) == 0


async def test_persistence_failure_counts_as_error(session_factory, owner, add_check, checker, sender) -> None:
    check = await add_check(owner, url="https://gone.example.com/")
    other = await add_check(owner, url="https://still.example.com/")

    async def delete_then_succeed() -> bool:
        async with session_factory() as session:
            async with session.begin():
                await session.delete(await session.get(Check, check.id))
        return UP

    checker.queue(check.url, delete_then_succeed)
    checker.queue(other.url, UP)

    summary = await _runner(session_factory, checker, sender).run_batch()

    assert summary == BatchSummary(ran=2, successes=1, failures=0, errors=1)
    assert await _result_count(session_factory, check.id) == 0
    assert await _result_count(session_factory, other.id) == 1


async def test_failed_alerts_do_not_fail_the_pipeline(session_factory, owner, add_check, checker) -> None:
    check = await add_check(owner)
    checker.queue(check.url, DOWN, DOWN, DOWN)
    sender = RecordingSender(fail_for={"owner@example.com"})
    runner = _runner(session_factory, checker, sender)

    await runner.run_batch()
    await runner.run_batch()
    summary = await runner.run_batch()

    assert summary == BatchSummary(ran=1, successes=0, failures=1, errors=0)
    [incident] = await _incidents(session_factory, check.id)
    assert incident.status is IncidentStatus.OPEN


async def test_invalid_rows_are_counted_as_errors(session_factory, checker, sender) -> None:
    runner = _runner(session_factory, checker, sender)
    bad = SimpleNamespace(
        id=uuid.uuid4(),
        user_id=uuid.uuid4(),
        name="bad",
        url="https://bad.example.com/",
        method=HttpMethod.GET,
        interval_seconds=5,
        timeout_ms=5000,
        expected_status=None,
        enabled=True,
        last_status=CheckStatus.UNKNOWN,
        last_checked_at=None,
    )

    async def load_enabled():
        return [bad]

    runner._load_enabled = load_enabled
    summary = await runner.run_batch()

    assert summary == BatchSummary(ran=1, successes=0, failures=0, errors=1)
    assert checker.requested == []


async def test_listing_failure_propagates(engine, session_factory, checker, sender) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Check.__table__.drop)

    with pytest.raises(OperationalError):
        await _runner(session_factory, checker, sender).run_batch()


def test_summary_from_outcomes() -> None:
    probe_ok = SimpleNamespace(ok=True)
    probe_down = SimpleNamespace(ok=False)
    outcomes = [
        PipelineOutcome(check_id=uuid.uuid4(), probe=probe_ok),
        PipelineOutcome(check_id=uuid.uuid4(), probe=probe_down, transition=Transition.OPEN),
        PipelineOutcome(check_id=uuid.uuid4(), probe=probe_ok, error="persistence: locked"),
        PipelineOutcome(check_id=uuid.uuid4(), error="probe: boom"),
    ]

    summary = BatchSummary.from_outcomes(outcomes)

    assert summary.as_dict() == {"ran": 4, "successes": 1, "failures": 1, "errors": 2}


async def test_due_checks_run_concurrently(session_factory, owner, add_check, checker, sender) -> None:
    checks = [await add_check(owner, url=f"https://site{i}.example.com/") for i in range(10)]
    in_flight = 0
    peak = 0

    async def slow_failure() -> bool:
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.05)
        in_flight -= 1
        return DOWN

    for check in checks:
        checker.queue(check.url, slow_failure)
    runner = MonitoringRunner(
        session_factory=session_factory,
        checker=checker,
        dispatcher=NotificationDispatcher(sender),
        concurrency=20,
    )

    summary = await runner.run_batch()

    assert summary == BatchSummary(ran=10, successes=0, failures=10, errors=0)
    assert peak > 1
    for check in checks:
        assert await _result_count(session_factory, check.id) == 1


async def test_overlapping_batches_keep_one_open_incident(
    session_factory, owner, add_check, checker, sender
) -> None:
    check = await add_check(owner)
    checker.queue(check.url, DOWN, DOWN)
    first = _runner(session_factory, checker, sender)
    await first.run_batch()
    await first.run_batch()

    checker.queue(check.url, DOWN, DOWN)
    second = _runner(session_factory, checker, sender)
    await asyncio.gather(first.run_batch(), second.run_batch())

    incidents = await _incidents(session_factory, check.id)
    assert [i.status for i in incidents] == [IncidentStatus.OPEN]
    assert [m.subject for m in sender.messages] == ["[Canary] ❌ Homepage is DOWN"]


async def test_check_disabled_mid_batch_is_not_recorded(
    session_factory, owner, add_check, checker, sender
) -> None:
    check = await add_check(owner)

    async def disable_then_fail() -> bool:
        async with session_factory() as session:
            async with session.begin():
                row = await session.get(Check, check.id)
                row.enabled = False
        return DOWN

    checker.queue(check.url, disable_then_fail)

    summary = await _runner(session_factory, checker, sender).run_batch()

    assert summary == BatchSummary(ran=1, successes=0, failures=0, errors=1)
    assert await _result_count(session_factory, check.id) == 0
    async with session_factory() as session:
        row = await session.get(Check, check.id)
    assert row.last_status is CheckStatus.UNKNOWN
    assert row.last_checked_at is None


async def test_invalid_rows_that_are_not_due_are_skipped(session_factory, checker, sender) -> None:
    now = datetime.now(timezone.utc)
    runner = _runner(session_factory, checker, sender)
    fresh = SimpleNamespace(
        id=uuid.uuid4(),
        user_id=uuid.uuid4(),
        name="fresh",
        url="https://fresh.example.com/",
        method=HttpMethod.GET,
        interval_seconds=3601,
        timeout_ms=5000,
        expected_status=None,
        enabled=True,
        last_status=CheckStatus.UNKNOWN,
        last_checked_at=now - timedelta(seconds=10),
    )

    async def load_enabled():
        return [fresh]

    runner._load_enabled = load_enabled
    summary = await runner.run_batch(now=now)

    assert summary == BatchSummary()
    assert checker.requested == []


def test_cli_prints_summary_json(tmp_path, monkeypatch, capsys) -> None:
    url = f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    monkeypatch.delenv("RESEND_API_KEY", raising=False)

    scripted = ScriptedChecker()
    scripted.queue("https://cli.example.com/", UP)

    async def seed() -> None:
        engine = create_async_engine(url)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        factory = async_sessionmaker(engine, expire_on_commit=False)
        async with factory() as session:
            async with session.begin():
                user = User(id=uuid.uuid4(), email="cli@example.com")
                session.add(user)
                session.add(
                    Check(
                        id=uuid.uuid4(),
                        user_id=user.id,
                        name="CLI",
                        url="https://cli.example.com/",
                        method=HttpMethod.GET,
                        interval_seconds=60,
                        timeout_ms=5000,
                    )
                )
        await engine.dispose()

    asyncio.run(seed())
    monkeypatch.setattr(runner_module, "Checker", lambda **kwargs: scripted)
    for cached in (get_settings, get_engine, get_sessionmaker):
        cached.cache_clear()
    try:
        runner_module.main()
    finally:
        for cached in (get_settings, get_engine, get_sessionmaker):
            cached.cache_clear()

    assert json.loads(capsys.readouterr().out) == {"ran": 1, "successes": 1, "failures": 0, "errors": 0}
    assert scripted.requested == ["https://cli.example.com/"]
