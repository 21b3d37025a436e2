from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Iterable

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from canary.alerts.base import AlertEvent, AlertKind
from canary.alerts.email import build_email_sender
from canary.core.config import Settings, get_settings
from canary.db.models import Check
from canary.db.session import get_engine, get_sessionmaker
from canary.services.checker import Checker, ProbeOutcome
from canary.services.checks import CheckService, CheckSpec, row_is_due
from canary.services.incidents import IncidentService, Transition, decide_transition
from canary.services.notifications import DispatchResult, NotificationDispatcher
from canary.services.status_history import StatusHistoryService
from canary.services.streaks import analyze

logger = logging.getLogger(__name__)


class CheckNotFoundError(LookupError):
    pass


class CheckDisabledError(RuntimeError):
    pass


@dataclass(frozen=True)
class PipelineOutcome:
    check_id: uuid.UUID
    probe: ProbeOutcome | None = None
    transition: Transition | None = None
    notification: DispatchResult | None = None
    error: str | None = None

    @property
    def completed(self) -> bool:
        return self.error is None and self.probe is not None


@dataclass(frozen=True)
class BatchSummary:
    ran: int = 0
    successes: int = 0
    failures: int = 0
    errors: int = 0

    @classmethod
    def from_outcomes(cls, outcomes: Iterable[PipelineOutcome]) -> BatchSummary:
        ran = successes = failures = errors = 0
        for outcome in outcomes:
            ran += 1
            if not outcome.completed:
                errors += 1
            elif outcome.probe.ok:
                successes += 1
            else:
                failures += 1
        return cls(ran=ran, successes=successes, failures=failures, errors=errors)

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class MonitoringRunner:
    """Runs one batch of due checks per invocation.

    Every due check goes through probe, atomic persistence and incident
    evaluation, then alerting on a transition. Pipelines run concurrently and
    report a ``PipelineOutcome`` instead of raising, so one broken check never
    affects its siblings.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        checker: Checker,
        dispatcher: NotificationDispatcher,
        concurrency: int = 20,
    ) -> None:
        self._session_factory = session_factory
        self._checker = checker
        self._dispatcher = dispatcher
        self._semaphore = asyncio.Semaphore(concurrency)

    async def run_batch(self, now: datetime | None = None) -> BatchSummary:
        now = now or datetime.now(timezone.utc)
        logger.info("batch started")

        rows = await self._load_enabled()
        due: list[CheckSpec] = []
        outcomes: list[PipelineOutcome] = []
        for row in rows:
            try:
                check = CheckSpec.model_validate(row)
            except ValidationError as exc:
                if not row_is_due(row, now):
                    continue
                logger.error("invalid check configuration", extra={"check_id": str(row.id), "error": str(exc)})
                outcomes.append(PipelineOutcome(check_id=row.id, error="invalid check configuration"))
                continue
            if check.is_due(now):
                due.append(check)

        logger.info("checks to run", extra={"total": len(rows), "due": len(due)})

        outcomes.extend(await asyncio.gather(*(self._run_pipeline(check) for check in due)))
        summary = BatchSummary.from_outcomes(outcomes)
        logger.info("batch completed", extra=summary.as_dict())
        return summary

    async def _load_enabled(self) -> list[Check]:
        async with self._session_factory() as session:
            return list(await CheckService(session).list_enabled())

    async def _run_pipeline(self, check: CheckSpec) -> PipelineOutcome:
        async with self._semaphore:
            logger.info("running check", extra={"check_id": str(check.id), "check_name": check.name, "url": check.url})
            try:
                probe = await self._checker.probe(check.probe_request())
            except Exception as exc:
                logger.exception("probe crashed", extra={"check_id": str(check.id)})
                return PipelineOutcome(check_id=check.id, error=f"probe: {exc}")

            try:
                transition = await self._persist_result(check, probe)
            except Exception as exc:
                logger.exception("persisting result failed", extra={"check_id": str(check.id)})
                return PipelineOutcome(check_id=check.id, probe=probe, error=f"persistence: {exc}")

            notification = None
            if transition is not None:
                notification = await self._notify(check, probe, transition)
            return PipelineOutcome(
                check_id=check.id,
                probe=probe,
                transition=transition,
                notification=notification,
            )

    async def _persist_result(self, check: CheckSpec, probe: ProbeOutcome) -> Transition | None:
        async with self._session_factory() as session:
            async with session.begin():
                # The row lock serialises overlapping batches on the same check.
                checks = CheckService(session)
                row = await checks.lock(check.id)
                if row is None:
                    raise CheckNotFoundError(f"check {check.id} no longer exists")
                if not row.enabled:
                    raise CheckDisabledError(f"check {check.id} was disabled during the batch")

                history = StatusHistoryService(session)
                await history.record(
                    check_id=check.id,
                    status=probe.status,
                    status_code=probe.status_code,
                    latency_ms=probe.latency_ms,
                    error_message=probe.error_message,
                    checked_at=probe.checked_at,
                )
                await checks.mark_checked(row, status=probe.status, checked_at=probe.checked_at)

                streak = analyze(await history.recent_statuses(check.id))
                incidents = IncidentService(session)
                open_incident = await incidents.get_open(check.id)
                transition = decide_transition(probe.ok, streak, open_incident is not None)

                if transition is Transition.OPEN:
                    logger.warning(
                        "opening incident",
                        extra={
                            "check_id": str(check.id),
                            "check_name": check.name,
                            "consecutive_failures": streak.leading_failures,
                        },
                    )
                    await incidents.open(check_id=check.id, started_at=probe.checked_at)
                elif transition is Transition.RESOLVE and open_incident is not None:
                    logger.info(
                        "resolving incident",
                        extra={
                            "check_id": str(check.id),
                            "check_name": check.name,
                            "consecutive_successes": streak.leading_successes,
                        },
                    )
                    await incidents.resolve(open_incident, resolved_at=probe.checked_at)
        return transition

    async def _notify(
        self, check: CheckSpec, probe: ProbeOutcome, transition: Transition
    ) -> DispatchResult | None:
        down = transition is Transition.OPEN
        event = AlertEvent(
            owner_id=check.user_id,
            kind=AlertKind.DOWN if down else AlertKind.RECOVERED,
            check_name=check.name,
            check_url=check.url,
            at=probe.checked_at,
            status_code=probe.status_code,
            error_message=probe.error_message if down else None,
        )
        try:
            async with self._session_factory() as session:
                return await self._dispatcher.dispatch(session, event)
        except Exception:
            # The transition is already committed; alerting problems stay here.
            logger.exception("notification dispatch failed", extra={"check_id": str(check.id)})
            return None


def build_runner(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> MonitoringRunner:
    return MonitoringRunner(
        session_factory=session_factory or get_sessionmaker(),
        checker=Checker(follow_redirects=settings.probe_follow_redirects),
        dispatcher=NotificationDispatcher(build_email_sender(settings)),
        concurrency=settings.checker_concurrency,
    )


async def run_once(settings: Settings) -> BatchSummary:
    runner = build_runner(settings)
    try:
        return await runner.run_batch()
    finally:
        await get_engine().dispose()


def main() -> None:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)
    summary = asyncio.run(run_once(settings))
    print(json.dumps(summary.as_dict()))


if __name__ == "__main__":
    main()
