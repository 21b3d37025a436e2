from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Sequence

from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from canary.db.models import (
    DEFAULT_TIMEOUT_MS,
    MAX_INTERVAL_SECONDS,
    MAX_TIMEOUT_MS,
    MIN_INTERVAL_SECONDS,
    MIN_TIMEOUT_MS,
    Check,
    CheckStatus,
    HttpMethod,
    Status,
)
from canary.services.checker import ProbeRequest


def check_is_due(enabled: bool, last_checked_at: datetime | None, interval_seconds: int, now: datetime) -> bool:
    if not enabled:
        return False
    if last_checked_at is None:
        return True
    if last_checked_at.tzinfo is None:
        last_checked_at = last_checked_at.replace(tzinfo=timezone.utc)
    return last_checked_at + timedelta(seconds=interval_seconds) <= now


def row_is_due(row: Check, now: datetime) -> bool:
    """Due-ness straight from a stored row, usable before validation."""
    try:
        interval = int(row.interval_seconds)
    except (TypeError, ValueError):
        return True
    return check_is_due(row.enabled, row.last_checked_at, interval, now)


class CheckSpec(BaseModel):
    """Validated, immutable view of a ``checks`` row used by the pipeline."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: uuid.UUID
    user_id: uuid.UUID
    name: str
    url: str
    method: HttpMethod = HttpMethod.GET
    interval_seconds: int = Field(..., ge=MIN_INTERVAL_SECONDS, le=MAX_INTERVAL_SECONDS)
    timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS, ge=MIN_TIMEOUT_MS, le=MAX_TIMEOUT_MS)
    expected_status: int | None = None
    enabled: bool = True
    last_status: CheckStatus = CheckStatus.UNKNOWN
    last_checked_at: datetime | None = None

    @field_validator("timeout_ms", mode="before")
    @classmethod
    def _default_timeout(cls, value: int | None) -> int:
        return DEFAULT_TIMEOUT_MS if value is None else value

    @field_validator("last_checked_at")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        # SQLite hands back naive timestamps
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def is_due(self, now: datetime) -> bool:
        return check_is_due(self.enabled, self.last_checked_at, self.interval_seconds, now)

    def probe_request(self) -> ProbeRequest:
        return ProbeRequest(
            check_id=self.id,
            url=self.url,
            method=self.method,
            timeout_ms=self.timeout_ms,
            expected_status=self.expected_status,
        )


class CheckService:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_enabled(self) -> Sequence[Check]:
        rows = await self.session.scalars(
            select(Check).where(Check.enabled.is_(True)).order_by(Check.created_at)
        )
        return list(rows)

    async def lock(self, check_id: uuid.UUID) -> Check | None:
        """Load a check holding a row lock until the transaction ends."""
        return await self.session.scalar(
            select(Check).where(Check.id == check_id).with_for_update()
        )

    async def mark_checked(self, check: Check, *, status: Status, checked_at: datetime) -> Check:
        check.last_status = CheckStatus(status.value)
        check.last_checked_at = checked_at
        await self.session.flush()
        return check
