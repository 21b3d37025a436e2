from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from canary.db.models import CheckResult, Status
from canary.services.streaks import STREAK_WINDOW


class StatusHistoryService:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def record(
        self,
        *,
        check_id: uuid.UUID,
        status: Status,
        status_code: int | None,
        latency_ms: int,
        error_message: str | None,
        checked_at: datetime,
    ) -> CheckResult:
        row = CheckResult(
            check_id=check_id,
            status=status,
            status_code=status_code,
            latency_ms=latency_ms,
            error_message=error_message,
            checked_at=checked_at,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def recent_statuses(self, check_id: uuid.UUID, *, limit: int = STREAK_WINDOW) -> list[Status]:
        rows = await self.session.scalars(
            select(CheckResult.status)
            .where(CheckResult.check_id == check_id)
            .order_by(desc(CheckResult.checked_at))
            .limit(limit)
        )
        return list(rows)
