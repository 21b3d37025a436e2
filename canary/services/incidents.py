from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Sequence

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from canary.db.models import Incident, IncidentStatus
from canary.services.streaks import Streak

CONSEC_FAILS_TO_OPEN = 3
CONSEC_SUCCESSES_TO_CLOSE = 2
OPEN_SUMMARY = "Consecutive failures detected"


class Transition(str, enum.Enum):
    OPEN = "OPEN"
    RESOLVE = "RESOLVE"


def decide_transition(ok: bool, streak: Streak, has_open_incident: bool) -> Transition | None:
    """Evaluate the incident state machine for the latest probe.

    Opening needs three consecutive failures and no open incident; resolving
    needs two consecutive successes and an open incident.
    """
    if not ok and streak.leading_failures >= CONSEC_FAILS_TO_OPEN and not has_open_incident:
        return Transition.OPEN
    if ok and streak.leading_successes >= CONSEC_SUCCESSES_TO_CLOSE and has_open_incident:
        return Transition.RESOLVE
    return None


class IncidentService:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def open(self, *, check_id: uuid.UUID, started_at: datetime) -> Incident:
        incident = Incident(
            check_id=check_id,
            status=IncidentStatus.OPEN,
            started_at=started_at,
            resolved_at=None,
            summary=OPEN_SUMMARY,
        )
        self.session.add(incident)
        await self.session.flush()
        return incident

    async def resolve(self, incident: Incident, *, resolved_at: datetime) -> Incident:
        incident.status = IncidentStatus.RESOLVED
        incident.resolved_at = resolved_at
        await self.session.flush()
        return incident

    async def get(self, incident_id: uuid.UUID) -> Incident | None:
        return await self.session.get(Incident, incident_id)

    async def get_open(self, check_id: uuid.UUID) -> Incident | None:
        return await self.session.scalar(
            select(Incident)
            .where(Incident.check_id == check_id, Incident.status == IncidentStatus.OPEN)
            .order_by(desc(Incident.started_at))
            .limit(1)
        )

    async def list(
        self,
        check_id: uuid.UUID,
        *,
        offset: int = 0,
        limit: int = 100,
        desc_order: bool = True,
    ) -> Sequence[Incident]:
        order_clause = desc(Incident.started_at) if desc_order else Incident.started_at
        rows = await self.session.scalars(
            select(Incident)
            .where(Incident.check_id == check_id)
            .order_by(order_clause)
            .offset(offset)
            .limit(limit)
        )
        return list(rows)
