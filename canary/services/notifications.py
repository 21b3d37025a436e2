from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from canary.alerts.base import AlertEvent, EmailSender, render_email
from canary.services.preferences import PreferenceService

logger = logging.getLogger(__name__)

NO_DESTINATION = "no destination"


@dataclass(frozen=True)
class DispatchResult:
    sent: int
    failed: int
    total: int
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.sent > 0


class NotificationDispatcher:
    """Fans an alert out to every email destination of the check owner."""

    def __init__(self, sender: EmailSender) -> None:
        self._sender = sender

    async def dispatch(self, session: AsyncSession, event: AlertEvent) -> DispatchResult:
        destinations = await self._resolve_destinations(session, event)
        if not destinations:
            logger.warning(
                "no notification destination",
                extra={"owner_id": str(event.owner_id), "kind": event.kind.value},
            )
            return DispatchResult(sent=0, failed=0, total=0, error=NO_DESTINATION)

        delivered = await asyncio.gather(*(self._deliver(to, event) for to in destinations))
        sent = sum(1 for ok in delivered if ok)
        result = DispatchResult(sent=sent, failed=len(delivered) - sent, total=len(delivered))
        logger.info(
            "notification dispatched",
            extra={
                "owner_id": str(event.owner_id),
                "kind": event.kind.value,
                "sent": result.sent,
                "failed": result.failed,
            },
        )
        return result

    async def _resolve_destinations(self, session: AsyncSession, event: AlertEvent) -> list[str]:
        prefs = PreferenceService(session)
        addresses = await prefs.enabled_email_addresses(event.owner_id)
        if addresses:
            return addresses
        primary = await prefs.primary_email(event.owner_id)
        return [primary] if primary else []

    async def _deliver(self, to: str, event: AlertEvent) -> bool:
        try:
            await self._sender.send(render_email(to, event))
        except Exception:
            logger.exception("email delivery failed", extra={"to": to, "kind": event.kind.value})
            return False
        return True
