from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


class AlertKind(str, enum.Enum):
    DOWN = "DOWN"
    RECOVERED = "RECOVERED"


@dataclass(frozen=True)
class AlertEvent:
    owner_id: uuid.UUID
    kind: AlertKind
    check_name: str
    check_url: str
    at: datetime
    status_code: int | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    body: str


class EmailSender(Protocol):
    async def send(self, message: EmailMessage) -> None:  # pragma: no cover - interface
        ...


def render_email(to: str, event: AlertEvent) -> EmailMessage:
    if event.kind is AlertKind.DOWN:
        subject = f"[Canary] ❌ {event.check_name} is DOWN"
    else:
        subject = f"[Canary] ✅ {event.check_name} recovered"

    lines = [
        f"Check: {event.check_name}",
        f"URL: {event.check_url}",
        f"When: {event.at.isoformat()}",
    ]
    if event.status_code is not None:
        lines.append(f"Status: {event.status_code}")
    if event.error_message:
        lines.append(f"Error: {event.error_message}")
    lines.extend(["", "-- Canary"])

    return EmailMessage(to=to, subject=subject, body="\n".join(lines))
