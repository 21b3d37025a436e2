from __future__ import annotations

import logging

import httpx

from canary.alerts.base import EmailMessage, EmailSender
from canary.core.config import Settings

logger = logging.getLogger(__name__)


class ResendEmailSender(EmailSender):
    """Delivers mail through the Resend HTTP API."""

    def __init__(
        self,
        *,
        api_key: str,
        sender: str,
        api_url: str = "https://api.resend.com/emails",
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._client = client
        self._timeout = timeout
        self._api_key = api_key
        self._sender = sender
        self._api_url = api_url

    async def send(self, message: EmailMessage) -> None:
        if self._client is not None:
            await self._post(self._client, message)
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            await self._post(client, message)

    async def _post(self, client: httpx.AsyncClient, message: EmailMessage) -> None:
        payload = {
            "from": self._sender,
            "to": [message.to],
            "subject": message.subject,
            "text": message.body,
        }
        resp = await client.post(
            self._api_url,
            json=payload,
            headers={"Authorization": f"Bearer {self._api_key}"},
        )
        resp.raise_for_status()


class LogEmailSender(EmailSender):
    """Used when no email API is configured: the message only goes to the log."""

    async def send(self, message: EmailMessage) -> None:
        logger.info(
            "email transport not configured, logging message",
            extra={"to": message.to, "subject": message.subject, "body": message.body},
        )


def build_email_sender(settings: Settings) -> EmailSender:
    if settings.resend_api_key and settings.email_from:
        return ResendEmailSender(
            api_key=settings.resend_api_key,
            sender=settings.email_from,
            api_url=settings.email_api_url,
            timeout=settings.email_timeout_sec,
        )
    logger.warning("RESEND_API_KEY or EMAIL_FROM is not set; alerts will only be logged")
    return LogEmailSender()
