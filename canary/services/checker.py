from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

import httpx

from canary.db.models import HttpMethod, Status


@dataclass(frozen=True)
class ProbeRequest:
    check_id: uuid.UUID
    url: str
    method: HttpMethod
    timeout_ms: int
    expected_status: int | None = None


@dataclass(frozen=True)
class ProbeOutcome:
    ok: bool
    status_code: int | None
    latency_ms: int
    error_message: str | None
    checked_at: datetime

    @property
    def status(self) -> Status:
        return Status.UP if self.ok else Status.DOWN


def is_success(status_code: int, expected_status: int | None) -> bool:
    """Classify a response code.

    An explicit expected code must match exactly; otherwise any 2xx or 3xx
    response counts as success.
    """
    if expected_status is not None:
        return status_code == expected_status
    return 200 <= status_code < 400


class Checker:
    """Issues a single bounded-time HTTP request per probe. No retries."""

    def __init__(
        self,
        client_factory: Callable[[], httpx.AsyncClient] | None = None,
        follow_redirects: bool = False,
    ) -> None:
        self._client_factory = client_factory or (
            lambda: httpx.AsyncClient(follow_redirects=follow_redirects)
        )

    async def probe(self, req: ProbeRequest) -> ProbeOutcome:
        timeout_seconds = req.timeout_ms / 1000

        ok = False
        status_code: int | None = None
        error: str | None = None
        loop = asyncio.get_running_loop()
        started = loop.time()

        async with self._client_factory() as client:
            try:
                # The deadline covers the whole exchange, not each socket operation.
                response = await asyncio.wait_for(
                    client.request(req.method.value, req.url, timeout=timeout_seconds),
                    timeout=timeout_seconds,
                )
                status_code = response.status_code
                ok = is_success(response.status_code, req.expected_status)
            except (asyncio.TimeoutError, httpx.TimeoutException):
                error = "timeout"
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                error = _normalize_error(exc)

        latency_ms = int((loop.time() - started) * 1000)

        return ProbeOutcome(
            ok=ok,
            status_code=status_code,
            latency_ms=latency_ms,
            error_message=error,
            checked_at=datetime.now(timezone.utc),
        )


def _normalize_error(exc: Exception) -> str:
    message = str(exc)
    name = exc.__class__.__name__
    if not message:
        return name
    return f"{name}: {message}"
