from __future__ import annotations

import hmac
import logging
from typing import Callable

from fastapi import APIRouter, Depends, Header, status
from fastapi.responses import JSONResponse

from canary.api.dependencies import get_cron_secret, get_runner_factory
from canary.api.schemas.cron import BatchSummaryRead
from canary.workers.runner import MonitoringRunner

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cron", tags=["cron"])

SECRET_HEADER = "x-cron-secret"


def authorize_trigger(provided: str | None, expected: str | None) -> bool:
    if not expected or provided is None:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


@router.api_route("/run", methods=["GET", "POST"], response_model=BatchSummaryRead)
async def run_batch(
    x_cron_secret: str | None = Header(default=None, alias=SECRET_HEADER),
    expected_secret: str | None = Depends(get_cron_secret),
    runner_factory: Callable[[], MonitoringRunner] = Depends(get_runner_factory),
):
    if not authorize_trigger(x_cron_secret, expected_secret):
        logger.warning("unauthorized cron trigger")
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"error": "unauthorized"})

    logger.info("cron job started")
    summary = await runner_factory().run_batch()
    return BatchSummaryRead.model_validate(summary)
