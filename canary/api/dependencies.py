from __future__ import annotations

from functools import partial
from typing import AsyncIterator, Callable

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from canary.core.config import Settings, get_settings
from canary.db.session import get_session
from canary.workers.runner import MonitoringRunner, build_runner


async def get_db_session() -> AsyncIterator[AsyncSession]:
    async for session in get_session():
        yield session


def get_cron_secret(settings: Settings = Depends(get_settings)) -> str | None:
    return settings.cron_secret


def get_runner_factory(settings: Settings = Depends(get_settings)) -> Callable[[], MonitoringRunner]:
    # Built lazily so a rejected trigger never touches the database.
    return partial(build_runner, settings)
