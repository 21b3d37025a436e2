from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import uvicorn
from fastapi import FastAPI

from canary.api.routers import cron, health, incidents
from canary.core.config import get_settings
from canary.db.session import get_engine


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logging.basicConfig(level=get_settings().log_level)
    yield
    await get_engine().dispose()


app = FastAPI(title="Canary Monitoring API", lifespan=lifespan)

app.include_router(cron.router)
app.include_router(incidents.router)
app.include_router(health.router)


def main() -> None:
    settings = get_settings()
    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
