from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api import router
from logging_config import configure_logging
from services.collector import build_default_orchestrator
from telemetry.historian import build_default_source


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    orchestrator = build_default_orchestrator()
    try:
        yield
    finally:
        close = getattr(orchestrator.source, "aclose", None)
        if close is not None:
            await close()
        build_default_orchestrator.cache_clear()
        build_default_source.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Fleet Telemetry Aggregator",
        description="Daily distance and energy consumption derived from cumulative vehicle telemetry.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app

app = create_app()
