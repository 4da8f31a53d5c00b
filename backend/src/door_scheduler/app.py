"""FastAPI application exposing the door scheduling endpoints."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .gateway.utils import configure_logging, logger
from .router import router as api_router
from .schedule_executor import get_schedule_executor, get_scheduler_settings

configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_scheduler_settings()
    executor = None
    if settings.enabled:
        executor = get_schedule_executor()
        await executor.start()
    else:
        logger.info("Schedule executor disabled; background loop not started.")
    app.state.executor = executor
    try:
        yield
    finally:
        if executor is not None:
            await executor.stop()
        app.state.executor = None


app = FastAPI(
    title="Door Scheduler API",
    version=__version__,
    description="HTTP API for door unlock schedules, recurrence patterns, and the action log.",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    """Simple readiness probe."""
    return {"status": "ok"}
