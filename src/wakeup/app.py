"""FastAPI application exposing the wake scheduler."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .router import router as api_router
from .services import reconcile_schedules
from .status import monitor
from .timers import get_timer_backend
from .wol.utils import configure_logging, logger

configure_logging()


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    backend = get_timer_backend()
    backend.start()
    try:
        rearmed = reconcile_schedules()
    except Exception:
        logger.exception("Startup reconciliation of wake timers failed")
    else:
        logger.bind(rearmed=rearmed).info("Wake timers reconciled on startup")
    await monitor.start()
    try:
        yield
    finally:
        await monitor.stop()
        backend.shutdown()


app = FastAPI(
    title="Wakeup Scheduler API",
    version="1.0.0",
    description=(
        "HTTP API for registering Wake-on-LAN devices, sending magic packets "
        "and managing recurring wake schedules."
    ),
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
