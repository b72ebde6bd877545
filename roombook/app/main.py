import asyncio
import contextlib
from contextlib import asynccontextmanager

from fastapi import FastAPI

from roombook.app.core.config import settings
from roombook.app.core.logging_config import configure_logging
from roombook.app.db.session import SessionLocal, engine
from roombook.app.services.sweeper import run_sweeper
import roombook.app.routers.admin as admin
import roombook.app.routers.availability as availability
import roombook.app.routers.health as health
import roombook.app.routers.reservations as reservations


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    sweeper_task = None
    if settings.SWEEPER_ENABLED:
        sweeper_task = asyncio.create_task(run_sweeper(SessionLocal, settings.SWEEP_INTERVAL_SECONDS))
    try:
        yield
    finally:
        if sweeper_task is not None:
            sweeper_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper_task
        await engine.dispose()


app = FastAPI(
    title="Library Room Booking API",
    lifespan=lifespan,
)

app.include_router(health.router, prefix=settings.API_PREFIX)
app.include_router(availability.router, prefix=settings.API_PREFIX)
app.include_router(reservations.router, prefix=settings.API_PREFIX)
app.include_router(admin.router, prefix=settings.API_PREFIX)
