import asyncio
from contextlib import asynccontextmanager

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import FastAPI, Request
from loguru import logger

from app.api.internal import router as internal_router
from app.api.service_plans import router as service_plans_router
from app.config.settings import settings
from app.core.logger import setup_logger
from app.db.models import Base
from app.db.session import check_database_connection, get_engine
from app.scheduling.orchestrator import horizon_tick

setup_logger(level=settings.log_level, log_file=settings.log_file, serialize=settings.log_json)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Manage application lifespan - ensure tables and start the horizon sweep.

    Note: FastAPI requires async for lifespan context manager,
    even if no await operations are used.
    """
    check_database_connection()
    logger.info("Ensuring database tables exist")
    Base.metadata.create_all(bind=get_engine())
    logger.info("Database tables verified")

    scheduler: BackgroundScheduler | None = None
    if settings.sweep_enabled:
        scheduler = BackgroundScheduler()
        scheduler.add_job(
            horizon_tick,
            trigger=IntervalTrigger(hours=settings.sweep_interval_hours),
            id="horizon_sweep",
            name="Horizon Job Generation",
            replace_existing=True,
        )
        scheduler.start()
        logger.info(f"[HORIZON] Started horizon sweep scheduler (runs every {settings.sweep_interval_hours}h)")
    else:
        logger.info("[HORIZON] In-process sweep disabled; relying on /internal/cron/generate-jobs")

    await asyncio.sleep(0)
    yield

    if scheduler is not None:
        scheduler.shutdown()
        logger.info("[HORIZON] Stopped horizon sweep scheduler")


app = FastAPI(title="Field Service Scheduler", lifespan=lifespan)

app.include_router(service_plans_router)
app.include_router(internal_router)

logger.info("FastAPI application initialized")


@app.get("/health")
def health():
    return {"status": "ok"}


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all HTTP requests."""
    logger.debug(f"Request: {request.method} {request.url.path}")
    response = await call_next(request)
    logger.debug(f"Response: {response.status_code} for {request.method} {request.url.path}")
    return response
