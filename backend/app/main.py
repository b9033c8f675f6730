import asyncio
import contextlib
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

# Configure structured JSON logging as early as possible so every subsequent
# log record (including import-time warnings) uses the JSON formatter.
from app.logging_config import RequestIdMiddleware, configure_logging

# Use LOG_LEVEL env var directly here because settings hasn't been imported yet
configure_logging(level=os.environ.get("LOG_LEVEL", "INFO"))

from app.api.admin import router as admin_router  # noqa: E402
from app.config import settings  # noqa: E402
from app.database import init_db  # noqa: E402
from app.services.pipeline import get_pipeline  # noqa: E402

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up")
    init_db()
    logger.info("Database initialised")

    scheduler_task: asyncio.Task | None = None
    if settings.scheduler_enabled:
        scheduler = get_pipeline().build_scheduler()
        scheduler_task = asyncio.create_task(scheduler.run_forever())
        logger.info("Weekly summary scheduler started")

    yield

    if scheduler_task is not None:
        scheduler_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await scheduler_task
    logger.info("Application shutting down")


app = FastAPI(title="Weekly Digest API", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)

app.include_router(admin_router)


@app.get("/api/health")
async def health():
    return {"status": "ok"}
