import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fora.config import settings
from fora.logging_config import RequestIdMiddleware, configure_logging

# Before the router imports, so their module-level setup already logs as JSON.
configure_logging(settings.log_level)

from fora.api.blobs import router as blobs_router  # noqa: E402
from fora.api.cron import router as cron_router  # noqa: E402
from fora.api.generate import router as generate_router  # noqa: E402
from fora.api.jobs import router as jobs_router  # noqa: E402
from fora.api.notifications import router as notifications_router  # noqa: E402
from fora.api.upload import router as upload_router  # noqa: E402
from fora.api.webhook import router as webhook_router  # noqa: E402
from fora.database import engine, init_db  # noqa: E402
from fora.services.job_worker import WorkerScheduler, get_worker  # noqa: E402

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("Database ready at %s", engine.url.render_as_string(hide_password=True))

    scheduler: WorkerScheduler | None = None
    if settings.worker_enabled:
        scheduler = WorkerScheduler(get_worker())
        scheduler.start()
    app.state.scheduler = scheduler

    yield

    if scheduler is not None:
        await scheduler.stop()
    logger.info("Fora API stopped")


app = FastAPI(title="Fora Animation API", lifespan=lifespan)

# Added first so CORS wraps it: preflight responses get an X-Request-ID too.
app.add_middleware(RequestIdMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.public_base_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)

app.include_router(generate_router)
app.include_router(jobs_router)
app.include_router(webhook_router)
app.include_router(cron_router)
app.include_router(upload_router)
app.include_router(notifications_router)
app.include_router(blobs_router)


@app.get("/api/health")
async def health() -> dict:
    return {"status": "ok"}
