# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Standup Service
===============
Schedules recurring asynchronous team standups, collects answers through
magic links, and ingests Slack webhooks (events, interactivity, commands).

Instance state-machine:
    collecting ─► completed   (deadline with answers, or everyone answered)
    collecting ─► cancelled   (deadline with no answers)

Port: 8005
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.controllers import slack_controller, standup_controller, system_controller
from app.core.config import settings
from app.core.database import engine, init_db
from app.core.dependencies import get_dedup_store, get_jobs
from app.core.errors import StandupError
from app.core.logging import get_logger
from app.jobs.runner import build_scheduler
from app.middleware import MetricsMiddleware, RequestIDMiddleware

logger = get_logger(settings.SERVICE_NAME)


# ── Lifespan ──────────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    init_db()
    scheduler = None
    if settings.SCHEDULER_ENABLED:
        scheduler = build_scheduler(*get_jobs(), get_dedup_store())
        scheduler.start()
        logger.info("Background scheduler started")
    yield
    if scheduler is not None:
        scheduler.shutdown(wait=False)
    engine.dispose()
    logger.info("Shutting down; connection pool disposed")


# ── FastAPI App ───────────────────────────────────────────────────────────
app = FastAPI(
    title="Standup Service",
    description="Async standup scheduling, magic-link answer collection and Slack ingestion.",
    version=settings.SERVICE_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestIDMiddleware)


@app.exception_handler(StandupError)
async def standup_error_handler(request: Request, exc: StandupError):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.code,
            "detail": exc.message,
            "request_id": getattr(request.state, "request_id", None),
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception")
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "detail": str(exc),
            "request_id": getattr(request.state, "request_id", None),
        },
    )


app.include_router(system_controller.router)
app.include_router(standup_controller.router)
app.include_router(slack_controller.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=settings.SERVICE_PORT)
