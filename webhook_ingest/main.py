from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from webhook_ingest import db
from webhook_ingest.config import AppInfo, get_settings
from webhook_ingest.core.logging import get_logger, setup_logging
from webhook_ingest.core.rate_limit import install_rate_limiting
from webhook_ingest.core.runtime_state import set_scheduler_active
import webhook_ingest.models  # noqa: F401 - registers the tables
from webhook_ingest.routers import get_api_router
from webhook_ingest.services.scheduler_lock import (
    refresh_scheduler_lock,
    release_scheduler_lock,
    try_acquire_scheduler_lock,
)
from webhook_ingest.services.webhook_processor import run_process_webhooks
from webhook_ingest.utils.errors import INTERNAL_ERROR, NOT_FOUND, error_response

logger = get_logger(__name__)
scheduler: AsyncIOScheduler | None = None
ALLOWED_CREATE_ENV = {"dev", "local", "test"}
RELAXED_SECRET_ENV = {"dev", "local", "test"}


def _configure_middlewares(fastapi_app: FastAPI) -> None:
    """Configure optional observability integrations from the settings."""

    runtime_settings = get_settings()
    if runtime_settings.PROMETHEUS_ENABLED:
        from starlette_exporter import PrometheusMiddleware, handle_metrics

        fastapi_app.add_middleware(PrometheusMiddleware, app_name="webhook_ingest")
        fastapi_app.add_route("/metrics", handle_metrics)

    if runtime_settings.SENTRY_DSN:
        import sentry_sdk

        sentry_sdk.init(dsn=runtime_settings.SENTRY_DSN, traces_sample_rate=0.2)


def _assert_webhook_secrets(settings: Any) -> None:
    """Fail fast when no provider secret is configured outside dev/test."""

    configured = {
        "cakto": bool(settings.cakto_webhook_secret),
        "mercadopago": bool(settings.mp_webhook_secret),
    }
    env_lower = settings.app_env.lower()
    if not any(configured.values()) and env_lower not in RELAXED_SECRET_ENV:
        logger.error(
            "Webhook secrets are missing; configure CAKTO_WEBHOOK_SECRET or MP_WEBHOOK_SECRET before startup.",
            extra={"env": settings.app_env},
        )
        raise RuntimeError("Missing webhook secrets in non-dev environment.")
    for provider, present in configured.items():
        if not present:
            logger.warning(
                "Webhook secret not configured; requests for this provider will fail with 500.",
                extra={"env": settings.app_env, "provider": provider},
            )


def _start_scheduler(settings: Any) -> AsyncIOScheduler:
    job_scheduler = AsyncIOScheduler()
    job_scheduler.add_job(
        run_process_webhooks,
        "interval",
        seconds=settings.WEBHOOK_PROCESSOR_INTERVAL_SECONDS,
        id="process-webhooks",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    job_scheduler.add_job(
        refresh_scheduler_lock,
        "interval",
        seconds=max(settings.SCHEDULER_LOCK_TTL_SECONDS // 5, 1),
        id="scheduler-lock-heartbeat",
        replace_existing=True,
    )
    job_scheduler.start()
    return job_scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    global scheduler
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)
    logger.info("Application startup", extra={"env": settings.app_env})
    _assert_webhook_secrets(settings)

    db.init_engine()
    env_lower = settings.app_env.lower()
    if settings.ALLOW_DB_CREATE_ALL and env_lower in ALLOWED_CREATE_ENV:
        logger.warning(
            "Running Base.metadata.create_all() because APP_ENV=%s and ALLOW_DB_CREATE_ALL=True",
            settings.app_env,
        )
        db.create_all()
    else:
        logger.info("Skipping create_all(); use Alembic migrations. APP_ENV=%s", settings.app_env)

    set_scheduler_active(False, lock_held=False)
    lock_acquired = False
    if settings.SCHEDULER_ENABLED:
        lock_acquired = try_acquire_scheduler_lock()
        if lock_acquired:
            scheduler = _start_scheduler(settings)
            set_scheduler_active(True, lock_held=True)
            logger.info(
                "Webhook processor scheduled",
                extra={"interval_seconds": settings.WEBHOOK_PROCESSOR_INTERVAL_SECONDS},
            )
        else:
            logger.warning(
                "Scheduler disabled because the lease is held by another instance.",
                extra={"env": settings.app_env},
            )
    try:
        yield
    finally:
        if scheduler:
            scheduler.shutdown(wait=False)
            scheduler = None
        if lock_acquired:
            release_scheduler_lock()
        set_scheduler_active(False, lock_held=False)
        db.close_engine()
        logger.info("Application shutdown", extra={"env": settings.app_env})


app_info = AppInfo()

app = FastAPI(title=app_info.name, version=app_info.version, lifespan=lifespan)

_configure_middlewares(app)
install_rate_limiting(app)
app.include_router(get_api_router())


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception", exc_info=exc)
    payload = error_response(INTERNAL_ERROR, "Unexpected error processing request")
    return JSONResponse(status_code=500, content=payload)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict) and "error" in detail:
        content: dict[str, Any] = detail
    elif exc.status_code == 404:
        content = error_response(NOT_FOUND, "Endpoint not found")
    else:
        content = error_response("HTTP_ERROR", str(detail))
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


__all__ = ["app"]
