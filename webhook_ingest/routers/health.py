"""Health check endpoint."""
from __future__ import annotations

import logging

from fastapi import APIRouter
from sqlalchemy import text

from webhook_ingest import db
from webhook_ingest.config import get_settings
from webhook_ingest.core.runtime_state import is_scheduler_active, is_scheduler_lock_held
from webhook_ingest.db import get_engine
from webhook_ingest.services.scheduler_lock import describe_scheduler_lock
from webhook_ingest.services.webhook_events import count_events_by_status
from webhook_ingest.services.webhook_processor import is_processor_running

router = APIRouter(prefix="/health", tags=["health"])
logger = logging.getLogger(__name__)


def _db_status() -> str:
    """Return 'ok' if the DB is reachable, 'error' otherwise."""

    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return "ok"
    except Exception:  # noqa: BLE001
        logger.exception("DB health check failed")
        return "error"


def _store_snapshot() -> tuple[dict[str, int] | None, dict[str, object]]:
    session = db.get_sessionmaker()()
    try:
        return count_events_by_status(session), describe_scheduler_lock(db_session=session)
    except Exception:  # noqa: BLE001
        logger.exception("Event store health snapshot failed")
        return None, {"status": "unknown", "owner": None}
    finally:
        session.close()


@router.get("", summary="Health check")
def healthcheck() -> dict[str, object]:
    """Report DB reachability, secret configuration and the event backlog."""

    settings = get_settings()
    db_status = _db_status()
    events, scheduler_lock = _store_snapshot() if db_status == "ok" else (None, {"status": "unknown", "owner": None})
    return {
        "status": "ok" if db_status == "ok" else "degraded",
        "db_status": db_status,
        "webhook_secrets": {
            "cakto": bool(settings.cakto_webhook_secret),
            "mercadopago": bool(settings.mp_webhook_secret),
        },
        "scheduler_config_enabled": bool(settings.SCHEDULER_ENABLED),
        "scheduler_running": is_scheduler_active(),
        "scheduler_lock": scheduler_lock,
        "scheduler_lock_held": is_scheduler_lock_held(),
        "processor_running": is_processor_running(),
        "events": events,
    }
