"""Scheduled batch processor for stored webhook events.

Each run:

1. returns ``skipped`` if another run is still in flight in this process;
2. resets events stuck in ``processing`` past the stuck timeout;
3. fetches up to ``batch_size`` pending events, oldest first;
4. hands each one to the handler registry, in order, then marks it
   ``complete``, back to ``pending`` for a retry, or ``failed`` (with an
   alert) once ``max_attempts`` is reached.

Store calls are synchronous SQLAlchemy and run in the threadpool. A status
write that matches no row means another writer moved the event first; the
event is then counted as skipped and no alert is sent.

The run guard is process-local. Running the processor on several replicas
needs a storage-backed lease instead (see ``scheduler_lock``).
"""
from __future__ import annotations

import enum
import functools
import inspect
import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from webhook_ingest import db
from webhook_ingest.config import Settings, get_settings
from webhook_ingest.models.webhook_event import WebhookEvent, WebhookEventStatus
from webhook_ingest.services import alerts, webhook_handlers
from webhook_ingest.services.webhook_events import (
    fetch_pending_events,
    recover_stuck_events,
    transition_event,
)
from webhook_ingest.services.webhook_handlers import EventProcessor, HandlerResult
from webhook_ingest.utils.errors import HANDLER_ERROR
from webhook_ingest.utils.time import utcnow

logger = logging.getLogger(__name__)

ExhaustionAlert = Callable[[str, str, str, int], Any]


@dataclass(frozen=True)
class ProcessorConfig:
    batch_size: int = 10
    stuck_timeout_minutes: int = 5
    max_attempts: int = 5

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "ProcessorConfig":
        settings = settings or get_settings()
        return cls(
            batch_size=settings.WEBHOOK_BATCH_SIZE,
            stuck_timeout_minutes=settings.WEBHOOK_STUCK_TIMEOUT_MINUTES,
            max_attempts=settings.WEBHOOK_MAX_ATTEMPTS,
        )


@dataclass
class ProcessorRunResult:
    success: bool
    processed: int = 0
    failed: int = 0
    skipped: bool = False
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        if self.skipped:
            return {"success": self.success, "skipped": True}
        payload: dict[str, Any] = {
            "success": self.success,
            "processed": self.processed,
            "failed": self.failed,
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload


class _Outcome(enum.Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class RunGuard:
    """In-memory flag allowing a single active run per process."""

    def __init__(self) -> None:
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @contextmanager
    def acquire(self) -> Iterator[bool]:
        if self._running:
            yield False
            return
        self._running = True
        try:
            yield True
        finally:
            self._running = False


_guard = RunGuard()


def is_processor_running() -> bool:
    return _guard.running


def _session(db_session: Session | None = None) -> tuple[Session, bool]:
    if db_session is not None:
        return db_session, False
    return db.get_sessionmaker()(), True


async def run_process_webhooks(
    *,
    db_session: Session | None = None,
    handler: EventProcessor | None = None,
    alert: ExhaustionAlert | None = None,
    config: ProcessorConfig | None = None,
) -> ProcessorRunResult:
    """Run one processing pass unless another pass is already in flight."""

    with _guard.acquire() as acquired:
        if not acquired:
            logger.debug("Webhook processor already running, skipping")
            return ProcessorRunResult(success=True, skipped=True)

        session, should_close = _session(db_session)
        try:
            return await _process_batch(
                session,
                handler=handler or webhook_handlers.process_event,
                alert=alert or functools.partial(alerts.alert_on_exhaustion, session),
                config=config or ProcessorConfig.from_settings(),
            )
        finally:
            if should_close:
                session.close()


async def _process_batch(
    session: Session,
    *,
    handler: EventProcessor,
    alert: ExhaustionAlert,
    config: ProcessorConfig,
) -> ProcessorRunResult:
    started = time.monotonic()
    logger.info("Starting webhook processing", extra={"batch_size": config.batch_size})

    try:
        await run_in_threadpool(recover_stuck_events, session, timeout_minutes=config.stuck_timeout_minutes)
    except SQLAlchemyError as exc:
        await run_in_threadpool(session.rollback)
        logger.warning("Failed to recover stuck webhook events", extra={"error": str(exc)})

    try:
        events = await run_in_threadpool(fetch_pending_events, session, limit=config.batch_size)
    except SQLAlchemyError as exc:
        await run_in_threadpool(session.rollback)
        logger.error("Failed to fetch pending webhook events", extra={"error": str(exc)})
        return ProcessorRunResult(success=False, error=str(exc))

    if not events:
        logger.debug("No pending webhook events")
        return ProcessorRunResult(success=True)

    logger.info("Found pending webhook events", extra={"count": len(events)})

    processed = failed = 0
    for event in events:
        outcome = await _process_event(session, event, handler=handler, alert=alert, config=config)
        if outcome is _Outcome.COMPLETED:
            processed += 1
        elif outcome is _Outcome.FAILED:
            failed += 1

    logger.info(
        "Webhook processing complete",
        extra={
            "processed": processed,
            "failed": failed,
            "duration_ms": int((time.monotonic() - started) * 1000),
        },
    )
    return ProcessorRunResult(success=failed == 0, processed=processed, failed=failed)


async def _transition(session: Session, event: WebhookEvent, target: WebhookEventStatus, **changes: Any) -> bool:
    return await run_in_threadpool(transition_event, session, event, target, **changes)


async def _process_event(
    session: Session,
    event: WebhookEvent,
    *,
    handler: EventProcessor,
    alert: ExhaustionAlert,
    config: ProcessorConfig,
) -> _Outcome:
    log_extra = {
        "event_id": event.id,
        "idempotency_key": event.idempotency_key,
        "event_type": event.event_type,
        "attempt": event.attempts + 1,
    }
    logger.info("Processing webhook event", extra=log_extra)

    try:
        if not await _transition(session, event, WebhookEventStatus.PROCESSING):
            return _Outcome.SKIPPED
    except SQLAlchemyError as exc:
        await run_in_threadpool(session.rollback)
        logger.warning("Failed to mark webhook event as processing", extra={**log_extra, "error": str(exc)})
        return _Outcome.FAILED

    try:
        result = await handler(event.event_type, event.payload)
    except Exception as exc:  # noqa: BLE001 - one handler must not abort the batch
        logger.exception("Webhook handler raised", extra=log_extra)
        result = HandlerResult.fail(HANDLER_ERROR, str(exc) or exc.__class__.__name__)

    try:
        if result.success:
            if not await _transition(
                session,
                event,
                WebhookEventStatus.COMPLETE,
                processed_at=utcnow(),
                last_error=None,
            ):
                return _Outcome.SKIPPED
            logger.info("Webhook event processed", extra=log_extra)
            return _Outcome.COMPLETED

        attempts = event.attempts + 1
        error_message = result.error_message
        if attempts >= config.max_attempts:
            if not await _transition(
                session,
                event,
                WebhookEventStatus.FAILED,
                attempts=attempts,
                last_error=error_message,
            ):
                return _Outcome.SKIPPED
            logger.error(
                "Webhook event failed permanently",
                extra={**log_extra, "attempts": attempts, "error": error_message},
            )
            await _notify_exhaustion(session, alert, event, error_message, attempts)
        else:
            if not await _transition(
                session,
                event,
                WebhookEventStatus.PENDING,
                attempts=attempts,
                last_error=error_message,
            ):
                return _Outcome.SKIPPED
            logger.warning(
                "Webhook event failed, will retry",
                extra={**log_extra, "attempts": attempts, "error": error_message},
            )
        return _Outcome.FAILED
    except SQLAlchemyError as exc:
        # The row stays in processing and is picked up again by stuck recovery.
        await run_in_threadpool(session.rollback)
        logger.error("Failed to record webhook event outcome", extra={**log_extra, "error": str(exc)})
        return _Outcome.FAILED


async def _notify_exhaustion(
    session: Session,
    alert: ExhaustionAlert,
    event: WebhookEvent,
    error_message: str,
    attempts: int,
) -> None:
    try:
        if inspect.iscoroutinefunction(alert):
            await alert(event.idempotency_key, event.event_type, error_message, attempts)
        else:
            await run_in_threadpool(alert, event.idempotency_key, event.event_type, error_message, attempts)
    except Exception:  # noqa: BLE001 - alerting is fire-and-forget
        await run_in_threadpool(session.rollback)
        logger.exception(
            "Failed to send webhook exhaustion alert",
            extra={"idempotency_key": event.idempotency_key, "attempts": attempts},
        )


__all__ = [
    "ProcessorConfig",
    "ProcessorRunResult",
    "RunGuard",
    "is_processor_running",
    "run_process_webhooks",
]
