"""Persistence operations for the webhook event log.

Every mutation is a single-row (or single-statement) update gated on the
row's current status and committed on its own, so a crash never leaves more
than one event in an intermediate state.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from webhook_ingest.models.webhook_event import WebhookEvent, WebhookEventStatus
from webhook_ingest.services.webhook_providers import NormalizedEvent
from webhook_ingest.utils.time import minutes_ago, utcnow

logger = logging.getLogger(__name__)

# Dialects offering INSERT ... ON CONFLICT DO NOTHING RETURNING.
_UPSERT_INSERTS: dict[str, Callable[..., Any]] = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _dialect_name(db: Session) -> str:
    return db.get_bind().dialect.name


def record_event(db: Session, event: NormalizedEvent) -> WebhookEvent | None:
    """Insert ``event`` unless its idempotency key is already stored.

    Returns the new row, or ``None`` when the key was already recorded.
    Any other database failure propagates as ``SQLAlchemyError``.
    """

    now = utcnow()
    values = {
        "idempotency_key": event.idempotency_key,
        "event_type": event.event_type,
        "payload": event.payload,
        "status": WebhookEventStatus.PENDING,
        "attempts": 0,
        "created_at": now,
        "updated_at": now,
    }

    insert_factory = _UPSERT_INSERTS.get(_dialect_name(db))
    if insert_factory is not None:
        stmt = (
            insert_factory(WebhookEvent)
            .values(**values)
            .on_conflict_do_nothing(index_elements=[WebhookEvent.idempotency_key])
            .returning(WebhookEvent)
        )
        try:
            saved = db.execute(stmt).scalar_one_or_none()
            db.commit()
        except Exception:
            db.rollback()
            raise
        return saved

    row = WebhookEvent(**values)
    try:
        db.add(row)
        db.commit()
    except IntegrityError:
        db.rollback()
        if get_event_by_key(db, event.idempotency_key) is not None:
            return None
        raise
    db.refresh(row)
    return row


def get_event_by_key(db: Session, idempotency_key: str) -> WebhookEvent | None:
    return db.execute(
        select(WebhookEvent).where(WebhookEvent.idempotency_key == idempotency_key)
    ).scalar_one_or_none()


def transition_event(
    db: Session,
    event: WebhookEvent,
    target: WebhookEventStatus,
    **changes: Any,
) -> bool:
    """Move ``event`` to ``target`` if it is still in the status we loaded.

    Raises :class:`InvalidStatusTransition` for transitions outside the
    lifecycle. Returns ``False`` when another writer changed the row first.
    """

    current = event.status
    current.ensure_transition(target)

    values = {"status": target, "updated_at": utcnow(), **changes}
    result = db.execute(
        update(WebhookEvent)
        .where(WebhookEvent.id == event.id, WebhookEvent.status == current)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount != 1:
        logger.warning(
            "Webhook event status changed concurrently",
            extra={
                "event_id": event.id,
                "idempotency_key": event.idempotency_key,
                "expected_status": current.value,
                "target_status": target.value,
            },
        )
        return False

    for key, value in values.items():
        set_committed_value(event, key, value)
    return True


def recover_stuck_events(db: Session, *, timeout_minutes: int, now: datetime | None = None) -> int:
    """Reset ``processing`` events untouched for ``timeout_minutes`` back to ``pending``.

    ``attempts`` is left unchanged. Returns the number of events reset.
    """

    cutoff = minutes_ago(timeout_minutes, now=now)
    WebhookEventStatus.PROCESSING.ensure_transition(WebhookEventStatus.PENDING)

    stuck = db.execute(
        select(WebhookEvent.id, WebhookEvent.idempotency_key, WebhookEvent.attempts).where(
            WebhookEvent.status == WebhookEventStatus.PROCESSING,
            WebhookEvent.updated_at < cutoff,
        )
    ).all()
    if not stuck:
        return 0

    result = db.execute(
        update(WebhookEvent)
        .where(
            WebhookEvent.id.in_([row.id for row in stuck]),
            WebhookEvent.status == WebhookEventStatus.PROCESSING,
            WebhookEvent.updated_at < cutoff,
        )
        .values(status=WebhookEventStatus.PENDING, updated_at=now or utcnow())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    db.expire_all()

    logger.warning(
        "Reset stuck webhook events to pending",
        extra={
            "count": result.rowcount,
            "idempotency_keys": [row.idempotency_key for row in stuck],
            "timeout_minutes": timeout_minutes,
        },
    )
    return result.rowcount


def fetch_pending_events(db: Session, *, limit: int) -> list[WebhookEvent]:
    """Return up to ``limit`` pending events, oldest first."""

    stmt = (
        select(WebhookEvent)
        .where(WebhookEvent.status == WebhookEventStatus.PENDING)
        .order_by(WebhookEvent.created_at.asc(), WebhookEvent.id.asc())
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    return list(db.scalars(stmt).all())


def count_events_by_status(db: Session) -> dict[str, int]:
    counts = {status.value: 0 for status in WebhookEventStatus}
    rows = db.execute(
        select(WebhookEvent.status, func.count(WebhookEvent.id)).group_by(WebhookEvent.status)
    ).all()
    for status, count in rows:
        counts[WebhookEventStatus(status).value] = count
    return counts


__all__ = [
    "count_events_by_status",
    "fetch_pending_events",
    "get_event_by_key",
    "record_event",
    "recover_stuck_events",
    "transition_event",
]
