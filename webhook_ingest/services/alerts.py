"""Alert service helpers."""
import logging
from typing import Any

from sqlalchemy.orm import Session

from webhook_ingest.models.alert import Alert

logger = logging.getLogger(__name__)

WEBHOOK_PROCESSING_FAILED = "WEBHOOK_PROCESSING_FAILED"


def create_alert(db: Session, *, alert_type: str, message: str, payload: dict[str, Any]) -> Alert:
    """Persist an alert in the database."""

    alert = Alert(type=alert_type, message=message[:255], payload_json=payload)
    db.add(alert)
    db.commit()
    db.refresh(alert)
    logger.warning("Alert created", extra={"type": alert_type, "payload": payload})
    return alert


def alert_on_exhaustion(
    db: Session,
    idempotency_key: str,
    event_type: str,
    error_message: str,
    attempts: int,
) -> Alert:
    """Record that a webhook event exhausted its retries and needs a human."""

    return create_alert(
        db,
        alert_type=WEBHOOK_PROCESSING_FAILED,
        message=f"Webhook {event_type} failed after {attempts} attempts: {error_message}",
        payload={
            "idempotency_key": idempotency_key,
            "event_type": event_type,
            "error": error_message,
            "attempts": attempts,
        },
    )
