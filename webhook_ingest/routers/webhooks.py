"""Routes receiving payment-provider webhooks."""

import json
import logging
import time
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from webhook_ingest.config import get_settings
from webhook_ingest.core.rate_limit import limiter, webhook_rate_limit
from webhook_ingest.db import get_db
from webhook_ingest.schemas.webhook import WebhookReceipt
from webhook_ingest.services import webhook_events
from webhook_ingest.services.webhook_providers import InvalidWebhookPayload, WebhookProvider, get_provider
from webhook_ingest.services.webhook_signatures import WebhookSecretNotConfigured
from webhook_ingest.utils.errors import (
    DB_ERROR,
    INTERNAL_ERROR,
    INVALID_PAYLOAD,
    NOT_FOUND,
    WEBHOOK_INVALID_SIGNATURE,
    WEBHOOK_PAYLOAD_TOO_LARGE,
    error_response,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _payload_too_large(limit: int) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
        detail=error_response(
            WEBHOOK_PAYLOAD_TOO_LARGE,
            f"Payload exceeds {limit // (1024 * 1024) or 1}MB limit",
        ),
    )


async def _read_body(request: Request, limit: int, provider: str) -> bytes:
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > limit:
        logger.warning("Webhook payload too large", extra={"provider": provider, "size": int(declared)})
        raise _payload_too_large(limit)

    raw_body = await request.body()
    if len(raw_body) > limit:
        logger.warning("Webhook payload too large", extra={"provider": provider, "size": len(raw_body)})
        raise _payload_too_large(limit)
    return raw_body


def _parse_body(raw_body: bytes, provider: str) -> dict[str, Any]:
    try:
        body = json.loads(raw_body) if raw_body else None
    except (UnicodeDecodeError, ValueError, RecursionError):
        body = None
    if not isinstance(body, dict):
        logger.warning("Webhook body is not a JSON object", extra={"provider": provider})
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response(INVALID_PAYLOAD, "Empty or invalid payload"),
        )
    return body


def _verify_signature(provider: WebhookProvider, body: dict[str, Any], request: Request) -> None:
    settings = get_settings()
    if settings.WEBHOOK_SKIP_SIGNATURE_VALIDATION and settings.app_env.lower() == "dev":
        logger.warning("Skipping webhook signature validation (dev mode)", extra={"provider": provider.name})
        return

    headers = dict(request.headers)
    if not provider.has_signature(body, headers):
        logger.warning("Missing webhook signature", extra={"provider": provider.name})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response(WEBHOOK_INVALID_SIGNATURE, "Missing signature"),
        )

    try:
        valid = provider.verify(body, headers, settings)
    except WebhookSecretNotConfigured:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=error_response(INTERNAL_ERROR, "Webhook secret not configured"),
        )

    if not valid:
        logger.warning("Invalid webhook signature", extra={"provider": provider.name})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response(WEBHOOK_INVALID_SIGNATURE, "Invalid signature"),
        )


@router.post(
    "/{provider_name}",
    status_code=status.HTTP_200_OK,
    response_model=WebhookReceipt,
    response_model_exclude_none=True,
)
@limiter.limit(webhook_rate_limit)
async def receive_webhook(
    provider_name: str,
    request: Request,
    db: Session = Depends(get_db),
) -> WebhookReceipt:
    """Validate, normalise and durably record a webhook; processing happens later."""

    started = time.monotonic()
    provider = get_provider(provider_name)
    if provider is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response(NOT_FOUND, "Endpoint not found"),
        )

    raw_body = await _read_body(request, get_settings().WEBHOOK_MAX_BODY_BYTES, provider.name)
    body = _parse_body(raw_body, provider.name)
    _verify_signature(provider, body, request)

    try:
        event = provider.normalize(body)
    except InvalidWebhookPayload as exc:
        logger.warning("Invalid webhook payload", extra={"provider": provider.name, "reason": str(exc)})
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response(INVALID_PAYLOAD, str(exc)),
        )

    log_extra = {
        "provider": provider.name,
        "idempotency_key": event.idempotency_key,
        "event_type": event.event_type,
    }
    logger.info("Webhook received", extra=log_extra)

    try:
        try:
            saved = webhook_events.record_event(db, event)
        except IntegrityError:
            # A concurrent delivery won the unique key; anything else is a real failure.
            if webhook_events.get_event_by_key(db, event.idempotency_key) is None:
                raise
            saved = None
    except SQLAlchemyError as exc:
        logger.error("Failed to save webhook event", extra={**log_extra, "error": str(exc)})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=error_response(DB_ERROR, "Failed to save webhook event"),
        )

    if saved is None:
        logger.info("Duplicate webhook ignored", extra=log_extra)
        return WebhookReceipt(duplicate=True)

    logger.info(
        "Webhook event saved",
        extra={
            **log_extra,
            "event_id": saved.id,
            "duration_ms": int((time.monotonic() - started) * 1000),
        },
    )
    return WebhookReceipt(event_id=saved.id)


__all__ = ["router"]
