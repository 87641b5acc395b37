"""Event-type handler registry.

Business mutations (membership activation, renewals, refunds, ...) live with
the host application and are plugged in here::

    @register_handler("purchase_approved")
    async def activate_member(payload: dict) -> HandlerResult:
        ...
        return HandlerResult.ok()

Handlers may be re-invoked for the same event (at-least-once delivery) and
must be idempotent with respect to their business effect.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from webhook_ingest.utils.errors import HANDLER_ERROR, UNKNOWN_EVENT_TYPE

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HandlerError:
    code: str
    message: str


@dataclass(frozen=True)
class HandlerResult:
    success: bool
    error: HandlerError | None = None

    @classmethod
    def ok(cls) -> "HandlerResult":
        return cls(success=True)

    @classmethod
    def fail(cls, code: str, message: str) -> "HandlerResult":
        return cls(success=False, error=HandlerError(code=code, message=message))

    @property
    def error_message(self) -> str:
        return self.error.message if self.error else "Unknown error"


WebhookHandler = Callable[[dict[str, Any]], Awaitable[HandlerResult]]
EventProcessor = Callable[[str, dict[str, Any]], Awaitable[HandlerResult]]

HANDLERS: dict[str, WebhookHandler] = {}


def register_handler(event_type: str) -> Callable[[WebhookHandler], WebhookHandler]:
    """Decorator registering ``handler`` for ``event_type``."""

    def decorator(handler: WebhookHandler) -> WebhookHandler:
        if event_type in HANDLERS and HANDLERS[event_type] is not handler:
            raise ValueError(f"A handler is already registered for '{event_type}'")
        HANDLERS[event_type] = handler
        return handler

    return decorator


def unregister_handler(event_type: str) -> None:
    HANDLERS.pop(event_type, None)


async def process_event(event_type: str, payload: dict[str, Any]) -> HandlerResult:
    """Dispatch ``payload`` to the handler registered for ``event_type``."""

    handler = HANDLERS.get(event_type)
    if handler is None:
        logger.warning("Unknown webhook event type", extra={"event_type": event_type})
        return HandlerResult.fail(UNKNOWN_EVENT_TYPE, f"Unknown event type: {event_type}")

    try:
        result = await handler(payload)
    except Exception as exc:  # noqa: BLE001 - handler failures become retryable results
        logger.exception("Webhook handler raised", extra={"event_type": event_type})
        return HandlerResult.fail(HANDLER_ERROR, str(exc) or exc.__class__.__name__)

    logger.info(
        "Webhook handler completed",
        extra={"event_type": event_type, "success": result.success},
    )
    return result


__all__ = [
    "EventProcessor",
    "HANDLERS",
    "HandlerError",
    "HandlerResult",
    "WebhookHandler",
    "process_event",
    "register_handler",
    "unregister_handler",
]
