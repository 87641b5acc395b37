"""Utility helpers for standardized error responses."""
from typing import Any

# Boundary error codes returned by the webhook receiver.
WEBHOOK_INVALID_SIGNATURE = "WEBHOOK_INVALID_SIGNATURE"
WEBHOOK_PAYLOAD_TOO_LARGE = "WEBHOOK_PAYLOAD_TOO_LARGE"
INVALID_PAYLOAD = "INVALID_PAYLOAD"
DB_ERROR = "DB_ERROR"
INTERNAL_ERROR = "INTERNAL_ERROR"
NOT_FOUND = "NOT_FOUND"
RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"

# Per-event handler error codes, recorded on the event row only.
HANDLER_ERROR = "HANDLER_ERROR"
UNKNOWN_EVENT_TYPE = "UNKNOWN_EVENT_TYPE"


def error_response(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return a standardized error payload: ``{"error": CODE, "message": ...}``."""

    payload: dict[str, Any] = {"error": code, "message": message}
    if details:
        payload["details"] = details
    return payload
