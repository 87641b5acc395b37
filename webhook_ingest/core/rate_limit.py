"""Per-client rate limiting for the public webhook routes."""
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from webhook_ingest.config import get_settings
from webhook_ingest.utils.errors import RATE_LIMIT_EXCEEDED, error_response

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60

limiter = Limiter(key_func=get_remote_address, enabled=get_settings().WEBHOOK_RATE_LIMIT_ENABLED)


def webhook_rate_limit() -> str:
    """Limit string read from the settings on every request."""

    return f"{get_settings().WEBHOOK_RATE_LIMIT_PER_MINUTE}/minute"


def _rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning(
        "Webhook rate limit exceeded",
        extra={"client_ip": get_remote_address(request), "path": request.url.path},
    )
    return JSONResponse(
        status_code=429,
        content=error_response(RATE_LIMIT_EXCEEDED, "Too many requests"),
        headers={"Retry-After": str(WINDOW_SECONDS)},
    )


def install_rate_limiting(app: FastAPI) -> None:
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


__all__ = ["install_rate_limiting", "limiter", "webhook_rate_limit"]
