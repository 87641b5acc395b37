"""Authenticity checks for inbound provider webhooks.

Two strategies are supported:

* shared secret embedded in the JSON body (Cakto), compared in constant time;
* HMAC-SHA256 over a canonical manifest built from request fields
  (Mercado Pago ``x-signature: ts=...,v1=...`` plus ``x-request-id``).

Validators return ``False`` for anything malformed and only raise
:class:`WebhookSecretNotConfigured` when the server side is misconfigured.
"""
from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Mapping, NamedTuple

logger = logging.getLogger(__name__)


class WebhookSecretNotConfigured(RuntimeError):
    """The provider secret is missing from the deployment configuration."""

    def __init__(self, provider: str) -> None:
        super().__init__(f"Webhook secret not configured for provider '{provider}'")
        self.provider = provider


class ManifestSignature(NamedTuple):
    ts: str
    digest: str


def _constant_time_equals(received: bytes, expected: bytes) -> bool:
    # A length mismatch is a plain rejection, compare_digest only runs on equal sizes.
    if len(received) != len(expected):
        return False
    return hmac.compare_digest(received, expected)


def verify_shared_secret(received: str | None, configured: str | None, *, provider: str = "cakto") -> bool:
    """Compare a body-embedded secret against the configured one."""

    if not configured:
        logger.error("Webhook secret not configured", extra={"provider": provider})
        raise WebhookSecretNotConfigured(provider)
    if not isinstance(received, str) or not received:
        return False

    received_bytes = received.encode("utf-8")
    expected_bytes = configured.encode("utf-8")
    if len(received_bytes) != len(expected_bytes):
        logger.warning(
            "Webhook secret length mismatch",
            extra={"provider": provider, "received_length": len(received_bytes)},
        )
        return False
    return _constant_time_equals(received_bytes, expected_bytes)


def parse_signature_header(value: str | None) -> ManifestSignature | None:
    """Parse ``ts=<timestamp>,v1=<hex digest>``; ``None`` when either part is missing."""

    if not value:
        return None
    parts: dict[str, str] = {}
    for chunk in value.split(","):
        key, sep, item = chunk.strip().partition("=")
        if sep and item:
            parts[key.strip()] = item.strip()
    ts = parts.get("ts")
    digest = parts.get("v1")
    if not ts or not digest:
        return None
    return ManifestSignature(ts=ts, digest=digest)


def build_manifest(*, resource_id: str | None, request_id: str | None, ts: str) -> str:
    """Build the signed manifest, including only the fields that are present."""

    manifest = ""
    if resource_id:
        manifest += f"id:{resource_id};"
    if request_id:
        manifest += f"request-id:{request_id};"
    manifest += f"ts:{ts};"
    return manifest


def compute_manifest_digest(secret: str, manifest: str) -> str:
    return hmac.new(secret.encode("utf-8"), manifest.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_manifest_signature(
    signature_header: str | None,
    *,
    request_id: str | None,
    resource_id: str | None,
    secret: str | None,
    provider: str = "mercadopago",
) -> bool:
    """Recompute the manifest HMAC and compare it with the received ``v1`` digest."""

    if not secret:
        logger.error("Webhook secret not configured", extra={"provider": provider})
        raise WebhookSecretNotConfigured(provider)

    parsed = parse_signature_header(signature_header)
    if parsed is None:
        logger.warning("Invalid signature header format", extra={"provider": provider})
        return False

    manifest = build_manifest(resource_id=resource_id, request_id=request_id, ts=parsed.ts)
    expected = compute_manifest_digest(secret, manifest)
    try:
        received_bytes = bytes.fromhex(parsed.digest)
    except ValueError:
        logger.warning("Signature digest is not hex encoded", extra={"provider": provider})
        return False

    if not _constant_time_equals(received_bytes, bytes.fromhex(expected)):
        logger.warning("Signature mismatch", extra={"provider": provider})
        return False
    return True


def get_header(headers: Mapping[str, str], key: str) -> str | None:
    """Case-insensitive header lookup."""

    for h_key, value in headers.items():
        if h_key.lower() == key.lower():
            return value
    return None


__all__ = [
    "ManifestSignature",
    "WebhookSecretNotConfigured",
    "build_manifest",
    "compute_manifest_digest",
    "get_header",
    "parse_signature_header",
    "verify_manifest_signature",
    "verify_shared_secret",
]
