"""Provider adapters: signature strategy plus payload normalisation."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from webhook_ingest.config import Settings
from webhook_ingest.models.webhook_event import EVENT_TYPE_MAX_LENGTH, IDEMPOTENCY_KEY_MAX_LENGTH
from webhook_ingest.services.webhook_signatures import (
    get_header,
    verify_manifest_signature,
    verify_shared_secret,
)


class InvalidWebhookPayload(ValueError):
    """A required field is missing from the provider body."""


@dataclass(frozen=True)
class NormalizedEvent:
    """Canonical form of an inbound webhook, ready to be stored."""

    idempotency_key: str
    event_type: str
    payload: dict[str, Any]


class WebhookProvider:
    """Base adapter; subclasses implement one provider's conventions."""

    name: str = ""

    def secret(self, settings: Settings) -> str | None:
        raise NotImplementedError

    def has_signature(self, body: Mapping[str, Any], headers: Mapping[str, str]) -> bool:
        raise NotImplementedError

    def verify(self, body: Mapping[str, Any], headers: Mapping[str, str], settings: Settings) -> bool:
        raise NotImplementedError

    def normalize(self, body: Mapping[str, Any]) -> NormalizedEvent:
        raise NotImplementedError


def _build_event(idempotency_key: str, event_type: Any, payload: dict[str, Any]) -> NormalizedEvent:
    event_type = str(event_type)
    if len(event_type) > EVENT_TYPE_MAX_LENGTH:
        raise InvalidWebhookPayload("Event type too long")
    if len(idempotency_key) > IDEMPOTENCY_KEY_MAX_LENGTH:
        raise InvalidWebhookPayload("Identifier too long")
    return NormalizedEvent(idempotency_key=idempotency_key, event_type=event_type, payload=payload)


def _data_section(body: Mapping[str, Any]) -> Mapping[str, Any]:
    data = body.get("data")
    return data if isinstance(data, Mapping) else {}


class CaktoProvider(WebhookProvider):
    """Cakto posts ``{event, secret, data: {id, refId, ...}}``."""

    name = "cakto"

    def secret(self, settings: Settings) -> str | None:
        return settings.cakto_webhook_secret

    def has_signature(self, body: Mapping[str, Any], headers: Mapping[str, str]) -> bool:
        return bool(body.get("secret"))

    def verify(self, body: Mapping[str, Any], headers: Mapping[str, str], settings: Settings) -> bool:
        return verify_shared_secret(body.get("secret"), self.secret(settings), provider=self.name)

    def normalize(self, body: Mapping[str, Any]) -> NormalizedEvent:
        event_type = body.get("event")
        data = _data_section(body)
        transaction_id = data.get("id") or data.get("refId")
        if not transaction_id:
            raise InvalidWebhookPayload("Missing data.id")
        if not event_type:
            raise InvalidWebhookPayload("Missing event")
        # The same order emits several events, so the type is part of the key.
        return _build_event(f"{event_type}_{transaction_id}", event_type, dict(data))


class MercadoPagoProvider(WebhookProvider):
    """Mercado Pago posts ``{type, action, data: {id}}`` signed via ``x-signature``."""

    name = "mercadopago"

    def secret(self, settings: Settings) -> str | None:
        return settings.mp_webhook_secret

    def has_signature(self, body: Mapping[str, Any], headers: Mapping[str, str]) -> bool:
        return bool(get_header(headers, "x-signature"))

    def verify(self, body: Mapping[str, Any], headers: Mapping[str, str], settings: Settings) -> bool:
        data_id = _data_section(body).get("id")
        return verify_manifest_signature(
            get_header(headers, "x-signature"),
            request_id=get_header(headers, "x-request-id"),
            resource_id=str(data_id) if data_id else None,
            secret=self.secret(settings),
            provider=self.name,
        )

    def normalize(self, body: Mapping[str, Any]) -> NormalizedEvent:
        event_type = body.get("type")
        data_id = _data_section(body).get("id")
        if not event_type or not data_id:
            raise InvalidWebhookPayload("Missing type or data.id")
        action = body.get("action") or "unknown"
        return _build_event(f"mp_{event_type}_{action}_{data_id}", event_type, dict(body))


PROVIDERS: dict[str, WebhookProvider] = {
    provider.name: provider for provider in (CaktoProvider(), MercadoPagoProvider())
}


def get_provider(name: str) -> WebhookProvider | None:
    return PROVIDERS.get(name.lower())


__all__ = [
    "CaktoProvider",
    "InvalidWebhookPayload",
    "MercadoPagoProvider",
    "NormalizedEvent",
    "PROVIDERS",
    "WebhookProvider",
    "get_provider",
]
