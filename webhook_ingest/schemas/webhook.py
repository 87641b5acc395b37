"""Webhook receiver schemas."""
from pydantic import BaseModel, Field


class WebhookReceipt(BaseModel):
    """Acknowledgement returned to the provider as soon as the event is stored."""

    received: bool = True
    duplicate: bool | None = None
    event_id: int | None = Field(default=None, serialization_alias="eventId")
