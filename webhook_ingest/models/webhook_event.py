"""Webhook event log model."""
from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Enum as SqlEnum, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base

IDEMPOTENCY_KEY_MAX_LENGTH = 255
EVENT_TYPE_MAX_LENGTH = 100


class InvalidStatusTransition(ValueError):
    """Raised when code attempts a status change the lifecycle does not allow."""

    def __init__(self, current: "WebhookEventStatus", target: "WebhookEventStatus") -> None:
        super().__init__(f"Illegal webhook event transition: {current.value} -> {target.value}")
        self.current = current
        self.target = target


class WebhookEventStatus(str, enum.Enum):
    """Lifecycle of a stored webhook event."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL

    def can_transition_to(self, target: "WebhookEventStatus") -> bool:
        return target in _TRANSITIONS[self]

    def ensure_transition(self, target: "WebhookEventStatus") -> "WebhookEventStatus":
        if not self.can_transition_to(target):
            raise InvalidStatusTransition(self, target)
        return target


_TRANSITIONS: dict[WebhookEventStatus, frozenset[WebhookEventStatus]] = {
    WebhookEventStatus.PENDING: frozenset({WebhookEventStatus.PROCESSING}),
    WebhookEventStatus.PROCESSING: frozenset(
        {WebhookEventStatus.COMPLETE, WebhookEventStatus.PENDING, WebhookEventStatus.FAILED}
    ),
    WebhookEventStatus.COMPLETE: frozenset(),
    WebhookEventStatus.FAILED: frozenset(),
}
_TERMINAL = frozenset({WebhookEventStatus.COMPLETE, WebhookEventStatus.FAILED})


class WebhookEvent(Base):
    """An inbound provider webhook, persisted before any business effect runs."""

    __tablename__ = "webhook_events"
    __table_args__ = (
        Index("ix_webhook_events_status_created", "status", "created_at"),
        Index("ix_webhook_events_status_updated", "status", "updated_at"),
    )

    idempotency_key: Mapped[str] = mapped_column(String(IDEMPOTENCY_KEY_MAX_LENGTH), unique=True, nullable=False)
    event_type: Mapped[str] = mapped_column(String(EVENT_TYPE_MAX_LENGTH), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    status: Mapped[WebhookEventStatus] = mapped_column(
        SqlEnum(
            WebhookEventStatus,
            name="webhook_event_status",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
            validate_strings=True,
        ),
        nullable=False,
        default=WebhookEventStatus.PENDING,
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return (
            f"WebhookEvent(id={self.id!r}, idempotency_key={self.idempotency_key!r}, "
            f"status={self.status.value if self.status else None!r}, attempts={self.attempts!r})"
        )
