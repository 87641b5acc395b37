"""ORM models package."""
from .alert import Alert
from .base import Base
from .scheduler_lock import SchedulerLock
from .webhook_event import InvalidStatusTransition, WebhookEvent, WebhookEventStatus

__all__ = [
    "Alert",
    "Base",
    "InvalidStatusTransition",
    "SchedulerLock",
    "WebhookEvent",
    "WebhookEventStatus",
]
