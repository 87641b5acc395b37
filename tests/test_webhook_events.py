"""Tests for the webhook event store."""
from datetime import timedelta

import pytest

from webhook_ingest.models import InvalidStatusTransition, WebhookEvent, WebhookEventStatus
from webhook_ingest.services import webhook_events
from webhook_ingest.services.webhook_providers import NormalizedEvent
from webhook_ingest.utils.time import utcnow


def _normalized(key: str = "purchase_approved_ord-1") -> NormalizedEvent:
    return NormalizedEvent(idempotency_key=key, event_type="purchase_approved", payload={"id": "ord-1"})


def test_record_event_inserts_once(db_session):
    first = webhook_events.record_event(db_session, _normalized())
    second = webhook_events.record_event(db_session, _normalized())

    assert first is not None
    assert first.status == WebhookEventStatus.PENDING
    assert first.attempts == 0
    assert second is None
    assert db_session.query(WebhookEvent).count() == 1


@pytest.mark.parametrize(
    "current, target, allowed",
    [
        (WebhookEventStatus.PENDING, WebhookEventStatus.PROCESSING, True),
        (WebhookEventStatus.PENDING, WebhookEventStatus.COMPLETE, False),
        (WebhookEventStatus.PENDING, WebhookEventStatus.FAILED, False),
        (WebhookEventStatus.PROCESSING, WebhookEventStatus.COMPLETE, True),
        (WebhookEventStatus.PROCESSING, WebhookEventStatus.PENDING, True),
        (WebhookEventStatus.PROCESSING, WebhookEventStatus.FAILED, True),
        (WebhookEventStatus.COMPLETE, WebhookEventStatus.PENDING, False),
        (WebhookEventStatus.FAILED, WebhookEventStatus.PENDING, False),
    ],
)
def test_status_transition_table(current, target, allowed):
    assert current.can_transition_to(target) is allowed


def test_terminal_statuses():
    assert WebhookEventStatus.COMPLETE.is_terminal
    assert WebhookEventStatus.FAILED.is_terminal
    assert not WebhookEventStatus.PENDING.is_terminal


def test_transition_event_rejects_illegal_move(db_session, make_event):
    event = make_event(status=WebhookEventStatus.COMPLETE)

    with pytest.raises(InvalidStatusTransition):
        webhook_events.transition_event(db_session, event, WebhookEventStatus.PENDING)


def test_transition_event_is_status_gated(db_session, make_event):
    event = make_event()
    db_session.query(WebhookEvent).filter(WebhookEvent.id == event.id).update(
        {WebhookEvent.status: WebhookEventStatus.PROCESSING}, synchronize_session=False
    )
    db_session.commit()

    # ``event`` still believes it is pending; the gate on the stored status refuses.
    assert event.status == WebhookEventStatus.PENDING
    assert webhook_events.transition_event(db_session, event, WebhookEventStatus.PROCESSING) is False


def test_transition_event_updates_row_and_timestamp(db_session, make_event):
    old = utcnow() - timedelta(hours=1)
    event = make_event(created_at=old, updated_at=old)

    assert webhook_events.transition_event(db_session, event, WebhookEventStatus.PROCESSING) is True

    db_session.expire_all()
    stored = db_session.get(WebhookEvent, event.id)
    assert stored.status == WebhookEventStatus.PROCESSING
    assert stored.updated_at.replace(tzinfo=None) > old.replace(tzinfo=None)


def test_recover_stuck_events_only_resets_stale_processing(db_session, make_event):
    stale = utcnow() - timedelta(minutes=10)
    stuck = make_event(status=WebhookEventStatus.PROCESSING, attempts=2, updated_at=stale, created_at=stale)
    fresh = make_event(status=WebhookEventStatus.PROCESSING)
    pending = make_event(updated_at=stale, created_at=stale)

    reset = webhook_events.recover_stuck_events(db_session, timeout_minutes=5)

    assert reset == 1
    db_session.expire_all()
    assert db_session.get(WebhookEvent, stuck.id).status == WebhookEventStatus.PENDING
    assert db_session.get(WebhookEvent, stuck.id).attempts == 2
    assert db_session.get(WebhookEvent, fresh.id).status == WebhookEventStatus.PROCESSING
    assert db_session.get(WebhookEvent, pending.id).status == WebhookEventStatus.PENDING


def test_fetch_pending_events_is_fifo_and_bounded(db_session, make_event):
    base = utcnow() - timedelta(hours=1)
    created = [make_event(created_at=base + timedelta(seconds=offset)) for offset in (30, 10, 20, 40)]
    make_event(status=WebhookEventStatus.COMPLETE, created_at=base)

    batch = webhook_events.fetch_pending_events(db_session, limit=3)

    expected = sorted(created, key=lambda e: e.created_at)[:3]
    assert [e.id for e in batch] == [e.id for e in expected]


def test_count_events_by_status(db_session, make_event):
    make_event()
    make_event()
    make_event(status=WebhookEventStatus.FAILED)

    counts = webhook_events.count_events_by_status(db_session)

    assert counts == {"pending": 2, "processing": 0, "complete": 0, "failed": 1}
