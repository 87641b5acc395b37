"""DB-backed lease electing the single replica that runs scheduled jobs.

The webhook processor's own run guard is process-local; this lease keeps the
scheduled trigger itself on one replica. A crashed owner stops heartbeating
and its lease lapses after ``ttl_seconds``.
"""
from __future__ import annotations

import os
import socket
from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from webhook_ingest import db
from webhook_ingest.config import get_settings
from webhook_ingest.models.scheduler_lock import SchedulerLock
from webhook_ingest.utils.time import ensure_utc, utcnow

LOCK_NAME = "webhook-processor"


def _session(db_session: Session | None = None) -> tuple[Session, bool]:
    if db_session is not None:
        return db_session, False
    return db.get_sessionmaker()(), True


def _owner_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


def _ttl(ttl_seconds: int | None) -> timedelta:
    if ttl_seconds is None:
        ttl_seconds = get_settings().SCHEDULER_LOCK_TTL_SECONDS
    return timedelta(seconds=ttl_seconds)


def _load(session: Session, name: str) -> SchedulerLock | None:
    return session.execute(
        select(SchedulerLock).where(SchedulerLock.name == name).with_for_update()
    ).scalar_one_or_none()


def try_acquire_scheduler_lock(
    name: str = LOCK_NAME,
    *,
    ttl_seconds: int | None = None,
    db_session: Session | None = None,
    now: datetime | None = None,
) -> bool:
    """Take the lease if it is free, expired, or already ours."""

    session, should_close = _session(db_session)
    owner = _owner_id()
    now = now or utcnow()
    expires = now + _ttl(ttl_seconds)

    try:
        lock = _load(session, name)
        if lock is None:
            session.add(SchedulerLock(name=name, owner=owner, acquired_at=now, expires_at=expires))
            session.commit()
            return True

        if lock.owner != owner and ensure_utc(lock.expires_at) > now:
            session.rollback()
            return False

        if lock.owner != owner:
            lock.acquired_at = now
        lock.owner = owner
        lock.expires_at = expires
        session.commit()
        return True
    except IntegrityError:
        # Another replica inserted the row first.
        session.rollback()
        return False
    finally:
        if should_close:
            session.close()


def refresh_scheduler_lock(
    name: str = LOCK_NAME,
    *,
    ttl_seconds: int | None = None,
    db_session: Session | None = None,
) -> bool:
    """Extend our lease; returns ``False`` if we no longer own it."""

    session, should_close = _session(db_session)
    try:
        lock = _load(session, name)
        if lock is None or lock.owner != _owner_id():
            session.rollback()
            return False
        lock.expires_at = utcnow() + _ttl(ttl_seconds)
        session.commit()
        return True
    finally:
        if should_close:
            session.close()


def release_scheduler_lock(name: str = LOCK_NAME, *, db_session: Session | None = None) -> None:
    """Drop the lease if this runner holds it."""

    session, should_close = _session(db_session)
    try:
        session.execute(
            delete(SchedulerLock).where(SchedulerLock.name == name, SchedulerLock.owner == _owner_id())
        )
        session.commit()
    finally:
        if should_close:
            session.close()


def describe_scheduler_lock(name: str = LOCK_NAME, *, db_session: Session | None = None) -> dict[str, object]:
    """Return a lightweight description of the current lease for health output."""

    session, should_close = _session(db_session)
    try:
        lock = session.execute(select(SchedulerLock).where(SchedulerLock.name == name)).scalar_one_or_none()
        if lock is None:
            return {"status": "none", "owner": None}

        expires_in = (ensure_utc(lock.expires_at) - utcnow()).total_seconds()
        return {
            "status": "owned_by_self" if lock.owner == _owner_id() else "owned_by_other",
            "owner": lock.owner,
            "expires_in_seconds": round(expires_in, 1),
            "expired": expires_in <= 0,
        }
    finally:
        if should_close:
            session.close()


__all__ = [
    "LOCK_NAME",
    "describe_scheduler_lock",
    "refresh_scheduler_lock",
    "release_scheduler_lock",
    "try_acquire_scheduler_lock",
]
