"""Test configuration."""
import os
from collections.abc import AsyncIterator, Callable, Iterator
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from alembic import command
from alembic.config import Config
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

# --- Default environment for the test run
os.environ.setdefault("DATABASE_URL", "sqlite:///./webhook_ingest_test.db")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("CAKTO_WEBHOOK_SECRET", "test-cakto-secret")
os.environ.setdefault("MP_WEBHOOK_SECRET", "test-mp-secret")

from webhook_ingest.main import app  # noqa: E402
from webhook_ingest.core.rate_limit import limiter  # noqa: E402
from webhook_ingest.db import get_db  # noqa: E402
from webhook_ingest.models import Base, WebhookEvent, WebhookEventStatus  # noqa: E402
from webhook_ingest.utils.time import utcnow  # noqa: E402

DB_PATH = Path("./webhook_ingest_test.db")


def _run_migrations() -> None:
    cfg = Config(str(Path(__file__).resolve().parents[1] / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", os.environ["DATABASE_URL"])
    command.upgrade(cfg, "head")


# --- (1) Fresh database file for each session
if DB_PATH.exists():
    DB_PATH.unlink()

engine = create_engine(
    os.environ["DATABASE_URL"],
    connect_args={"check_same_thread": False},
    future=True,
)
TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False,
                                   future=True, expire_on_commit=False)

# --- (2) Schema comes from Alembic only
_run_migrations()


@pytest.fixture
def db_session() -> Iterator[Session]:
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        for table in reversed(Base.metadata.sorted_tables):
            session.execute(table.delete())
        session.commit()
        session.close()


@pytest.fixture(autouse=True)
def override_db_dependency(db_session: Session) -> Iterator[None]:
    def _get_db() -> Iterator[Session]:
        yield db_session
    app.dependency_overrides[get_db] = _get_db
    yield
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


@pytest.fixture(autouse=True)
def reset_rate_limits() -> Iterator[None]:
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def make_event(db_session: Session) -> Callable[..., WebhookEvent]:
    """Factory inserting a webhook event row directly."""

    def _factory(
        *,
        event_type: str = "purchase_approved",
        status: WebhookEventStatus = WebhookEventStatus.PENDING,
        attempts: int = 0,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
        payload: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> WebhookEvent:
        now = utcnow()
        event = WebhookEvent(
            idempotency_key=idempotency_key or f"{event_type}_{uuid4().hex[:12]}",
            event_type=event_type,
            payload=payload if payload is not None else {"id": uuid4().hex[:8]},
            status=status,
            attempts=attempts,
            created_at=created_at or now,
            updated_at=updated_at or created_at or now,
        )
        db_session.add(event)
        db_session.commit()
        db_session.refresh(event)
        return event

    return _factory
