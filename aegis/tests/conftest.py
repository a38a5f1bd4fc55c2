from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import JSON, event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from aegis.common.enums import DefaultOutcome, EscrowStatus
from aegis.core.escrow.repository import InMemoryEscrowRepository
from aegis.core.escrow.roles import RoleDirectory
from aegis.core.escrow.schemas import EscrowRecord, Participant
from aegis.core.escrow.service import EscrowService, RecordLocks
from aegis.core.notifications.service import InMemoryNotificationSink
from aegis.db.base import Base
from aegis.db.models import *  # noqa: F401,F403 - ensure all models loaded
from aegis.integrations.monero_daemon import BroadcastOutcome

PAYER = "alice"
PAYEE = "bob"
ARBITER = "arbiter_MVP_001"
ADMIN = "admin"
SYSTEM = "system:timelock"
STRANGER = "mallory"

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


# Make JSONB render as JSON for SQLite
@event.listens_for(Base.metadata, "before_create")
def _remap_jsonb(target, connection, **kw):
    if connection.dialect.name == "sqlite":
        for table in target.tables.values():
            for column in table.columns:
                if isinstance(column.type, JSONB):
                    column.type = JSON()


@pytest.fixture
async def test_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def client(db_session):
    from aegis.api.deps import get_db
    from aegis.main import app

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def mock_celery_tasks():
    """Mock Celery task.delay() calls so no broker is needed."""
    with patch("aegis.tasks.escrow_tasks.dispatch_settlement.delay") as dispatch:
        yield dispatch


@pytest.fixture
def directory():
    return RoleDirectory(administrator_id=ADMIN, system_actor_id=SYSTEM)


def _make_record(status: EscrowStatus = EscrowStatus.PENDING_FUNDING, **overrides) -> EscrowRecord:
    """Build a record directly in ``status`` with consistent participant flags."""
    payer_funded = status not in (EscrowStatus.PENDING_FUNDING, EscrowStatus.PAYEE_CONFIRMED_ITEM)
    payee_funded = status not in (EscrowStatus.PENDING_FUNDING, EscrowStatus.PAYER_FUNDED)
    fields = {
        "id": "esc_test",
        "title": "Vintage synth",
        "description": "Roland Juno-60, boxed",
        "amount": Decimal("1.5"),
        "initiator_id": PAYER,
        "payer": Participant(id=PAYER, has_funded=payer_funded),
        "payee": Participant(id=PAYEE, has_funded=payee_funded, has_confirmed=payee_funded),
        "arbiter_id": ARBITER,
        "status": status,
        "default_outcome": DefaultOutcome.PAYER_REFUND,
        "duration_hours": 72,
        "creation_timestamp": T0,
        "last_update_timestamp": T0,
    }
    if status == EscrowStatus.ACTIVE:
        fields["payee"] = Participant(id=PAYEE, has_funded=True, has_confirmed=False)
    if status in (EscrowStatus.DISPUTE_INITIATED, EscrowStatus.EVIDENCE_SUBMISSION, EscrowStatus.ARBITER_REVIEW):
        fields["arbiter_involved"] = True
        fields["dispute_reason"] = "Item never arrived"
    fields.update(overrides)
    return EscrowRecord(**fields)


@pytest.fixture
def make_record():
    return _make_record


class FakeBroadcaster:
    def __init__(self, success: bool = True):
        self.success = success
        self.calls: list[str] = []

    async def broadcast(self, signed_tx_hex: str) -> BroadcastOutcome:
        self.calls.append(signed_tx_hex)
        if not self.success:
            return BroadcastOutcome(success=False, reason="daemon offline")
        return BroadcastOutcome(success=True, reference=f"tx_{len(self.calls)}")


class FrozenClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def broadcaster():
    return FakeBroadcaster()


@pytest.fixture
def repository():
    return InMemoryEscrowRepository()


@pytest.fixture
def notifications():
    return InMemoryNotificationSink()


@pytest.fixture
def settlements():
    return []


@pytest.fixture
def service(repository, notifications, broadcaster, directory, clock, settlements):
    return EscrowService(
        repository=repository,
        notifications=notifications,
        broadcaster=broadcaster,
        directory=directory,
        default_arbiter_id=ARBITER,
        clock=clock,
        settlement_dispatcher=lambda escrow_id, effect: settlements.append((escrow_id, effect)),
        locks=RecordLocks(),
    )
