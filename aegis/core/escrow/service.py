"""Escrow application service.

Wraps the pure processor with everything around it: per-record
serialization, loading and saving through the repository, the two-phase
funding broadcast, and delivery of side effects. Every public operation
returns a ``TransitionResult``; nothing here raises for a rejected action.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from aegis.common.enums import (
    FUNDING_ACTIONS,
    ActorRole,
    EffectKind,
    EscrowAction,
    EscrowStatus,
    NotificationSeverity,
    Party,
    RejectionReason,
)
from aegis.common.logging import get_logger
from aegis.core.escrow import guards, timer
from aegis.core.escrow.processor import process
from aegis.core.escrow.repository import (
    EscrowRepository,
    InMemoryEscrowRepository,
    SqlAlchemyEscrowRepository,
    StorageError,
)
from aegis.core.escrow.roles import ActorContext, RoleDirectory, resolve_role
from aegis.core.escrow.schemas import (
    ActionCommand,
    EscrowCreate,
    EscrowRecord,
    Participant,
    SideEffect,
    TransitionResult,
)
from aegis.core.notifications.service import (
    DatabaseNotificationSink,
    InMemoryNotificationSink,
    NotificationSink,
)
from aegis.integrations.monero_daemon import BroadcastOutcome, MoneroDaemonClient

logger = get_logger("escrow.service")

SettlementDispatcher = Callable[[str, SideEffect], None]

# Placeholder reference for the guard dry run that precedes a broadcast.
_DRY_RUN_REFERENCE = "dry_run"


class Broadcaster(Protocol):
    async def broadcast(self, signed_tx_hex: str) -> BroadcastOutcome:
        ...


class RecordLocks:
    """One ``asyncio.Lock`` per record id, dropped once nobody waits on it."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, escrow_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(escrow_id, asyncio.Lock())
        self._waiters[escrow_id] = self._waiters.get(escrow_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[escrow_id] -= 1
            if self._waiters[escrow_id] == 0:
                del self._waiters[escrow_id]
                del self._locks[escrow_id]

    def __len__(self) -> int:
        return len(self._locks)


record_locks = RecordLocks()


def multisig_address() -> str:
    return f"mock_multisig_{uuid.uuid4().hex[:12]}"


class EscrowService:
    def __init__(
        self,
        repository: EscrowRepository,
        notifications: NotificationSink,
        broadcaster: Broadcaster,
        directory: RoleDirectory,
        default_arbiter_id: str,
        clock: Callable[[], datetime] = timer.utc_now,
        settlement_dispatcher: SettlementDispatcher | None = None,
        locks: RecordLocks | None = None,
    ):
        self.repository = repository
        self.notifications = notifications
        self.broadcaster = broadcaster
        self.directory = directory
        self.default_arbiter_id = default_arbiter_id
        self.clock = clock
        self.settlement_dispatcher = settlement_dispatcher
        self.locks = locks or record_locks

    def now(self) -> datetime:
        return self.clock()

    # ---------- Queries ----------

    async def get(self, escrow_id: str) -> EscrowRecord | None:
        return await self.repository.load(escrow_id)

    async def list_for_actor(self, actor_id: str, status: EscrowStatus | None = None) -> list[EscrowRecord]:
        if actor_id == self.directory.administrator_id:
            return await self.repository.list_all(status)
        return await self.repository.list_for_actor(actor_id, status)

    async def list_disputes(self, actor_id: str, open_only: bool = False) -> list[EscrowRecord]:
        """The dispute queue of an arbiter. The administrator sees every dispute."""
        if actor_id == self.directory.administrator_id:
            return await self.repository.list_disputes(open_only=open_only)
        return await self.repository.list_disputes(actor_id, open_only)

    async def list_stuck(self) -> list[EscrowRecord]:
        """Open records whose timelock has already elapsed."""
        now = self.now()
        return [r for r in await self.repository.list_open() if timer.evaluate(r, now).expired]

    def role_of(self, record: EscrowRecord, actor_id: str) -> ActorRole:
        return resolve_role(record, actor_id, self.directory)

    # ---------- Commands ----------

    async def create(self, data: EscrowCreate, initiator_id: str) -> TransitionResult:
        if initiator_id not in (data.payer_id, data.payee_id):
            return await self._reject(
                None,
                RejectionReason.INVALID_INPUT,
                "the initiator must be the payer or the payee",
            )

        arbiter_id = data.arbiter_id or self.default_arbiter_id
        if arbiter_id in (data.payer_id, data.payee_id):
            return await self._reject(
                None,
                RejectionReason.INVALID_INPUT,
                "the arbiter must be neither the payer nor the payee",
            )

        now = self.now()
        record = EscrowRecord(
            title=data.title,
            description=data.description,
            amount=data.amount,
            initiator_id=initiator_id,
            payer=Participant(id=data.payer_id),
            payee=Participant(id=data.payee_id),
            arbiter_id=arbiter_id,
            default_outcome=data.default_outcome,
            duration_hours=data.duration_hours,
            creation_timestamp=now,
            last_update_timestamp=now,
            multisig_address=multisig_address(),
        )

        try:
            await self.repository.save(record)
        except StorageError as e:
            return await self._reject(record.id, RejectionReason.PERSISTENCE_FAILED, f"could not store escrow: {e}")

        logger.info("Escrow %s created by %s: %s %s", record.id, initiator_id, record.amount, record.title)
        effects = [SideEffect.notify(f'Escrow "{record.title}" created.', NotificationSeverity.SUCCESS)]
        await self._deliver(record.id, effects)
        return TransitionResult.accept(record, effects)

    async def apply(self, escrow_id: str, command: ActionCommand, actor_id: str) -> TransitionResult:
        """Apply any action except funding, which must go through ``fund``."""
        if command.action in FUNDING_ACTIONS:
            return await self._reject(
                escrow_id,
                RejectionReason.INVALID_INPUT,
                "funding requires a broadcast transaction; use fund",
            )
        async with self.locks.hold(escrow_id):
            record = await self.repository.load(escrow_id, for_update=True)
            if record is None:
                return await self._reject(escrow_id, RejectionReason.RECORD_NOT_FOUND, f"escrow '{escrow_id}' not found")
            return await self._run(record, command, actor_id)

    async def fund(self, escrow_id: str, actor_id: str, signed_tx_hex: str) -> TransitionResult:
        """Broadcast the caller's funding transaction, then record the funding.

        The guard runs once before the broadcast so a transaction is never
        relayed for an action that would be refused; the record is only
        written after the daemon accepted the transaction.
        """
        async with self.locks.hold(escrow_id):
            record = await self.repository.load(escrow_id, for_update=True)
            if record is None:
                return await self._reject(escrow_id, RejectionReason.RECORD_NOT_FOUND, f"escrow '{escrow_id}' not found")

            role = self.role_of(record, actor_id)
            action = EscrowAction.FUND_AS_PAYEE if role == ActorRole.PAYEE else EscrowAction.FUND_AS_PAYER

            rejection = guards.check(
                record,
                ActionCommand(action=action, funding_reference=_DRY_RUN_REFERENCE),
                ActorContext(actor_id=actor_id, role=role),
                self.now(),
            )
            if rejection is not None:
                await self.repository.release()
                return await self._reject(escrow_id, rejection.reason, rejection.message)

            outcome = await self.broadcaster.broadcast(signed_tx_hex)
            if not outcome.success:
                await self.repository.release()
                logger.error("Funding broadcast for escrow %s failed: %s", escrow_id, outcome.reason)
                return await self._reject(
                    escrow_id,
                    RejectionReason.BROADCAST_FAILED,
                    f"Transaction broadcast failed: {outcome.reason}",
                )

            return await self._run(
                record, ActionCommand(action=action, funding_reference=outcome.reference), actor_id
            )

    async def delete_unfunded(self, escrow_id: str, actor_id: str) -> TransitionResult:
        return await self.apply(escrow_id, ActionCommand(action=EscrowAction.DELETE_UNFUNDED), actor_id)

    async def emergency_override(
        self, escrow_id: str, actor_id: str, favor: Party | None, justification: str | None
    ) -> TransitionResult:
        command = ActionCommand(
            action=EscrowAction.EMERGENCY_OVERRIDE,
            favor=favor,
            justification=justification,
        )
        return await self.apply(escrow_id, command, actor_id)

    async def expire_due(self, now: datetime | None = None) -> list[str]:
        """Submit ``timelock_expiry`` for every open record past its deadline.

        Returns the ids that were resolved. Rejections (a record settled
        meanwhile, say) are left alone.
        """
        now = now or self.now()
        expired: list[str] = []
        for record in await self.repository.list_open():
            if not timer.evaluate(record, now).expired:
                continue
            result = await self.apply(
                record.id,
                ActionCommand(action=EscrowAction.TIMELOCK_EXPIRY),
                self.directory.system_actor_id,
            )
            if result.accepted:
                expired.append(record.id)
        if expired:
            logger.info("Timelock default applied to %d escrows", len(expired))
        return expired

    # ---------- Internals ----------

    async def _run(self, record: EscrowRecord, command: ActionCommand, actor_id: str) -> TransitionResult:
        result = process(record, command, actor_id, self.directory, self.now())
        if not result.accepted:
            await self.repository.release()
            return await self._reject(record.id, result.rejection.reason, result.rejection.message, logged=True)

        try:
            if result.removed:
                await self.repository.remove(record.id)
            else:
                await self.repository.save(result.record)
        except StorageError as e:
            return await self._reject(
                record.id,
                RejectionReason.PERSISTENCE_FAILED,
                f"could not store escrow: {e}",
            )

        await self._deliver(record.id, result.effects)
        return result

    async def _deliver(self, escrow_id: str, effects: list[SideEffect]) -> None:
        for effect in effects:
            if effect.kind == EffectKind.NOTIFY:
                await self.notifications.emit(effect.message, effect.severity, escrow_id)
            elif self.settlement_dispatcher is not None:
                self.settlement_dispatcher(escrow_id, effect)
            else:
                logger.info("Settlement %s for escrow %s not dispatched", effect.outcome.value, escrow_id)

    async def _reject(
        self,
        escrow_id: str | None,
        reason: RejectionReason,
        message: str,
        logged: bool = False,
    ) -> TransitionResult:
        if not logged:
            logger.warning("Rejected action on escrow %s (%s): %s", escrow_id, reason.value, message)
        await self.notifications.emit(f"Action failed: {message}", NotificationSeverity.ERROR, escrow_id)
        return TransitionResult.reject(reason, message)


_memory_repository: InMemoryEscrowRepository | None = None
_memory_notifications: InMemoryNotificationSink | None = None


def build_escrow_service(
    db: AsyncSession,
    settlement_dispatcher: SettlementDispatcher | None = None,
    broadcaster: Broadcaster | None = None,
) -> EscrowService:
    """Wire a service for the configured ``ESCROW_STORE_BACKEND``."""
    global _memory_repository, _memory_notifications
    from aegis.config import settings

    if settings.ESCROW_STORE_BACKEND == "memory":
        if _memory_repository is None:
            _memory_repository = InMemoryEscrowRepository()
            _memory_notifications = InMemoryNotificationSink()
        repository, notifications = _memory_repository, _memory_notifications
    else:
        repository, notifications = SqlAlchemyEscrowRepository(db), DatabaseNotificationSink(db)

    return EscrowService(
        repository=repository,
        notifications=notifications,
        broadcaster=broadcaster or MoneroDaemonClient(),
        directory=RoleDirectory.from_settings(),
        default_arbiter_id=settings.DEFAULT_ARBITER_ID,
        settlement_dispatcher=settlement_dispatcher,
    )
