"""Escrow persistence.

The repository stores and returns whole ``EscrowRecord`` snapshots. Callers
never share objects with the store: every load returns a fresh copy, so a
rejected or failed action cannot leak half-applied state.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timezone

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from aegis.common.enums import TERMINAL_STATUSES, EscrowStatus
from aegis.common.logging import get_logger
from aegis.core.escrow.schemas import EscrowRecord
from aegis.db.models.escrow import Escrow

logger = get_logger("escrow.repository")


class StorageError(Exception):
    """The store could not persist a record; nothing was written."""


class EscrowRepository(ABC):
    @abstractmethod
    async def load(self, escrow_id: str, for_update: bool = False) -> EscrowRecord | None:
        ...

    @abstractmethod
    async def save(self, record: EscrowRecord) -> None:
        ...

    @abstractmethod
    async def remove(self, escrow_id: str) -> None:
        ...

    @abstractmethod
    async def list_all(self, status: EscrowStatus | None = None) -> list[EscrowRecord]:
        ...

    @abstractmethod
    async def list_open(self) -> list[EscrowRecord]:
        ...

    @abstractmethod
    async def list_for_actor(self, actor_id: str, status: EscrowStatus | None = None) -> list[EscrowRecord]:
        ...

    @abstractmethod
    async def list_disputes(self, arbiter_id: str | None = None, open_only: bool = False) -> list[EscrowRecord]:
        """Records with a raised dispute, optionally narrowed to one arbiter."""
        ...

    async def release(self) -> None:
        """End a read that took a lock without writing anything."""
        return None


def _involves(record: EscrowRecord, actor_id: str) -> bool:
    return actor_id in (record.payer.id, record.payee.id, record.arbiter_id, record.initiator_id)


class InMemoryEscrowRepository(EscrowRepository):
    """Process-local store used by tests and the ``memory`` backend."""

    def __init__(self):
        self._records: dict[str, EscrowRecord] = {}
        self._lock = asyncio.Lock()

    async def load(self, escrow_id: str, for_update: bool = False) -> EscrowRecord | None:
        async with self._lock:
            record = self._records.get(escrow_id)
            return record.model_copy(deep=True) if record else None

    async def save(self, record: EscrowRecord) -> None:
        async with self._lock:
            self._records[record.id] = record.model_copy(deep=True)

    async def remove(self, escrow_id: str) -> None:
        async with self._lock:
            self._records.pop(escrow_id, None)

    async def _select(self, predicate) -> list[EscrowRecord]:
        async with self._lock:
            matches = [r.model_copy(deep=True) for r in self._records.values() if predicate(r)]
        return sorted(matches, key=lambda r: r.creation_timestamp)

    async def list_all(self, status: EscrowStatus | None = None) -> list[EscrowRecord]:
        return await self._select(lambda r: status is None or r.status == status)

    async def list_open(self) -> list[EscrowRecord]:
        return await self._select(lambda r: r.status not in TERMINAL_STATUSES)

    async def list_for_actor(self, actor_id: str, status: EscrowStatus | None = None) -> list[EscrowRecord]:
        return await self._select(
            lambda r: _involves(r, actor_id) and (status is None or r.status == status)
        )

    async def list_disputes(self, arbiter_id: str | None = None, open_only: bool = False) -> list[EscrowRecord]:
        return await self._select(
            lambda r: r.arbiter_involved
            and (arbiter_id is None or r.arbiter_id == arbiter_id)
            and not (open_only and r.status in TERMINAL_STATUSES)
        )


def _utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_record(row: Escrow) -> EscrowRecord:
    return EscrowRecord.model_validate({
        "id": row.id,
        "title": row.title,
        "description": row.description,
        "amount": row.amount,
        "initiator_id": row.initiator_id,
        "payer": row.payer,
        "payee": row.payee,
        "arbiter_id": row.arbiter_id,
        "arbiter_involved": row.arbiter_involved,
        "status": row.status,
        "default_outcome": row.default_outcome,
        "duration_hours": row.duration_hours,
        "creation_timestamp": _utc(row.creation_timestamp),
        "last_update_timestamp": _utc(row.last_update_timestamp),
        "chat_log": row.chat_log or [],
        "dispute_reason": row.dispute_reason,
        "resolution_details": row.resolution_details,
        "arbiter_ruling": row.arbiter_ruling,
        "multisig_address": row.multisig_address,
        "history": row.history or [],
    })


def _apply_to_row(row: Escrow, record: EscrowRecord) -> None:
    data = record.model_dump(mode="json")
    row.title = record.title
    row.description = record.description
    row.amount = record.amount
    row.initiator_id = record.initiator_id
    row.payer_id = record.payer.id
    row.payee_id = record.payee.id
    row.payer = data["payer"]
    row.payee = data["payee"]
    row.arbiter_id = record.arbiter_id
    row.arbiter_involved = record.arbiter_involved
    row.status = record.status.value
    row.default_outcome = record.default_outcome.value
    row.duration_hours = record.duration_hours
    row.creation_timestamp = record.creation_timestamp
    row.last_update_timestamp = record.last_update_timestamp
    row.chat_log = data["chat_log"]
    row.dispute_reason = record.dispute_reason
    row.resolution_details = record.resolution_details
    row.arbiter_ruling = record.arbiter_ruling.value
    row.multisig_address = record.multisig_address
    row.history = data["history"]


class SqlAlchemyEscrowRepository(EscrowRepository):
    """Stores records in the ``escrows`` table.

    ``save`` and ``remove`` commit, which also releases the row lock taken by
    ``load(for_update=True)``. On failure the session is rolled back and
    ``StorageError`` is raised.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def load(self, escrow_id: str, for_update: bool = False) -> EscrowRecord | None:
        query = select(Escrow).where(Escrow.id == escrow_id).execution_options(populate_existing=True)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        row = result.scalar_one_or_none()
        return _to_record(row) if row else None

    async def save(self, record: EscrowRecord) -> None:
        try:
            row = await self.db.get(Escrow, record.id)
            if row is None:
                row = Escrow(id=record.id)
                self.db.add(row)
            _apply_to_row(row, record)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Failed to save escrow %s: %s", record.id, e)
            raise StorageError(str(e)) from e

    async def remove(self, escrow_id: str) -> None:
        try:
            row = await self.db.get(Escrow, escrow_id)
            if row is not None:
                await self.db.delete(row)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Failed to remove escrow %s: %s", escrow_id, e)
            raise StorageError(str(e)) from e

    async def release(self) -> None:
        await self.db.rollback()

    async def _select(self, *conditions) -> list[EscrowRecord]:
        result = await self.db.execute(
            select(Escrow).where(*conditions).order_by(Escrow.creation_timestamp)
        )
        return [_to_record(row) for row in result.scalars().all()]

    async def list_all(self, status: EscrowStatus | None = None) -> list[EscrowRecord]:
        conditions = [Escrow.status == status.value] if status else []
        return await self._select(*conditions)

    async def list_open(self) -> list[EscrowRecord]:
        return await self._select(Escrow.status.not_in([s.value for s in TERMINAL_STATUSES]))

    async def list_for_actor(self, actor_id: str, status: EscrowStatus | None = None) -> list[EscrowRecord]:
        conditions = [
            or_(
                Escrow.payer_id == actor_id,
                Escrow.payee_id == actor_id,
                Escrow.arbiter_id == actor_id,
                Escrow.initiator_id == actor_id,
            )
        ]
        if status:
            conditions.append(Escrow.status == status.value)
        return await self._select(*conditions)

    async def list_disputes(self, arbiter_id: str | None = None, open_only: bool = False) -> list[EscrowRecord]:
        conditions = [Escrow.arbiter_involved.is_(True)]
        if arbiter_id is not None:
            conditions.append(Escrow.arbiter_id == arbiter_id)
        if open_only:
            conditions.append(Escrow.status.not_in([s.value for s in TERMINAL_STATUSES]))
        return await self._select(*conditions)
