"""Notification sinks for escrow side effects.

Emitting is fire-and-forget: a sink that cannot store a notification logs
the failure and returns, so delivery problems never undo a transition.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Protocol

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from aegis.common.enums import NotificationSeverity
from aegis.common.logging import get_logger
from aegis.common.pagination import PaginationParams, paginate_query, paginate_sequence
from aegis.core.escrow.timer import utc_now
from aegis.db.models.notification import Notification

logger = get_logger("notifications.service")


class NotificationView(BaseModel):
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    escrow_id: str | None = None
    severity: NotificationSeverity
    message: str
    is_read: bool = False
    created_at: datetime = Field(default_factory=utc_now)

    model_config = {"from_attributes": True}


class NotificationSink(Protocol):
    async def emit(
        self,
        message: str,
        severity: NotificationSeverity = NotificationSeverity.INFO,
        escrow_id: str | None = None,
    ) -> None:
        ...

    async def list_for_escrow(
        self, escrow_id: str, params: PaginationParams
    ) -> tuple[list[NotificationView], int]:
        ...


class DatabaseNotificationSink:
    """Stores notifications as rows of the ``notifications`` table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def emit(
        self,
        message: str,
        severity: NotificationSeverity = NotificationSeverity.INFO,
        escrow_id: str | None = None,
    ) -> None:
        try:
            self.db.add(Notification(escrow_id=escrow_id, severity=severity.value, message=message))
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Failed to store notification for escrow %s: %s", escrow_id, e)
            return
        logger.info("Notification [%s] escrow=%s: %s", severity.value, escrow_id, message)

    async def list_for_escrow(
        self, escrow_id: str, params: PaginationParams
    ) -> tuple[list[NotificationView], int]:
        query = (
            select(Notification)
            .where(Notification.escrow_id == escrow_id)
            .execution_options(populate_existing=True)
        )
        rows, total = await paginate_query(self.db, query, params, Notification.created_at)
        return [NotificationView.model_validate(row) for row in rows], total


class InMemoryNotificationSink:
    def __init__(self):
        self.notifications: list[NotificationView] = []

    async def emit(
        self,
        message: str,
        severity: NotificationSeverity = NotificationSeverity.INFO,
        escrow_id: str | None = None,
    ) -> None:
        self.notifications.append(
            NotificationView(escrow_id=escrow_id, severity=severity, message=message)
        )
        logger.info("Notification [%s] escrow=%s: %s", severity.value, escrow_id, message)

    async def list_for_escrow(
        self, escrow_id: str, params: PaginationParams
    ) -> tuple[list[NotificationView], int]:
        matching = [n for n in self.notifications if n.escrow_id == escrow_id]
        return paginate_sequence(matching, params)
