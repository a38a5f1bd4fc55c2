from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from aegis.common.enums import ArbiterRuling, EscrowStatus
from aegis.db.base import Base, TimestampMixin


class Escrow(Base, TimestampMixin):
    __tablename__ = "escrows"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    amount: Mapped[Decimal] = mapped_column(Numeric(24, 12), nullable=False)
    initiator_id: Mapped[str] = mapped_column(String(255), nullable=False)
    payer_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    payee_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    payer: Mapped[dict] = mapped_column(JSONB, nullable=False)
    payee: Mapped[dict] = mapped_column(JSONB, nullable=False)
    arbiter_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    arbiter_involved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(
        String(40), nullable=False, default=EscrowStatus.PENDING_FUNDING.value, index=True
    )
    default_outcome: Mapped[str] = mapped_column(String(30), nullable=False)
    duration_hours: Mapped[int] = mapped_column(Integer, nullable=False)
    creation_timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_update_timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    chat_log: Mapped[list | None] = mapped_column(JSONB, nullable=True, default=list)
    dispute_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolution_details: Mapped[str | None] = mapped_column(Text, nullable=True)
    arbiter_ruling: Mapped[str] = mapped_column(
        String(10), nullable=False, default=ArbiterRuling.NONE.value
    )
    multisig_address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    history: Mapped[list | None] = mapped_column(JSONB, nullable=True, default=list)
