"""Escrow aggregate, commands and transition results.

The record is the single source of truth for one agreement. Participants,
chat messages and history entries are embedded values owned by it.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator, model_validator

from aegis.common.enums import (
    ActorRole,
    ArbiterRuling,
    DefaultOutcome,
    EffectKind,
    EscrowAction,
    EscrowStatus,
    NotificationSeverity,
    Party,
    RejectionReason,
    SettlementOutcome,
)

MAX_TITLE_LENGTH = 200
MAX_TEXT_LENGTH = 4000
MAX_REASON_LENGTH = 1024


def new_id() -> str:
    return uuid.uuid4().hex


class Participant(BaseModel):
    id: str
    has_funded: bool = False
    has_confirmed: bool = False


class Message(BaseModel):
    id: str = Field(default_factory=new_id)
    sender_id: str
    sender_label: str
    text: str
    timestamp: datetime
    is_evidence: bool = False


class HistoryEntry(BaseModel):
    action: EscrowAction
    actor_id: str
    role: ActorRole
    from_status: EscrowStatus
    to_status: EscrowStatus
    at: datetime


class EscrowRecord(BaseModel):
    id: str = Field(default_factory=new_id)
    title: str
    description: str = ""
    amount: Decimal
    initiator_id: str
    payer: Participant
    payee: Participant
    arbiter_id: str
    arbiter_involved: bool = False
    status: EscrowStatus = EscrowStatus.PENDING_FUNDING
    default_outcome: DefaultOutcome
    duration_hours: int
    creation_timestamp: datetime
    last_update_timestamp: datetime
    chat_log: list[Message] = Field(default_factory=list)
    dispute_reason: str | None = None
    resolution_details: str | None = None
    arbiter_ruling: ArbiterRuling = ArbiterRuling.NONE
    multisig_address: str | None = None
    history: list[HistoryEntry] = Field(default_factory=list)

    def participant(self, party: Party) -> Participant:
        return self.payer if party == Party.PAYER else self.payee


class EscrowCreate(BaseModel):
    """Input accepted by the create operation."""

    title: str = Field(min_length=1, max_length=MAX_TITLE_LENGTH)
    description: str = Field(default="", max_length=MAX_TEXT_LENGTH)
    amount: Decimal = Field(gt=0, max_digits=24, decimal_places=12)
    payer_id: str = Field(min_length=1)
    payee_id: str = Field(min_length=1)
    default_outcome: DefaultOutcome = DefaultOutcome.PAYER_REFUND
    duration_hours: int = Field(ge=1, le=24 * 365)
    arbiter_id: str | None = None

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title must not be blank")
        return value

    @model_validator(mode="after")
    def _distinct_parties(self) -> "EscrowCreate":
        if self.payer_id == self.payee_id:
            raise ValueError("payer and payee must be different actors")
        if self.arbiter_id is not None and self.arbiter_id in (self.payer_id, self.payee_id):
            raise ValueError("the arbiter must be neither the payer nor the payee")
        return self


class ActionCommand(BaseModel):
    """One action submitted against a record.

    Free-text inputs are explicit fields: ``reason`` for disputes, ``text``
    for chat and evidence, ``justification`` and ``favor`` for the emergency
    override. ``funding_reference`` is filled in only after the broadcast
    collaborator reported success.
    """

    action: EscrowAction
    reason: str | None = Field(default=None, max_length=MAX_REASON_LENGTH)
    text: str | None = Field(default=None, max_length=MAX_TEXT_LENGTH)
    justification: str | None = Field(default=None, max_length=MAX_REASON_LENGTH)
    favor: Party | None = None
    funding_reference: str | None = None


class Rejection(BaseModel):
    reason: RejectionReason
    message: str


class SideEffect(BaseModel):
    kind: EffectKind
    message: str
    severity: NotificationSeverity = NotificationSeverity.INFO
    outcome: SettlementOutcome | None = None
    reference: str | None = None

    @classmethod
    def notify(cls, message: str, severity: NotificationSeverity = NotificationSeverity.INFO) -> "SideEffect":
        return cls(kind=EffectKind.NOTIFY, message=message, severity=severity)

    @classmethod
    def settle(cls, outcome: SettlementOutcome, message: str, reference: str | None = None) -> "SideEffect":
        return cls(kind=EffectKind.SETTLE, message=message, outcome=outcome, reference=reference)


class TransitionResult(BaseModel):
    """Outcome of applying one command: a new record or a rejection, never both."""

    record: EscrowRecord | None = None
    rejection: Rejection | None = None
    effects: list[SideEffect] = Field(default_factory=list)
    removed: bool = False

    @property
    def accepted(self) -> bool:
        return self.rejection is None

    @classmethod
    def accept(
        cls, record: EscrowRecord, effects: list[SideEffect], removed: bool = False
    ) -> "TransitionResult":
        return cls(record=record, effects=effects, removed=removed)

    @classmethod
    def reject(cls, reason: RejectionReason, message: str) -> "TransitionResult":
        return cls(rejection=Rejection(reason=reason, message=message))


class TimerReading(BaseModel):
    applicable: bool
    deadline: datetime
    remaining_seconds: float | None = None
    expired: bool = False
