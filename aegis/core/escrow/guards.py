"""Transition guards.

Each guard is a pure predicate over (record, command, actor, now) returning a
``Rejection`` or ``None``. Checks run in a fixed order: terminal status, actor
role, already-performed flag, status precondition, input.
"""

from collections.abc import Callable
from datetime import datetime

from aegis.common.enums import (
    DISPUTE_STATUSES,
    ActorRole,
    EscrowAction,
    EscrowStatus,
    RejectionReason,
)
from aegis.core.escrow import timer
from aegis.core.escrow.override import validate_justification
from aegis.core.escrow.resolver import is_assigned_arbiter
from aegis.core.escrow.roles import ActorContext
from aegis.core.escrow.schemas import ActionCommand, EscrowRecord, Rejection

Guard = Callable[[EscrowRecord, ActionCommand, ActorContext, datetime], Rejection | None]

PARTICIPANT_ROLES = frozenset({ActorRole.PAYER, ActorRole.PAYEE})

PAYER_FUNDABLE = frozenset({EscrowStatus.PENDING_FUNDING, EscrowStatus.PAYEE_CONFIRMED_ITEM})
PAYEE_FUNDABLE = frozenset({EscrowStatus.PENDING_FUNDING, EscrowStatus.PAYER_FUNDED})
CONFIRMABLE = frozenset({EscrowStatus.ACTIVE, EscrowStatus.AWAITING_PARTICIPANT_ACTION})
DISPUTABLE = frozenset({
    EscrowStatus.ACTIVE,
    EscrowStatus.AWAITING_PARTICIPANT_ACTION,
    EscrowStatus.PAYER_FUNDED,
    EscrowStatus.PAYEE_CONFIRMED_ITEM,
})
REVIEWABLE = frozenset({EscrowStatus.DISPUTE_INITIATED, EscrowStatus.EVIDENCE_SUBMISSION})


def _wrong_actor(action: EscrowAction, actor: ActorContext, expected: str) -> Rejection:
    return Rejection(
        reason=RejectionReason.WRONG_ACTOR,
        message=f"{action.value} requires the {expected}; caller is {actor.role.value}",
    )


def _wrong_status(action: EscrowAction, record: EscrowRecord, detail: str | None = None) -> Rejection:
    message = f"{action.value} is not allowed while escrow is {record.status.value}"
    if detail:
        message = f"{message}: {detail}"
    return Rejection(reason=RejectionReason.WRONG_STATUS, message=message)


def _already_done(detail: str) -> Rejection:
    return Rejection(reason=RejectionReason.ALREADY_DONE, message=detail)


def _invalid(detail: str) -> Rejection:
    return Rejection(reason=RejectionReason.INVALID_INPUT, message=detail)


def _guard_fund_as_payer(
    record: EscrowRecord, command: ActionCommand, actor: ActorContext, now: datetime
) -> Rejection | None:
    if actor.role != ActorRole.PAYER:
        return _wrong_actor(command.action, actor, "payer")
    if record.payer.has_funded:
        return _already_done("Payer has already funded this escrow")
    if record.status not in PAYER_FUNDABLE:
        return _wrong_status(command.action, record)
    if not command.funding_reference:
        return _invalid("Funding requires a successful broadcast reference")
    return None


def _guard_fund_as_payee(
    record: EscrowRecord, command: ActionCommand, actor: ActorContext, now: datetime
) -> Rejection | None:
    if actor.role != ActorRole.PAYEE:
        return _wrong_actor(command.action, actor, "payee")
    if record.payee.has_funded:
        return _already_done("Payee has already funded this escrow")
    if record.status not in PAYEE_FUNDABLE:
        return _wrong_status(command.action, record)
    if not command.funding_reference:
        return _invalid("Funding requires a successful broadcast reference")
    return None


def _guard_confirm_as_payer(
    record: EscrowRecord, command: ActionCommand, actor: ActorContext, now: datetime
) -> Rejection | None:
    if actor.role != ActorRole.PAYER:
        return _wrong_actor(command.action, actor, "payer")
    if record.payer.has_confirmed:
        return _already_done("Payer has already confirmed")
    if record.status not in CONFIRMABLE:
        return _wrong_status(command.action, record)
    return None


def _guard_confirm_as_payee(
    record: EscrowRecord, command: ActionCommand, actor: ActorContext, now: datetime
) -> Rejection | None:
    if actor.role != ActorRole.PAYEE:
        return _wrong_actor(command.action, actor, "payee")
    if record.payee.has_confirmed:
        return _already_done("Payee has already confirmed")
    if record.status not in CONFIRMABLE:
        return _wrong_status(command.action, record)
    return None


def _guard_initiate_dispute(
    record: EscrowRecord, command: ActionCommand, actor: ActorContext, now: datetime
) -> Rejection | None:
    if actor.role not in PARTICIPANT_ROLES:
        return _wrong_actor(command.action, actor, "payer or payee")
    if record.arbiter_involved:
        return _wrong_status(command.action, record, "a dispute was already raised")
    if record.status not in DISPUTABLE:
        return _wrong_status(command.action, record)
    return None


def _guard_arbiter(allowed: frozenset[EscrowStatus]) -> Guard:
    def guard(
        record: EscrowRecord, command: ActionCommand, actor: ActorContext, now: datetime
    ) -> Rejection | None:
        if actor.role != ActorRole.ARBITER or not is_assigned_arbiter(record, actor.actor_id):
            return _wrong_actor(command.action, actor, "assigned arbiter")
        if not record.arbiter_involved:
            return _wrong_status(command.action, record, "no dispute has been raised")
        if record.status not in allowed:
            return _wrong_status(command.action, record)
        return None

    return guard


def _guard_timelock_expiry(
    record: EscrowRecord, command: ActionCommand, actor: ActorContext, now: datetime
) -> Rejection | None:
    if actor.role != ActorRole.SYSTEM:
        return _wrong_actor(command.action, actor, "system timer")
    if not timer.deadline_reached(record.creation_timestamp, record.duration_hours, now):
        return _wrong_status(command.action, record, "deadline has not elapsed")
    return None


def _guard_send_message(
    record: EscrowRecord, command: ActionCommand, actor: ActorContext, now: datetime
) -> Rejection | None:
    if actor.role not in PARTICIPANT_ROLES:
        return _wrong_actor(command.action, actor, "payer or payee")
    if not command.text or not command.text.strip():
        return _invalid("Message text must not be empty")
    return None


def _guard_submit_evidence(
    record: EscrowRecord, command: ActionCommand, actor: ActorContext, now: datetime
) -> Rejection | None:
    if actor.role not in PARTICIPANT_ROLES:
        return _wrong_actor(command.action, actor, "payer or payee")
    if record.status not in DISPUTE_STATUSES:
        return _wrong_status(command.action, record, "evidence is only accepted during a dispute")
    if not command.text or not command.text.strip():
        return _invalid("Evidence text must not be empty")
    return None


def _guard_emergency_override(
    record: EscrowRecord, command: ActionCommand, actor: ActorContext, now: datetime
) -> Rejection | None:
    if actor.role != ActorRole.ADMINISTRATOR:
        return _wrong_actor(command.action, actor, "administrator")
    if command.favor is None:
        return _invalid("Emergency override requires the party to favor (payer or payee)")
    problem = validate_justification(command.justification)
    if problem:
        return _invalid(problem)
    return None


def _guard_delete_unfunded(
    record: EscrowRecord, command: ActionCommand, actor: ActorContext, now: datetime
) -> Rejection | None:
    if actor.actor_id != record.initiator_id:
        return _wrong_actor(command.action, actor, "initiator")
    if record.status != EscrowStatus.PENDING_FUNDING:
        return _wrong_status(command.action, record, "only unfunded escrows can be deleted")
    return None


GUARDS: dict[EscrowAction, Guard] = {
    EscrowAction.FUND_AS_PAYER: _guard_fund_as_payer,
    EscrowAction.FUND_AS_PAYEE: _guard_fund_as_payee,
    EscrowAction.CONFIRM_AS_PAYER: _guard_confirm_as_payer,
    EscrowAction.CONFIRM_AS_PAYEE: _guard_confirm_as_payee,
    EscrowAction.INITIATE_DISPUTE: _guard_initiate_dispute,
    EscrowAction.REQUEST_EVIDENCE: _guard_arbiter(frozenset({EscrowStatus.DISPUTE_INITIATED})),
    EscrowAction.BEGIN_REVIEW: _guard_arbiter(REVIEWABLE),
    EscrowAction.RULE_FOR_PAYER: _guard_arbiter(DISPUTE_STATUSES),
    EscrowAction.RULE_FOR_PAYEE: _guard_arbiter(DISPUTE_STATUSES),
    EscrowAction.RULE_FOR_SPLIT: _guard_arbiter(DISPUTE_STATUSES),
    EscrowAction.TIMELOCK_EXPIRY: _guard_timelock_expiry,
    EscrowAction.SEND_MESSAGE: _guard_send_message,
    EscrowAction.SUBMIT_EVIDENCE: _guard_submit_evidence,
    EscrowAction.EMERGENCY_OVERRIDE: _guard_emergency_override,
    EscrowAction.DELETE_UNFUNDED: _guard_delete_unfunded,
}


def check(
    record: EscrowRecord, command: ActionCommand, actor: ActorContext, now: datetime
) -> Rejection | None:
    """Return why ``command`` may not run against ``record``, or ``None`` when it may."""
    if record.status.is_terminal:
        return _wrong_status(command.action, record, "escrow is closed")
    return GUARDS[command.action](record, command, actor, now)
