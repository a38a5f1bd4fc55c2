"""Escrow lifecycle state machine.

``process`` is pure: it takes the current record, a command, the acting
identity and the current instant, and returns either a rejection (the input
record is left untouched) or a new record plus the side effects to emit.
Persistence, locking and effect delivery belong to ``EscrowService``.
"""

from collections.abc import Callable
from datetime import datetime

from aegis.common.enums import (
    ActorRole,
    EscrowAction,
    EscrowStatus,
    NotificationSeverity,
    Party,
    SettlementOutcome,
)
from aegis.common.logging import get_logger
from aegis.core.escrow import guards, resolver
from aegis.core.escrow.override import apply_override
from aegis.core.escrow.roles import ActorContext, RoleDirectory, resolve_role
from aegis.core.escrow.schemas import (
    ActionCommand,
    EscrowRecord,
    HistoryEntry,
    Message,
    SideEffect,
    TransitionResult,
)

logger = get_logger("escrow.processor")

Handler = Callable[[EscrowRecord, ActionCommand, ActorContext, datetime, RoleDirectory], list[SideEffect]]

DEFAULT_DISPUTE_REASON = "Dispute initiated by user."

_ROLE_LABELS = {ActorRole.PAYER: "Payer", ActorRole.PAYEE: "Payee"}


# ---------- Handlers ----------
# Handlers run on a private copy of the record after the guard passed.


def _fund_as_payer(
    record: EscrowRecord,
    command: ActionCommand,
    actor: ActorContext,
    now: datetime,
    directory: RoleDirectory,
) -> list[SideEffect]:
    record.payer.has_funded = True
    record.status = EscrowStatus.ACTIVE if record.payee.has_funded else EscrowStatus.PAYER_FUNDED
    return [SideEffect.notify(
        f'Payer funded escrow: "{record.title}" (tx {command.funding_reference})',
        NotificationSeverity.SUCCESS,
    )]


def _fund_as_payee(
    record: EscrowRecord,
    command: ActionCommand,
    actor: ActorContext,
    now: datetime,
    directory: RoleDirectory,
) -> list[SideEffect]:
    record.payee.has_funded = True
    if directory.payee_funding_confirms:
        record.payee.has_confirmed = True
        message = f'Payee funded & confirmed item for escrow: "{record.title}"'
    else:
        message = f'Payee funded escrow: "{record.title}"'
    record.status = EscrowStatus.ACTIVE if record.payer.has_funded else EscrowStatus.PAYEE_CONFIRMED_ITEM
    return [SideEffect.notify(
        f"{message} (tx {command.funding_reference})",
        NotificationSeverity.SUCCESS,
    )]


def _confirm(party: Party) -> Handler:
    other = Party.PAYEE if party == Party.PAYER else Party.PAYER
    own_label = "Payer confirmed satisfaction" if party == Party.PAYER else "Payee confirmed shipment/service"
    other_label = "Payee confirmed shipment/service" if party == Party.PAYER else "Payer confirmed satisfaction"

    def handler(
        record: EscrowRecord,
        command: ActionCommand,
        actor: ActorContext,
        now: datetime,
        directory: RoleDirectory,
    ) -> list[SideEffect]:
        record.participant(party).has_confirmed = True
        effects = [SideEffect.notify(f'{own_label} for: "{record.title}"')]
        if record.participant(other).has_confirmed:
            record.status = EscrowStatus.COMPLETED_RELEASED
            record.resolution_details = f"Mutual agreement: {own_label}, {other_label}."
            effects.append(SideEffect.settle(SettlementOutcome.RELEASE, record.resolution_details))
        else:
            record.status = EscrowStatus.AWAITING_PARTICIPANT_ACTION
        return effects

    return handler


def _initiate_dispute(
    record: EscrowRecord,
    command: ActionCommand,
    actor: ActorContext,
    now: datetime,
    directory: RoleDirectory,
) -> list[SideEffect]:
    record.arbiter_involved = True
    record.dispute_reason = (command.reason or "").strip() or DEFAULT_DISPUTE_REASON
    record.status = EscrowStatus.DISPUTE_INITIATED
    return [SideEffect.notify(
        f'Dispute initiated for: "{record.title}"',
        NotificationSeverity.WARNING,
    )]


def _request_evidence(
    record: EscrowRecord,
    command: ActionCommand,
    actor: ActorContext,
    now: datetime,
    directory: RoleDirectory,
) -> list[SideEffect]:
    record.status = EscrowStatus.EVIDENCE_SUBMISSION
    return [SideEffect.notify(f'Arbiter requested evidence for: "{record.title}"')]


def _begin_review(
    record: EscrowRecord,
    command: ActionCommand,
    actor: ActorContext,
    now: datetime,
    directory: RoleDirectory,
) -> list[SideEffect]:
    record.status = EscrowStatus.ARBITER_REVIEW
    return [SideEffect.notify(f'Arbiter review started for: "{record.title}"')]


def _rule(
    record: EscrowRecord,
    command: ActionCommand,
    actor: ActorContext,
    now: datetime,
    directory: RoleDirectory,
) -> list[SideEffect]:
    resolution = resolver.apply_ruling(record, command.action)
    return [
        SideEffect.notify(f'{resolution.narrative} Escrow: "{record.title}"', NotificationSeverity.SUCCESS),
        SideEffect.settle(resolution.outcome, resolution.narrative),
    ]


def _timelock_expiry(
    record: EscrowRecord,
    command: ActionCommand,
    actor: ActorContext,
    now: datetime,
    directory: RoleDirectory,
) -> list[SideEffect]:
    resolution = resolver.apply_default_outcome(record)
    return [
        SideEffect.notify(
            f'Timelock expired, default outcome applied for: "{record.title}"',
            NotificationSeverity.WARNING,
        ),
        SideEffect.settle(resolution.outcome, resolution.narrative),
    ]


def _append_message(
    record: EscrowRecord, command: ActionCommand, actor: ActorContext, now: datetime, is_evidence: bool
) -> Message:
    message = Message(
        sender_id=actor.actor_id,
        sender_label=_ROLE_LABELS[actor.role],
        text=command.text.strip(),
        timestamp=now,
        is_evidence=is_evidence,
    )
    record.chat_log.append(message)
    return message


def _send_message(
    record: EscrowRecord,
    command: ActionCommand,
    actor: ActorContext,
    now: datetime,
    directory: RoleDirectory,
) -> list[SideEffect]:
    _append_message(record, command, actor, now, is_evidence=False)
    return [SideEffect.notify(f'Message sent in "{record.title}"')]


def _submit_evidence(
    record: EscrowRecord,
    command: ActionCommand,
    actor: ActorContext,
    now: datetime,
    directory: RoleDirectory,
) -> list[SideEffect]:
    _append_message(record, command, actor, now, is_evidence=True)
    return [SideEffect.notify(f'Evidence submitted in "{record.title}"')]


def _emergency_override(
    record: EscrowRecord,
    command: ActionCommand,
    actor: ActorContext,
    now: datetime,
    directory: RoleDirectory,
) -> list[SideEffect]:
    resolution = apply_override(record, command.favor, command.justification, actor.actor_id)
    return [
        SideEffect.notify(
            f'Emergency override resolved escrow "{record.title}": {resolution.narrative}',
            NotificationSeverity.WARNING,
        ),
        SideEffect.settle(resolution.outcome, resolution.narrative, reference=resolution.reference),
    ]


def _delete_unfunded(
    record: EscrowRecord,
    command: ActionCommand,
    actor: ActorContext,
    now: datetime,
    directory: RoleDirectory,
) -> list[SideEffect]:
    return [SideEffect.notify(f'Escrow "{record.title}" deleted.', NotificationSeverity.WARNING)]


HANDLERS: dict[EscrowAction, Handler] = {
    EscrowAction.FUND_AS_PAYER: _fund_as_payer,
    EscrowAction.FUND_AS_PAYEE: _fund_as_payee,
    EscrowAction.CONFIRM_AS_PAYER: _confirm(Party.PAYER),
    EscrowAction.CONFIRM_AS_PAYEE: _confirm(Party.PAYEE),
    EscrowAction.INITIATE_DISPUTE: _initiate_dispute,
    EscrowAction.REQUEST_EVIDENCE: _request_evidence,
    EscrowAction.BEGIN_REVIEW: _begin_review,
    EscrowAction.RULE_FOR_PAYER: _rule,
    EscrowAction.RULE_FOR_PAYEE: _rule,
    EscrowAction.RULE_FOR_SPLIT: _rule,
    EscrowAction.TIMELOCK_EXPIRY: _timelock_expiry,
    EscrowAction.SEND_MESSAGE: _send_message,
    EscrowAction.SUBMIT_EVIDENCE: _submit_evidence,
    EscrowAction.EMERGENCY_OVERRIDE: _emergency_override,
    EscrowAction.DELETE_UNFUNDED: _delete_unfunded,
}

_missing = (set(EscrowAction) - set(HANDLERS)) | (set(EscrowAction) - set(guards.GUARDS))
if _missing:
    raise RuntimeError(f"Escrow actions without handler or guard: {sorted(a.value for a in _missing)}")


def process(
    record: EscrowRecord,
    command: ActionCommand,
    actor_id: str,
    directory: RoleDirectory,
    now: datetime,
) -> TransitionResult:
    actor = ActorContext(actor_id=actor_id, role=resolve_role(record, actor_id, directory))

    rejection = guards.check(record, command, actor, now)
    if rejection is not None:
        logger.warning(
            "Rejected %s on escrow %s by %s (%s): %s",
            command.action.value,
            record.id,
            actor_id,
            rejection.reason.value,
            rejection.message,
        )
        return TransitionResult(rejection=rejection)

    updated = record.model_copy(deep=True)
    effects = HANDLERS[command.action](updated, command, actor, now, directory)

    if command.action == EscrowAction.DELETE_UNFUNDED:
        logger.info("Escrow %s deleted by initiator %s", record.id, actor_id)
        return TransitionResult.accept(record, effects, removed=True)

    updated.last_update_timestamp = now
    updated.history.append(HistoryEntry(
        action=command.action,
        actor_id=actor_id,
        role=actor.role,
        from_status=record.status,
        to_status=updated.status,
        at=now,
    ))

    logger.info(
        "Escrow %s: %s by %s (%s) %s -> %s",
        record.id,
        command.action.value,
        actor_id,
        actor.role.value,
        record.status.value,
        updated.status.value,
    )
    return TransitionResult.accept(updated, effects)
