from datetime import timedelta
from decimal import Decimal

import pytest

from aegis.common.enums import (
    TERMINAL_STATUSES,
    ArbiterRuling,
    DefaultOutcome,
    EffectKind,
    EscrowAction,
    EscrowStatus,
    Party,
    RejectionReason,
    SettlementOutcome,
)
from aegis.core.escrow import guards, processor
from aegis.core.escrow.processor import process
from aegis.core.escrow.roles import RoleDirectory
from aegis.core.escrow.schemas import ActionCommand


def _cmd(action: EscrowAction, **kwargs) -> ActionCommand:
    return ActionCommand(action=action, **kwargs)


def _fund(action: EscrowAction) -> ActionCommand:
    return _cmd(action, funding_reference="tx_abc")


def _now(record, **delta):
    return record.creation_timestamp + timedelta(**delta)


def test_every_action_has_handler_and_guard():
    assert set(processor.HANDLERS) == set(EscrowAction)
    assert set(guards.GUARDS) == set(EscrowAction)


@pytest.mark.parametrize("order", [("alice", "bob"), ("bob", "alice")])
def test_both_fundings_reach_active(make_record, directory, order):
    record = make_record(EscrowStatus.PENDING_FUNDING)
    actions = {"alice": EscrowAction.FUND_AS_PAYER, "bob": EscrowAction.FUND_AS_PAYEE}

    for actor in order:
        result = process(record, _fund(actions[actor]), actor, directory, _now(record, minutes=5))
        assert result.accepted
        record = result.record

    assert record.status == EscrowStatus.ACTIVE
    assert record.payer.has_funded and record.payee.has_funded


def test_payer_funding_first_is_payer_funded(make_record, directory):
    record = make_record()
    result = process(record, _fund(EscrowAction.FUND_AS_PAYER), "alice", directory, _now(record, minutes=1))
    assert result.record.status == EscrowStatus.PAYER_FUNDED
    assert not result.record.payer.has_confirmed


def test_payee_funding_implies_confirmation_by_default(make_record, directory):
    record = make_record()
    result = process(record, _fund(EscrowAction.FUND_AS_PAYEE), "bob", directory, _now(record, minutes=1))
    assert result.record.status == EscrowStatus.PAYEE_CONFIRMED_ITEM
    assert result.record.payee.has_funded
    assert result.record.payee.has_confirmed


def test_payee_funding_can_be_split_from_confirmation(make_record):
    directory = RoleDirectory(administrator_id="admin", system_actor_id="system:timelock", payee_funding_confirms=False)
    record = make_record()
    result = process(record, _fund(EscrowAction.FUND_AS_PAYEE), "bob", directory, _now(record, minutes=1))
    assert result.record.payee.has_funded
    assert not result.record.payee.has_confirmed


def test_funding_without_broadcast_reference_is_invalid(make_record, directory):
    record = make_record()
    result = process(record, _cmd(EscrowAction.FUND_AS_PAYER), "alice", directory, _now(record, minutes=1))
    assert result.rejection.reason == RejectionReason.INVALID_INPUT


def test_double_funding_is_already_done(make_record, directory):
    record = make_record(EscrowStatus.PAYER_FUNDED)
    result = process(record, _fund(EscrowAction.FUND_AS_PAYER), "alice", directory, _now(record, minutes=1))
    assert result.rejection.reason == RejectionReason.ALREADY_DONE


@pytest.mark.parametrize(
    "first,second",
    [
        (("alice", EscrowAction.CONFIRM_AS_PAYER), ("bob", EscrowAction.CONFIRM_AS_PAYEE)),
        (("bob", EscrowAction.CONFIRM_AS_PAYEE), ("alice", EscrowAction.CONFIRM_AS_PAYER)),
    ],
)
def test_mutual_confirmation_releases(make_record, directory, first, second):
    record = make_record(EscrowStatus.ACTIVE)

    result = process(record, _cmd(first[1]), first[0], directory, _now(record, hours=1))
    assert result.record.status == EscrowStatus.AWAITING_PARTICIPANT_ACTION

    result = process(result.record, _cmd(second[1]), second[0], directory, _now(record, hours=2))
    assert result.accepted
    assert result.record.status == EscrowStatus.COMPLETED_RELEASED
    assert result.record.resolution_details.startswith("Mutual agreement:")
    settle = [e for e in result.effects if e.kind == EffectKind.SETTLE]
    assert [e.outcome for e in settle] == [SettlementOutcome.RELEASE]


def test_confirm_after_payee_funding_completes_immediately(make_record, directory):
    record = make_record(EscrowStatus.AWAITING_PARTICIPANT_ACTION)
    result = process(record, _cmd(EscrowAction.CONFIRM_AS_PAYER), "alice", directory, _now(record, hours=1))
    assert result.record.status == EscrowStatus.COMPLETED_RELEASED
    assert "Payer confirmed satisfaction" in result.record.resolution_details


def test_dispute_only_once(make_record, directory):
    record = make_record(EscrowStatus.ACTIVE)
    first = process(
        record, _cmd(EscrowAction.INITIATE_DISPUTE, reason="item not received"), "alice", directory,
        _now(record, hours=1),
    )
    assert first.record.status == EscrowStatus.DISPUTE_INITIATED
    assert first.record.arbiter_involved
    assert first.record.dispute_reason == "item not received"

    second = process(first.record, _cmd(EscrowAction.INITIATE_DISPUTE), "bob", directory, _now(record, hours=2))
    assert second.rejection.reason == RejectionReason.WRONG_STATUS


def test_dispute_reason_defaults(make_record, directory):
    record = make_record(EscrowStatus.PAYER_FUNDED)
    result = process(record, _cmd(EscrowAction.INITIATE_DISPUTE, reason="   "), "bob", directory, _now(record, hours=1))
    assert result.record.dispute_reason == "Dispute initiated by user."


def test_fund_dispute_and_split_scenario(make_record, directory):
    record = make_record()
    record = process(record, _fund(EscrowAction.FUND_AS_PAYER), "alice", directory, _now(record, minutes=1)).record
    record = process(record, _fund(EscrowAction.FUND_AS_PAYEE), "bob", directory, _now(record, minutes=2)).record
    assert record.status == EscrowStatus.ACTIVE

    record = process(
        record, _cmd(EscrowAction.INITIATE_DISPUTE, reason="item not received"), "alice", directory,
        _now(record, minutes=3),
    ).record
    assert record.status == EscrowStatus.DISPUTE_INITIATED
    assert record.arbiter_involved

    result = process(record, _cmd(EscrowAction.RULE_FOR_SPLIT), "arbiter_MVP_001", directory, _now(record, minutes=4))
    assert result.record.status == EscrowStatus.COMPLETED_SPLIT
    assert result.record.arbiter_ruling == ArbiterRuling.SPLIT
    assert [h.action for h in result.record.history] == [
        EscrowAction.FUND_AS_PAYER,
        EscrowAction.FUND_AS_PAYEE,
        EscrowAction.INITIATE_DISPUTE,
        EscrowAction.RULE_FOR_SPLIT,
    ]


def test_arbiter_moves_dispute_through_evidence_and_review(make_record, directory):
    record = make_record(EscrowStatus.DISPUTE_INITIATED)
    arbiter = "arbiter_MVP_001"

    record = process(record, _cmd(EscrowAction.REQUEST_EVIDENCE), arbiter, directory, _now(record, hours=1)).record
    assert record.status == EscrowStatus.EVIDENCE_SUBMISSION

    evidence = process(
        record, _cmd(EscrowAction.SUBMIT_EVIDENCE, text="Tracking shows return to sender"), "alice", directory,
        _now(record, hours=2),
    )
    assert evidence.record.status == EscrowStatus.EVIDENCE_SUBMISSION
    assert evidence.record.chat_log[-1].is_evidence
    assert evidence.record.chat_log[-1].sender_label == "Payer"

    record = process(evidence.record, _cmd(EscrowAction.BEGIN_REVIEW), arbiter, directory, _now(record, hours=3)).record
    assert record.status == EscrowStatus.ARBITER_REVIEW

    result = process(record, _cmd(EscrowAction.RULE_FOR_PAYER), arbiter, directory, _now(record, hours=4))
    assert result.record.status == EscrowStatus.COMPLETED_REFUNDED
    assert result.record.arbiter_ruling == ArbiterRuling.PAYER
    assert result.record.resolution_details == "Arbiter decision: Ruled in favor of Payer (funds refunded)."


def test_non_arbiter_cannot_rule(make_record, directory):
    record = make_record(EscrowStatus.DISPUTE_INITIATED)
    before = record.model_dump()

    for actor in ("alice", "bob", "mallory", "admin"):
        result = process(record, _cmd(EscrowAction.RULE_FOR_PAYER), actor, directory, _now(record, hours=1))
        assert result.rejection.reason == RejectionReason.WRONG_ACTOR
        assert result.record is None

    assert record.model_dump() == before


def test_ruling_without_dispute_is_wrong_status(make_record, directory):
    record = make_record(EscrowStatus.ACTIVE)
    result = process(record, _cmd(EscrowAction.RULE_FOR_PAYEE), "arbiter_MVP_001", directory, _now(record, hours=1))
    assert result.rejection.reason == RejectionReason.WRONG_STATUS


def test_timelock_split_default(make_record, directory):
    record = make_record(EscrowStatus.ACTIVE, default_outcome=DefaultOutcome.SPLIT_50_50)
    result = process(record, _cmd(EscrowAction.TIMELOCK_EXPIRY), "system:timelock", directory, _now(record, hours=72))
    assert result.record.status == EscrowStatus.TIMELOCK_DEFAULT_TRIGGERED
    assert "split" in result.record.resolution_details
    assert [e.outcome for e in result.effects if e.kind == EffectKind.SETTLE] == [SettlementOutcome.SPLIT]


def test_unfunded_escrow_times_out_to_refund(make_record, directory):
    record = make_record(amount=Decimal("10"), duration_hours=1)

    early = process(record, _cmd(EscrowAction.TIMELOCK_EXPIRY), "system:timelock", directory, _now(record, seconds=3599))
    assert early.rejection.reason == RejectionReason.WRONG_STATUS

    result = process(record, _cmd(EscrowAction.TIMELOCK_EXPIRY), "system:timelock", directory, _now(record, seconds=3600))
    assert result.record.status == EscrowStatus.TIMELOCK_DEFAULT_TRIGGERED
    assert "refund" in result.record.resolution_details


def test_only_system_fires_timelock(make_record, directory):
    record = make_record(EscrowStatus.ACTIVE)
    result = process(record, _cmd(EscrowAction.TIMELOCK_EXPIRY), "alice", directory, _now(record, hours=100))
    assert result.rejection.reason == RejectionReason.WRONG_ACTOR


def test_emergency_override_for_payee(make_record, directory):
    record = make_record(EscrowStatus.ACTIVE)
    result = process(
        record,
        _cmd(EscrowAction.EMERGENCY_OVERRIDE, favor=Party.PAYEE, justification="stuck payer"),
        "admin",
        directory,
        _now(record, hours=1),
    )
    updated = result.record
    assert updated.status == EscrowStatus.COMPLETED_RELEASED
    assert updated.payer.has_funded and updated.payer.has_confirmed
    assert updated.payee.has_funded and updated.payee.has_confirmed
    assert "stuck payer" in updated.resolution_details
    assert "sim_settle_" in updated.resolution_details
    assert updated.history[-1].action == EscrowAction.EMERGENCY_OVERRIDE


@pytest.mark.parametrize("justification", [None, "", "   "])
def test_override_requires_justification(make_record, directory, justification):
    record = make_record(EscrowStatus.ACTIVE)
    result = process(
        record,
        _cmd(EscrowAction.EMERGENCY_OVERRIDE, favor=Party.PAYER, justification=justification),
        "admin",
        directory,
        _now(record, hours=1),
    )
    assert result.rejection.reason == RejectionReason.INVALID_INPUT


def test_override_requires_administrator(make_record, directory):
    record = make_record(EscrowStatus.ACTIVE)
    result = process(
        record,
        _cmd(EscrowAction.EMERGENCY_OVERRIDE, favor=Party.PAYER, justification="stuck"),
        "arbiter_MVP_001",
        directory,
        _now(record, hours=1),
    )
    assert result.rejection.reason == RejectionReason.WRONG_ACTOR


@pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
def test_terminal_records_reject_everything(make_record, directory, status):
    record = make_record(status)
    before = record.model_dump()
    actors = ["alice", "bob", "arbiter_MVP_001", "admin", "system:timelock"]

    for action in EscrowAction:
        for actor in actors:
            command = _cmd(
                action,
                funding_reference="tx",
                text="hello",
                favor=Party.PAYER,
                justification="why",
            )
            result = process(record, command, actor, directory, _now(record, hours=500))
            assert result.rejection.reason == RejectionReason.WRONG_STATUS

    assert record.model_dump() == before


def test_rejection_never_mutates(make_record, directory):
    record = make_record(EscrowStatus.PAYER_FUNDED)
    before = record.model_dump()
    attempts = [
        (_fund(EscrowAction.FUND_AS_PAYER), "alice"),
        (_cmd(EscrowAction.CONFIRM_AS_PAYER), "alice"),
        (_cmd(EscrowAction.SEND_MESSAGE, text=""), "bob"),
        (_cmd(EscrowAction.SUBMIT_EVIDENCE, text="x"), "bob"),
        (_cmd(EscrowAction.DELETE_UNFUNDED), "alice"),
        (_cmd(EscrowAction.BEGIN_REVIEW), "arbiter_MVP_001"),
    ]
    for command, actor in attempts:
        assert not process(record, command, actor, directory, _now(record, hours=1)).accepted
    assert record.model_dump() == before


def test_accepted_transition_returns_new_record(make_record, directory):
    record = make_record(EscrowStatus.ACTIVE)
    now = _now(record, hours=5)
    result = process(record, _cmd(EscrowAction.SEND_MESSAGE, text=" shipped today "), "bob", directory, now)

    assert record.chat_log == []
    assert result.record.chat_log[0].text == "shipped today"
    assert result.record.chat_log[0].sender_label == "Payee"
    assert result.record.last_update_timestamp == now
    assert result.record.status == EscrowStatus.ACTIVE
    assert result.record.history[-1].from_status == EscrowStatus.ACTIVE


def test_observers_cannot_chat(make_record, directory):
    record = make_record(EscrowStatus.ACTIVE)
    result = process(record, _cmd(EscrowAction.SEND_MESSAGE, text="hi"), "mallory", directory, _now(record, hours=1))
    assert result.rejection.reason == RejectionReason.WRONG_ACTOR


def test_delete_unfunded_by_initiator(make_record, directory):
    record = make_record()
    result = process(record, _cmd(EscrowAction.DELETE_UNFUNDED), "alice", directory, _now(record, minutes=1))
    assert result.accepted
    assert result.removed

    other = process(record, _cmd(EscrowAction.DELETE_UNFUNDED), "bob", directory, _now(record, minutes=1))
    assert other.rejection.reason == RejectionReason.WRONG_ACTOR


def test_delete_after_funding_is_wrong_status(make_record, directory):
    record = make_record(EscrowStatus.PAYER_FUNDED)
    result = process(record, _cmd(EscrowAction.DELETE_UNFUNDED), "alice", directory, _now(record, minutes=1))
    assert result.rejection.reason == RejectionReason.WRONG_STATUS
