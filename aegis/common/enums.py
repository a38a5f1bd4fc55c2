import enum


class EscrowStatus(str, enum.Enum):
    PENDING_FUNDING = "pending_funding"
    PAYER_FUNDED = "payer_funded"
    PAYEE_CONFIRMED_ITEM = "payee_confirmed_item"
    ACTIVE = "active"
    AWAITING_PARTICIPANT_ACTION = "awaiting_participant_action"
    DISPUTE_INITIATED = "dispute_initiated"
    EVIDENCE_SUBMISSION = "evidence_submission"
    ARBITER_REVIEW = "arbiter_review"
    COMPLETED_RELEASED = "completed_released"
    COMPLETED_REFUNDED = "completed_refunded"
    COMPLETED_SPLIT = "completed_split"
    CANCELLED_UNFUNDED = "cancelled_unfunded"
    TIMELOCK_DEFAULT_TRIGGERED = "timelock_default_triggered"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    EscrowStatus.COMPLETED_RELEASED,
    EscrowStatus.COMPLETED_REFUNDED,
    EscrowStatus.COMPLETED_SPLIT,
    EscrowStatus.CANCELLED_UNFUNDED,
    EscrowStatus.TIMELOCK_DEFAULT_TRIGGERED,
})

DISPUTE_STATUSES = frozenset({
    EscrowStatus.DISPUTE_INITIATED,
    EscrowStatus.EVIDENCE_SUBMISSION,
    EscrowStatus.ARBITER_REVIEW,
})


class DefaultOutcome(str, enum.Enum):
    PAYER_REFUND = "payer_refund"
    SPLIT_50_50 = "split_50_50"
    PAYEE_FAVOR = "payee_favor"


class ArbiterRuling(str, enum.Enum):
    PAYER = "payer"
    PAYEE = "payee"
    SPLIT = "split"
    NONE = "none"


class Party(str, enum.Enum):
    PAYER = "payer"
    PAYEE = "payee"


class ActorRole(str, enum.Enum):
    PAYER = "payer"
    PAYEE = "payee"
    ARBITER = "arbiter"
    ADMINISTRATOR = "administrator"
    SYSTEM = "system"
    OBSERVER = "observer"


class EscrowAction(str, enum.Enum):
    FUND_AS_PAYER = "fund_as_payer"
    FUND_AS_PAYEE = "fund_as_payee"
    CONFIRM_AS_PAYER = "confirm_as_payer"
    CONFIRM_AS_PAYEE = "confirm_as_payee"
    INITIATE_DISPUTE = "initiate_dispute"
    REQUEST_EVIDENCE = "request_evidence"
    BEGIN_REVIEW = "begin_review"
    RULE_FOR_PAYER = "rule_for_payer"
    RULE_FOR_PAYEE = "rule_for_payee"
    RULE_FOR_SPLIT = "rule_for_split"
    TIMELOCK_EXPIRY = "timelock_expiry"
    SEND_MESSAGE = "send_message"
    SUBMIT_EVIDENCE = "submit_evidence"
    EMERGENCY_OVERRIDE = "emergency_override"
    DELETE_UNFUNDED = "delete_unfunded"


FUNDING_ACTIONS = frozenset({EscrowAction.FUND_AS_PAYER, EscrowAction.FUND_AS_PAYEE})


class RejectionReason(str, enum.Enum):
    WRONG_ACTOR = "wrong_actor"
    WRONG_STATUS = "wrong_status"
    ALREADY_DONE = "already_done"
    RECORD_NOT_FOUND = "record_not_found"
    BROADCAST_FAILED = "broadcast_failed"
    PERSISTENCE_FAILED = "persistence_failed"
    INVALID_INPUT = "invalid_input"


class SettlementOutcome(str, enum.Enum):
    RELEASE = "release"
    REFUND = "refund"
    SPLIT = "split"


class NotificationSeverity(str, enum.Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class EffectKind(str, enum.Enum):
    NOTIFY = "notify"
    SETTLE = "settle"
