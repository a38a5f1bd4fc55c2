"""Arbiter rulings and timelock default outcomes.

Every record that terminates through a dispute or a timeout gets exactly one
of refund / release / split together with a narrative in
``resolution_details``.
"""

from pydantic import BaseModel

from aegis.common.enums import (
    ArbiterRuling,
    DefaultOutcome,
    EscrowAction,
    EscrowStatus,
    SettlementOutcome,
)
from aegis.common.logging import get_logger
from aegis.core.escrow.schemas import EscrowRecord

logger = get_logger("escrow.resolver")


class Resolution(BaseModel):
    status: EscrowStatus
    outcome: SettlementOutcome
    narrative: str
    ruling: ArbiterRuling = ArbiterRuling.NONE
    reference: str | None = None


RULINGS: dict[EscrowAction, Resolution] = {
    EscrowAction.RULE_FOR_PAYER: Resolution(
        status=EscrowStatus.COMPLETED_REFUNDED,
        outcome=SettlementOutcome.REFUND,
        ruling=ArbiterRuling.PAYER,
        narrative="Arbiter decision: Ruled in favor of Payer (funds refunded).",
    ),
    EscrowAction.RULE_FOR_PAYEE: Resolution(
        status=EscrowStatus.COMPLETED_RELEASED,
        outcome=SettlementOutcome.RELEASE,
        ruling=ArbiterRuling.PAYEE,
        narrative="Arbiter decision: Ruled in favor of Payee (funds released).",
    ),
    EscrowAction.RULE_FOR_SPLIT: Resolution(
        status=EscrowStatus.COMPLETED_SPLIT,
        outcome=SettlementOutcome.SPLIT,
        ruling=ArbiterRuling.SPLIT,
        narrative="Arbiter decision: Ruled for a 50/50 split.",
    ),
}

# The timelock always lands in TIMELOCK_DEFAULT_TRIGGERED; the outcome and
# narrative carry which default applied.
DEFAULT_OUTCOMES: dict[DefaultOutcome, Resolution] = {
    DefaultOutcome.PAYER_REFUND: Resolution(
        status=EscrowStatus.TIMELOCK_DEFAULT_TRIGGERED,
        outcome=SettlementOutcome.REFUND,
        narrative="Timelock expired: Default outcome - Full refund to Payer.",
    ),
    DefaultOutcome.SPLIT_50_50: Resolution(
        status=EscrowStatus.TIMELOCK_DEFAULT_TRIGGERED,
        outcome=SettlementOutcome.SPLIT,
        narrative="Timelock expired: Default outcome - 50/50 split.",
    ),
    DefaultOutcome.PAYEE_FAVOR: Resolution(
        status=EscrowStatus.TIMELOCK_DEFAULT_TRIGGERED,
        outcome=SettlementOutcome.RELEASE,
        narrative="Timelock expired: Default outcome - Full release to Payee.",
    ),
}


def is_assigned_arbiter(record: EscrowRecord, actor_id: str) -> bool:
    return bool(record.arbiter_id) and actor_id == record.arbiter_id


def apply_ruling(record: EscrowRecord, action: EscrowAction) -> Resolution:
    """Mutate ``record`` with the arbiter's ruling. Guards must have passed."""
    resolution = RULINGS[action]
    record.status = resolution.status
    record.arbiter_ruling = resolution.ruling
    record.resolution_details = resolution.narrative
    logger.info("Escrow %s ruled %s by arbiter %s", record.id, resolution.ruling.value, record.arbiter_id)
    return resolution


def apply_default_outcome(record: EscrowRecord) -> Resolution:
    resolution = DEFAULT_OUTCOMES[record.default_outcome]
    record.status = resolution.status
    record.resolution_details = resolution.narrative
    logger.info(
        "Escrow %s timelock expired, default %s applied",
        record.id,
        record.default_outcome.value,
    )
    return resolution
