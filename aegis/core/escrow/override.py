"""Administrator bypass for stuck escrows.

The override skips every guard except "caller is administrator" and "record
is not terminal". It leaves both participants fully funded and confirmed so
that no half-settled state survives it.
"""

import uuid

from aegis.common.enums import EscrowStatus, Party, SettlementOutcome
from aegis.common.logging import get_logger
from aegis.core.escrow.resolver import Resolution
from aegis.core.escrow.schemas import EscrowRecord

logger = get_logger("escrow.override")

_OVERRIDE_TARGETS = {
    Party.PAYER: (EscrowStatus.COMPLETED_REFUNDED, SettlementOutcome.REFUND, "refunded to Payer"),
    Party.PAYEE: (EscrowStatus.COMPLETED_RELEASED, SettlementOutcome.RELEASE, "released to Payee"),
}


def settlement_reference() -> str:
    return f"sim_settle_{uuid.uuid4().hex[:16]}"


def validate_justification(justification: str | None) -> str | None:
    """Return an error message when the justification is unusable."""
    if justification is None or not justification.strip():
        return "Emergency override requires a non-empty justification"
    return None


def apply_override(
    record: EscrowRecord,
    favor: Party,
    justification: str,
    actor_id: str,
    reference: str | None = None,
) -> Resolution:
    status, outcome, verb = _OVERRIDE_TARGETS[favor]
    reference = reference or settlement_reference()
    previous = record.status

    for participant in (record.payer, record.payee):
        participant.has_funded = True
        participant.has_confirmed = True

    record.status = status
    record.resolution_details = (
        f"Emergency override by administrator: funds {verb}. "
        f"Justification: {justification.strip()}. "
        f"Settlement reference: {reference}."
    )

    logger.warning(
        "Emergency override on escrow %s by %s: %s -> %s (ref=%s, justification=%r)",
        record.id,
        actor_id,
        previous.value,
        status.value,
        reference,
        justification,
    )
    return Resolution(
        status=status,
        outcome=outcome,
        narrative=record.resolution_details,
        reference=reference,
    )
