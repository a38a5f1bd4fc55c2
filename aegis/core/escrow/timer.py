from datetime import datetime, timedelta, timezone

from aegis.common.enums import EscrowStatus
from aegis.core.escrow.schemas import EscrowRecord, TimerReading

TIMER_RELEVANT_STATUSES = frozenset({
    EscrowStatus.PENDING_FUNDING,
    EscrowStatus.PAYER_FUNDED,
    EscrowStatus.PAYEE_CONFIRMED_ITEM,
    EscrowStatus.AWAITING_PARTICIPANT_ACTION,
    EscrowStatus.ACTIVE,
    EscrowStatus.DISPUTE_INITIATED,
    EscrowStatus.EVIDENCE_SUBMISSION,
    EscrowStatus.ARBITER_REVIEW,
})


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def deadline(creation_timestamp: datetime, duration_hours: int) -> datetime:
    return creation_timestamp + timedelta(hours=duration_hours)


def remaining_seconds(creation_timestamp: datetime, duration_hours: int, now: datetime) -> float:
    elapsed = (now - creation_timestamp).total_seconds()
    return duration_hours * 3600 - elapsed


def deadline_reached(creation_timestamp: datetime, duration_hours: int, now: datetime) -> bool:
    return remaining_seconds(creation_timestamp, duration_hours, now) <= 0


def evaluate(record: EscrowRecord, now: datetime) -> TimerReading:
    """Report the countdown for ``record``, or "not applicable" outside the timed statuses."""
    due = deadline(record.creation_timestamp, record.duration_hours)
    if record.status not in TIMER_RELEVANT_STATUSES:
        return TimerReading(applicable=False, deadline=due)

    remaining = remaining_seconds(record.creation_timestamp, record.duration_hours, now)
    return TimerReading(
        applicable=True,
        deadline=due,
        remaining_seconds=max(remaining, 0.0),
        expired=remaining <= 0,
    )
