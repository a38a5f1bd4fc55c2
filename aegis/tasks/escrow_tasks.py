import asyncio

from aegis.common.logging import get_logger
from aegis.core.escrow.schemas import SideEffect
from aegis.tasks.celery_app import app

logger = get_logger("tasks.escrow")


def _run_async(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@app.task(name="aegis.tasks.escrow_tasks.check_all_timelocks")
def check_all_timelocks():
    """Celery Beat task: apply the default outcome to escrows past their deadline."""
    logger.info("Checking escrow timelocks")

    async def _check():
        from aegis.core.escrow.service import build_escrow_service
        from aegis.db.session import async_session_factory

        async with async_session_factory() as db:
            try:
                service = build_escrow_service(db, settlement_dispatcher=queue_settlement)
                expired = await service.expire_due()
                if expired:
                    logger.info("Timelock expired for %d escrows", len(expired))
                return expired
            except Exception as e:
                await db.rollback()
                logger.error("Timelock check failed: %s", e)
                raise

    return _run_async(_check())


@app.task(name="aegis.tasks.escrow_tasks.dispatch_settlement")
def dispatch_settlement(escrow_id: str, outcome: str, narrative: str, reference: str | None = None):
    # Payouts are simulated: the request is logged for the operator.
    logger.info(
        "Settlement requested for escrow %s: %s (ref=%s) %s",
        escrow_id,
        outcome,
        reference or "-",
        narrative,
    )
    return {"escrow_id": escrow_id, "outcome": outcome, "reference": reference}


def queue_settlement(escrow_id: str, effect: SideEffect) -> None:
    dispatch_settlement.delay(escrow_id, effect.outcome.value, effect.message, effect.reference)
