from collections.abc import AsyncGenerator

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from aegis.common.exceptions import BadRequestError, PermissionDeniedError
from aegis.config import settings
from aegis.core.escrow.service import EscrowService, build_escrow_service
from aegis.db.session import async_session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_current_actor(
    x_actor_id: str = Header(..., alias="X-Actor-Id", description="Identity of the calling actor"),
) -> str:
    actor_id = x_actor_id.strip()
    if not actor_id:
        raise BadRequestError("X-Actor-Id header must not be empty")
    return actor_id


async def get_escrow_service(db: AsyncSession = Depends(get_db)) -> EscrowService:
    from aegis.tasks.escrow_tasks import queue_settlement

    return build_escrow_service(db, settlement_dispatcher=queue_settlement)


async def require_administrator(actor_id: str = Depends(get_current_actor)) -> str:
    if actor_id != settings.ADMINISTRATOR_ID:
        raise PermissionDeniedError("This action requires the administrator")
    return actor_id
