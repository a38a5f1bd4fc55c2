"""Administrator endpoints: emergency override and stuck-escrow report."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from aegis.api.deps import get_escrow_service, require_administrator
from aegis.api.v1.escrows import ActionResponse, EscrowListResponse, to_action_response
from aegis.common.enums import Party
from aegis.core.escrow.schemas import MAX_REASON_LENGTH
from aegis.core.escrow.service import EscrowService

router = APIRouter(prefix="/admin", tags=["Admin"])


class OverrideRequest(BaseModel):
    favor: Party
    justification: str = Field(max_length=MAX_REASON_LENGTH)


@router.post("/escrows/{escrow_id}/override", response_model=ActionResponse)
async def override_escrow(
    escrow_id: str,
    body: OverrideRequest,
    actor_id: str = Depends(require_administrator),
    service: EscrowService = Depends(get_escrow_service),
):
    result = await service.emergency_override(escrow_id, actor_id, body.favor, body.justification)
    return to_action_response(result)


@router.get("/escrows/stuck", response_model=EscrowListResponse)
async def list_stuck_escrows(
    actor_id: str = Depends(require_administrator),
    service: EscrowService = Depends(get_escrow_service),
):
    escrows = await service.list_stuck()
    return EscrowListResponse(escrows=escrows, total=len(escrows))
