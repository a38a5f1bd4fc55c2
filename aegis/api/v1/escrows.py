"""Escrow lifecycle endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from aegis.api.deps import get_current_actor, get_escrow_service
from aegis.common.enums import ActorRole, EscrowAction, EscrowStatus, Party, RejectionReason
from aegis.common.exceptions import ActionRejectedError
from aegis.common.pagination import PaginatedResponse, PaginationParams
from aegis.core.escrow import timer
from aegis.core.escrow.schemas import (
    MAX_REASON_LENGTH,
    MAX_TEXT_LENGTH,
    ActionCommand,
    EscrowCreate,
    EscrowRecord,
    TimerReading,
    TransitionResult,
)
from aegis.core.escrow.service import EscrowService
from aegis.core.notifications.service import NotificationView

router = APIRouter(prefix="/escrows", tags=["Escrows"])


# ---------- Schemas ----------


class ActionRequest(BaseModel):
    action: EscrowAction
    reason: str | None = Field(default=None, max_length=MAX_REASON_LENGTH)
    text: str | None = Field(default=None, max_length=MAX_TEXT_LENGTH)
    justification: str | None = Field(default=None, max_length=MAX_REASON_LENGTH)
    favor: Party | None = None


class FundRequest(BaseModel):
    signed_tx_hex: str = Field(max_length=1_000_000)


class EscrowDetailResponse(BaseModel):
    escrow: EscrowRecord
    timer: TimerReading
    role: ActorRole


class ActionResponse(BaseModel):
    escrow: EscrowRecord | None
    removed: bool = False
    messages: list[str] = []


class EscrowListResponse(BaseModel):
    escrows: list[EscrowRecord]
    total: int


# ---------- Helpers ----------


def raise_if_rejected(result: TransitionResult) -> TransitionResult:
    if not result.accepted:
        raise ActionRejectedError(result.rejection.reason, result.rejection.message)
    return result


def to_action_response(result: TransitionResult) -> ActionResponse:
    raise_if_rejected(result)
    return ActionResponse(
        escrow=None if result.removed else result.record,
        removed=result.removed,
        messages=[effect.message for effect in result.effects],
    )


# ---------- Endpoints ----------


@router.post("", response_model=EscrowDetailResponse, status_code=201)
async def create_escrow(
    body: EscrowCreate,
    actor_id: str = Depends(get_current_actor),
    service: EscrowService = Depends(get_escrow_service),
):
    result = raise_if_rejected(await service.create(body, actor_id))
    return EscrowDetailResponse(
        escrow=result.record,
        timer=timer.evaluate(result.record, service.now()),
        role=service.role_of(result.record, actor_id),
    )


@router.get("", response_model=EscrowListResponse)
async def list_escrows(
    status: EscrowStatus | None = None,
    actor_id: str = Depends(get_current_actor),
    service: EscrowService = Depends(get_escrow_service),
):
    escrows = await service.list_for_actor(actor_id, status)
    return EscrowListResponse(escrows=escrows, total=len(escrows))


@router.get("/disputes", response_model=EscrowListResponse)
async def list_disputes(
    open_only: bool = False,
    actor_id: str = Depends(get_current_actor),
    service: EscrowService = Depends(get_escrow_service),
):
    escrows = await service.list_disputes(actor_id, open_only)
    return EscrowListResponse(escrows=escrows, total=len(escrows))


@router.get("/{escrow_id}", response_model=EscrowDetailResponse)
async def get_escrow(
    escrow_id: str,
    actor_id: str = Depends(get_current_actor),
    service: EscrowService = Depends(get_escrow_service),
):
    record = await service.get(escrow_id)
    if record is None:
        raise ActionRejectedError(RejectionReason.RECORD_NOT_FOUND, f"escrow '{escrow_id}' not found")
    return EscrowDetailResponse(
        escrow=record,
        timer=timer.evaluate(record, service.now()),
        role=service.role_of(record, actor_id),
    )


@router.post("/{escrow_id}/actions", response_model=ActionResponse)
async def apply_action(
    escrow_id: str,
    body: ActionRequest,
    actor_id: str = Depends(get_current_actor),
    service: EscrowService = Depends(get_escrow_service),
):
    command = ActionCommand(**body.model_dump())
    return to_action_response(await service.apply(escrow_id, command, actor_id))


@router.post("/{escrow_id}/fund", response_model=ActionResponse)
async def fund_escrow(
    escrow_id: str,
    body: FundRequest,
    actor_id: str = Depends(get_current_actor),
    service: EscrowService = Depends(get_escrow_service),
):
    return to_action_response(await service.fund(escrow_id, actor_id, body.signed_tx_hex))


@router.delete("/{escrow_id}", response_model=ActionResponse)
async def delete_escrow(
    escrow_id: str,
    actor_id: str = Depends(get_current_actor),
    service: EscrowService = Depends(get_escrow_service),
):
    return to_action_response(await service.delete_unfunded(escrow_id, actor_id))


@router.get("/{escrow_id}/notifications", response_model=PaginatedResponse[NotificationView])
async def list_escrow_notifications(
    escrow_id: str,
    params: PaginationParams = Depends(),
    actor_id: str = Depends(get_current_actor),
    service: EscrowService = Depends(get_escrow_service),
):
    items, total = await service.notifications.list_for_escrow(escrow_id, params)
    return PaginatedResponse[NotificationView].build(items, total, params)
