"""vc_card REST API — balance-touching card operations, all require JWT authentication."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.vc_card.application.schemas import CardAmountRequest, CreateCardRequest
from src.vc_card.application.service import CardApplicationService
from src.vc_common.database import get_db_session
from src.vc_common.response import ApiResponse, success_response
from src.vc_gateway.auth.dependencies import get_current_actor
from src.vc_ledger.domain.models import User

router = APIRouter(prefix="/cards", tags=["cards"])

_service = CardApplicationService()


@router.post("")
async def create_card(
    body: CreateCardRequest,
    actor: Annotated[User, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.create_card(
        db,
        actor,
        amount=body.amount,
        currency=body.currency,
        exp_date=body.exp_date,
        product_code=body.product_code,
        remark=body.remark,
    )
    return success_response(data.model_dump(), request)


@router.post("/{card_id}/recharge")
async def recharge_card(
    card_id: str,
    body: CardAmountRequest,
    actor: Annotated[User, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.recharge_card(db, actor, card_id, body.amount)
    return success_response(data.model_dump(), request)


@router.post("/{card_id}/withdraw")
async def withdraw_card(
    card_id: str,
    body: CardAmountRequest,
    actor: Annotated[User, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.withdraw_card(db, actor, card_id, body.amount)
    return success_response(data.model_dump(), request)


@router.post("/{card_id}/toggle-status")
async def toggle_card_status(
    card_id: str,
    actor: Annotated[User, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.toggle_card_status(db, actor, card_id)
    return success_response(data.model_dump(), request)


@router.delete("/{card_id}")
async def release_card(
    card_id: str,
    actor: Annotated[User, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.release_card(db, actor, card_id)
    return success_response(data.model_dump(), request)
