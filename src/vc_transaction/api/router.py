"""vc_transaction REST API — transaction listing, summaries and compensation remediation."""

from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.vc_common.database import get_db_session
from src.vc_common.response import ApiResponse, success_response
from src.vc_gateway.auth.dependencies import get_current_actor
from src.vc_ledger.domain.models import User
from src.vc_ledger.domain.policy import Action, require
from src.vc_transaction.application.compensator import (
    AutoWithdrawalCompensator,
    CompensationResult,
)
from src.vc_transaction.application.reconciler import CardTransactionReconciler
from src.vc_transaction.application.schemas import CompensationResponse

router = APIRouter(prefix="/transactions", tags=["transactions"])

_reconciler = CardTransactionReconciler()
_compensator = AutoWithdrawalCompensator()


def _compensation_body(txn_id: str, result: CompensationResult) -> dict:
    txn = result.transaction
    return CompensationResponse(
        txn_id=txn_id,
        result=result.outcome,
        txn_type=txn.txn_type if txn is not None else "",
        withdrawal_status=txn.withdrawal_status if txn is not None else None,
        message=result.message,
    ).model_dump(mode="json")


@router.get("")
async def list_transactions(
    actor: Annotated[User, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
    user_id: str | None = Query(None),
    card_id: str | None = Query(None),
    txn_type: str | None = Query(None),
    withdrawal_status: str | None = Query(None),
    cursor: str | None = Query(None),
    limit: int = Query(20, ge=1, le=100),
) -> ApiResponse:
    data = await _reconciler.list_transactions(
        db,
        actor,
        user_id=user_id,
        cursor=cursor,
        limit=limit,
        card_id=card_id,
        txn_type=txn_type,
        withdrawal_status=withdrawal_status,
    )
    return success_response(data.model_dump(), request)


@router.get("/summary")
async def get_transaction_summary(
    actor: Annotated[User, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
    start_date: date = Query(..., description="First local day, inclusive"),
    end_date: date = Query(..., description="Last local day, inclusive"),
    user_id: str | None = Query(None, description="Defaults to the caller; super admins see all"),
) -> ApiResponse:
    data = await _reconciler.get_summary(
        db, actor, start_date, end_date, settings.SYNC_TIMEZONE, user_id=user_id
    )
    return success_response(data.model_dump(), request)


@router.get("/{txn_id}/withdrawal-status")
async def get_withdrawal_status(
    txn_id: str,
    actor: Annotated[User, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _reconciler.get_withdrawal_status(db, actor, txn_id)
    return success_response(data.model_dump(), request)


@router.post("/{txn_id}/retry-withdrawal")
async def retry_withdrawal(
    txn_id: str,
    actor: Annotated[User, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    require(actor, None, Action.COMPENSATE)
    result = await _compensator.retry_withdrawal(db, txn_id)
    return success_response(_compensation_body(txn_id, result), request)


@router.post("/{txn_id}/compensation-recharge")
async def compensation_recharge(
    txn_id: str,
    actor: Annotated[User, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    require(actor, None, Action.COMPENSATE)
    result = await _compensator.compensation_recharge(db, txn_id)
    return success_response(_compensation_body(txn_id, result), request)


@router.post("/{txn_id}/free-pass")
async def free_pass(
    txn_id: str,
    actor: Annotated[User, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    require(actor, None, Action.COMPENSATE)
    result = await _compensator.free_pass(db, txn_id)
    return success_response(_compensation_body(txn_id, result), request)
