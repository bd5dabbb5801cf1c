"""vc_ledger REST API — dashboards, account flows, operation logs and admin balance operations."""

from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.vc_common.database import get_db_session
from src.vc_common.enums import CardOperationType, CardStatus
from src.vc_common.money import format_amount
from src.vc_common.response import ApiResponse, success_response
from src.vc_gateway.auth.dependencies import get_current_actor
from src.vc_ledger.application.ledger import AccountFlowLedger
from src.vc_ledger.application.operation_logs import OperationLogReader
from src.vc_ledger.application.projector import BalanceProjector
from src.vc_ledger.application.schemas import (
    BalanceOperationRequest,
    ConsumptionTrendResponse,
    DashboardResponse,
    RefreshAllBalancesResponse,
    RefreshBalanceResponse,
)
from src.vc_ledger.domain.models import User
from src.vc_ledger.domain.policy import Action, require

router = APIRouter(tags=["ledger"])

_projector = BalanceProjector()
_ledger = AccountFlowLedger(projector=_projector)
_operation_logs = OperationLogReader()


@router.get("/dashboard")
async def get_dashboard(
    actor: Annotated[User, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _projector.get_dashboard_data(db, actor.id)
    return success_response(DashboardResponse.from_domain(actor.id, data).model_dump(), request)


@router.get("/dashboard/consumption-trend")
async def get_consumption_trend(
    actor: Annotated[User, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
    days: int = Query(7, ge=1, le=90),
    user_id: str | None = Query(None, description="Defaults to the caller"),
) -> ApiResponse:
    target = await _ledger.authorize(db, actor, user_id, Action.VIEW_BALANCE)
    trend = await _projector.get_consumption_trend(db, target.id, days, settings.SYNC_TIMEZONE)
    data = ConsumptionTrendResponse.from_domain(target.id, trend)
    return success_response(data.model_dump(), request)


@router.get("/dashboard/users/{user_id}")
async def get_user_dashboard(
    user_id: str,
    actor: Annotated[User, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    target = await _ledger.authorize(db, actor, user_id, Action.VIEW_BALANCE)
    data = await _projector.get_dashboard_data(db, target.id)
    return success_response(DashboardResponse.from_domain(target.id, data).model_dump(), request)


@router.get("/dashboard/admin")
async def get_admin_dashboard(
    actor: Annotated[User, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
    user_id: str | None = Query(None, description="Defaults to the caller"),
) -> ApiResponse:
    data = await _ledger.get_admin_dashboard(db, actor, user_id)
    return success_response(data.model_dump(), request)


@router.get("/account-flows")
async def list_account_flows(
    actor: Annotated[User, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
    user_id: str | None = Query(None, description="Defaults to the caller"),
    cursor: str | None = Query(None, description="Pagination cursor (opaque Base64)"),
    limit: int = Query(20, ge=1, le=100, description="Items per page"),
    operation_type: str | None = Query(None, description="RECHARGE or WITHDRAW"),
) -> ApiResponse:
    target = await _ledger.authorize(db, actor, user_id, Action.VIEW_BALANCE)
    data = await _ledger.list_flows(db, target.id, cursor, limit, operation_type)
    return success_response(data.model_dump(), request)


@router.get("/account-flows/summary")
async def get_account_flow_summary(
    actor: Annotated[User, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
    user_id: str | None = Query(None, description="Defaults to the caller"),
) -> ApiResponse:
    target = await _ledger.authorize(db, actor, user_id, Action.VIEW_BALANCE)
    data = await _ledger.get_flow_summary(db, target.id)
    return success_response(data.model_dump(), request)


@router.post("/users/{user_id}/balance-operation")
async def balance_operation(
    user_id: str,
    body: BalanceOperationRequest,
    actor: Annotated[User, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    if body.type == "deposit":
        data = await _ledger.recharge(db, actor, user_id, body.amount, body.remark)
    else:
        data = await _ledger.withdraw(db, actor, user_id, body.amount, body.remark)
    return success_response(data.model_dump(), request)


@router.post("/users/refresh-balances")
async def refresh_all_balances(
    actor: Annotated[User, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    require(actor, None, Action.REFRESH_BALANCE)
    count = await _ledger.refresh_all_balances(db)
    return success_response(RefreshAllBalancesResponse(refreshed=count).model_dump(), request)


@router.post("/users/{user_id}/refresh-balance")
async def refresh_balance(
    user_id: str,
    actor: Annotated[User, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    target = await _ledger.authorize(db, actor, user_id, Action.REFRESH_BALANCE)
    try:
        balance = await _ledger.refresh_cached_balance(db, target.id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    data = RefreshBalanceResponse(user_id=target.id, balance=format_amount(balance))
    return success_response(data.model_dump(), request)


@router.get("/operation-logs")
async def list_operation_logs(
    actor: Annotated[User, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
    user_id: str | None = Query(None, description="Card owner; super admins default to all"),
    cursor: str | None = Query(None, description="Pagination cursor (opaque Base64)"),
    limit: int = Query(20, ge=1, le=100),
    card_id: str | None = Query(None, description="Substring match"),
    card_no: str | None = Query(None, description="Substring match"),
    operation_type: CardOperationType | None = Query(None),
    card_status: CardStatus | None = Query(None),
    start_date: date | None = Query(None, description="First local day, inclusive"),
    end_date: date | None = Query(None, description="Last local day, inclusive"),
) -> ApiResponse:
    data = await _operation_logs.list_logs(
        db,
        actor,
        settings.SYNC_TIMEZONE,
        user_id=user_id,
        cursor=cursor,
        limit=limit,
        card_id=card_id,
        card_no=card_no,
        operation_type=operation_type,
        card_status=card_status,
        start_date=start_date,
        end_date=end_date,
    )
    return success_response(data.model_dump(), request)


@router.get("/operation-logs/stats")
async def get_operation_stats(
    actor: Annotated[User, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
    user_id: str | None = Query(None, description="Card owner; super admins default to all"),
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
) -> ApiResponse:
    data = await _operation_logs.get_stats(
        db, actor, settings.SYNC_TIMEZONE, user_id=user_id,
        start_date=start_date, end_date=end_date,
    )
    return success_response(data.model_dump(), request)
