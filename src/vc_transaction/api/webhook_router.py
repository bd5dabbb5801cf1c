"""Provider webhooks — no JWT, called by the card provider.

Already-absorbed events answer 200 with `duplicate: true` so the provider stops
redelivering. Every other failure goes through the AppError handler.
"""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.vc_common.database import get_db_session
from src.vc_common.errors import AlreadySettledError, DuplicateTransactionError
from src.vc_common.response import ApiResponse, success_response
from src.vc_transaction.application.reconciler import CardTransactionReconciler
from src.vc_transaction.application.schemas import (
    AuthCallbackRequest,
    DuplicateEventResponse,
    IngestResponse,
    SettleCallbackRequest,
    SettlementCallbackRequest,
)
from src.vc_transaction.domain.models import IngestResult
from src.vc_transaction.infrastructure.signature import verify_webhook_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

_reconciler = CardTransactionReconciler()


async def verify_settlement_signature(
    request: Request,
    x_webhook_signature: Annotated[str | None, Header()] = None,
    x_webhook_timestamp: Annotated[str | None, Header()] = None,
) -> None:
    if not settings.ENABLE_WEBHOOK_VERIFICATION:
        return
    verify_webhook_signature(
        settings.WEBHOOK_SECRET_KEY,
        await request.body(),
        x_webhook_signature,
        x_webhook_timestamp,
        settings.WEBHOOK_MAX_SKEW_SECONDS,
    )


async def _raw_json(request: Request) -> dict[str, Any]:
    payload = await request.json()
    return payload if isinstance(payload, dict) else {"payload": payload}


def _duplicate(request: Request, txn_id: str, exc: Exception) -> ApiResponse:
    reason = "already_settled" if isinstance(exc, AlreadySettledError) else "duplicate"
    logger.info("Webhook event %s already processed (%s)", txn_id, reason)
    data = DuplicateEventResponse(txn_id=txn_id, reason=reason)
    return success_response(data.model_dump(), request)


def _ingested(request: Request, result: IngestResult) -> ApiResponse:
    return success_response(IngestResponse.from_result(result).model_dump(), request)


@router.post("/auth-callback")
async def auth_callback(
    body: AuthCallbackRequest,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    event = body.to_event(await _raw_json(request))
    try:
        result = await _reconciler.ingest_authorization(db, event)
    except DuplicateTransactionError as exc:
        return _duplicate(request, body.txn_id, exc)
    return _ingested(request, result)


@router.post("/settle-callback")
async def settle_callback(
    body: SettleCallbackRequest,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    event = body.to_event(await _raw_json(request))
    try:
        result = await _reconciler.ingest_settlement(db, event)
    except (DuplicateTransactionError, AlreadySettledError) as exc:
        return _duplicate(request, body.settle_txn_id, exc)
    return _ingested(request, result)


@router.post("/settlement-callback", dependencies=[Depends(verify_settlement_signature)])
async def settlement_callback(
    body: SettlementCallbackRequest,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    event = body.to_event(await _raw_json(request))
    try:
        result = await _reconciler.ingest_settlement(db, event)
    except (DuplicateTransactionError, AlreadySettledError) as exc:
        return _duplicate(request, body.txn_id, exc)
    return _ingested(request, result)
