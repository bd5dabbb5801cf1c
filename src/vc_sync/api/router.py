"""vc_sync REST API — scheduler status and on-demand runs (super admin only)."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from src.vc_common.response import ApiResponse, success_response
from src.vc_gateway.auth.dependencies import get_current_actor
from src.vc_ledger.domain.models import User
from src.vc_ledger.domain.policy import Action, require
from src.vc_sync.application.scheduler import get_sync_scheduler
from src.vc_sync.application.schemas import ManualSyncRequest, SyncStatsResponse

router = APIRouter(prefix="/sync", tags=["sync"])


@router.get("/status")
async def sync_status(
    actor: Annotated[User, Depends(get_current_actor)],
    request: Request,
) -> ApiResponse:
    require(actor, None, Action.SYNC)
    return success_response(get_sync_scheduler().get_status(), request)


@router.post("/trigger/{job_name}")
async def trigger_sync(
    job_name: str,
    actor: Annotated[User, Depends(get_current_actor)],
    request: Request,
) -> ApiResponse:
    require(actor, None, Action.SYNC)
    stats = await get_sync_scheduler().trigger(job_name)
    return success_response(SyncStatsResponse.from_stats(job_name, stats).model_dump(), request)


@router.post("/manual")
async def manual_sync(
    body: ManualSyncRequest,
    actor: Annotated[User, Depends(get_current_actor)],
    request: Request,
) -> ApiResponse:
    require(actor, None, Action.SYNC)
    stats = await get_sync_scheduler().run_manual(
        body.sync_type, body.date_start, body.date_end, body.card_id
    )
    label = f"manual-{body.sync_type.value}"
    return success_response(SyncStatsResponse.from_stats(label, stats).model_dump(), request)
