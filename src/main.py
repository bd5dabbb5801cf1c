"""FastAPI application entry point.

Run with: uvicorn src.main:app --reload --port 8000
"""

# ruff: noqa: E402  -- uvloop.install() must run before other imports

import uvloop

uvloop.install()

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from config.settings import settings
from src.vc_card.api.router import router as card_router
from src.vc_common.database import engine
from src.vc_common.errors import AppError, InternalError
from src.vc_common.response import error_response
from src.vc_gateway.middleware.request_log import RequestLogMiddleware
from src.vc_ledger.api.router import router as ledger_router
from src.vc_provider.client import close_card_provider
from src.vc_sync.api.router import router as sync_router
from src.vc_sync.application.scheduler import get_sync_scheduler
from src.vc_transaction.api.router import router as transaction_router
from src.vc_transaction.api.webhook_router import router as webhook_router
from src.vc_transaction.application.dispatcher import get_compensation_dispatcher

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: verify DB, start compensation workers + scheduler. Shutdown: reverse."""
    # Startup
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    dispatcher = get_compensation_dispatcher()
    await dispatcher.start()
    await dispatcher.recover()
    scheduler = get_sync_scheduler()
    scheduler.start()
    yield
    # Shutdown
    scheduler.shutdown()
    await dispatcher.stop()
    await close_card_provider()
    await engine.dispose()


app = FastAPI(
    title=settings.APP_NAME,
    version="0.1.0",
    lifespan=lifespan,
)


app.add_middleware(RequestLogMiddleware)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    resp = error_response(exc.code, exc.message, exc.data, request)
    return JSONResponse(
        status_code=exc.http_status,
        content=resp.model_dump(),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    internal = InternalError()
    resp = error_response(internal.code, internal.message, request=request)
    return JSONResponse(status_code=internal.http_status, content=resp.model_dump())


app.include_router(ledger_router, prefix="/api/v1")
app.include_router(card_router, prefix="/api/v1")
app.include_router(webhook_router, prefix="/api/v1")
app.include_router(transaction_router, prefix="/api/v1")
app.include_router(sync_router, prefix="/api/v1")


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "version": "0.1.0"}
