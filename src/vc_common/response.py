"""Unified API response envelope.

{
    "code": 0,                 // 0 = success, otherwise an AppError code
    "message": "success",
    "data": { ... },           // null on error unless the error carries a payload
    "timestamp": "2025-09-01T12:30:00+00:00",
    "request_id": "req_a1b2c3d4e5f6"
}

When the handler passes the current `Request`, the envelope reuses the id the
request-log middleware assigned, so the body matches the X-Request-ID header.
"""

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field
from starlette.requests import Request


def _new_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:12]}"


class ApiResponse(BaseModel):
    code: int = 0
    message: str = "success"
    data: Any = None
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    request_id: str = Field(default_factory=_new_request_id)


def _request_id_of(request: Request | None) -> str:
    if request is None:
        return _new_request_id()
    return getattr(request.state, "request_id", None) or _new_request_id()


def success_response(data: Any = None, request: Request | None = None) -> ApiResponse:
    return ApiResponse(data=data, request_id=_request_id_of(request))


def error_response(
    code: int, message: str, data: Any = None, request: Request | None = None
) -> ApiResponse:
    return ApiResponse(code=code, message=message, data=data, request_id=_request_id_of(request))
