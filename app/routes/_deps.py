from __future__ import annotations

import logging
import uuid
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from app.schemas import error_envelope
from app.security import redact_sensitive

logger = logging.getLogger(__name__)


def trace_id_from_request(request: Request) -> str:
    trace_id = getattr(request.state, "trace_id", None)
    if trace_id:
        return trace_id
    return uuid.uuid4().hex


def request_id_from_request(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    return f"req_{uuid.uuid4().hex[:12]}"


def auth_subject_from_request(request: Request) -> str:
    return getattr(request.state, "auth_subject", None) or "anonymous"


def error_response(
    request: Request,
    *,
    code: str,
    message: str,
    error_class: str,
    retryable: bool,
    status_code: int,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    response = JSONResponse(
        status_code=status_code,
        content=error_envelope(
            code=code,
            message=message,
            error_class=error_class,
            retryable=retryable,
            trace_id=trace_id_from_request(request),
            details=details,
        ),
    )
    response.headers["x-trace-id"] = trace_id_from_request(request)
    response.headers["x-request-id"] = request_id_from_request(request)
    return response


def log_security_block(*, request: Request, code: str, detail: str) -> None:
    security_cfg = request.app.state.security_cfg
    headers_obj = dict(request.headers.items())
    headers_payload = redact_sensitive(headers_obj) if security_cfg.log_redaction_enabled else headers_obj
    logger.warning(
        "security_blocked code=%s detail=%s path=%s trace_id=%s headers=%s",
        code,
        detail,
        request.url.path,
        trace_id_from_request(request),
        headers_payload,
    )
