from __future__ import annotations

import logging
import os
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from app.errors import ApiError
from app.routes import certificate_requests
from app.routes._deps import error_response, log_security_block, request_id_from_request, trace_id_from_request
from app.schemas import success_envelope
from app.security import JwtSecurityConfig, parse_and_validate_bearer_token

logger = logging.getLogger(__name__)

UNAUTHENTICATED_PATHS = frozenset({"/api/v1/health"})


def create_app() -> FastAPI:
    app = FastAPI(title="Certificate Requests Service", version="0.1.0")
    security_cfg = JwtSecurityConfig.from_env()
    app.state.security_cfg = security_cfg
    cors_origins = os.environ.get("CORS_ALLOW_ORIGINS", "http://127.0.0.1:5173,http://localhost:5173")
    allow_origins = [x.strip() for x in cors_origins.split(",") if x.strip()]
    if allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allow_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.middleware("http")
    async def add_trace_id(request: Request, call_next):
        incoming_trace_id = request.headers.get("x-trace-id", "").strip()
        request.state.trace_id = incoming_trace_id or uuid.uuid4().hex
        request.state.request_id = request.headers.get("x-request-id", f"req_{uuid.uuid4().hex[:12]}")
        request.state.auth_subject = "anonymous"
        path = request.url.path
        try:
            if security_cfg.enabled and path.startswith("/api/v1/") and path not in UNAUTHENTICATED_PATHS:
                auth_ctx = parse_and_validate_bearer_token(
                    authorization=request.headers.get("Authorization"),
                    cfg=security_cfg,
                )
                request.state.auth_subject = auth_ctx.subject
        except ApiError as exc:
            log_security_block(request=request, code=exc.code, detail=exc.message)
            return error_response(
                request,
                code=exc.code,
                message=exc.message,
                error_class=exc.error_class,
                retryable=exc.retryable,
                status_code=exc.http_status,
            )
        response = await call_next(request)
        response.headers["x-trace-id"] = trace_id_from_request(request)
        response.headers["x-request-id"] = request_id_from_request(request)
        return response

    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError):
        if exc.http_status >= 500 or exc.retryable:
            logger.warning("api_error code=%s path=%s trace_id=%s", exc.code, request.url.path, trace_id_from_request(request))
        return error_response(
            request,
            code=exc.code,
            message=exc.message,
            error_class=exc.error_class,
            retryable=exc.retryable,
            status_code=exc.http_status,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        fields = sorted({".".join(str(x) for x in err.get("loc", ())[1:]) for err in exc.errors()} - {""})
        message = f"invalid payload: {', '.join(fields)}" if fields else "invalid payload"
        return error_response(
            request,
            code="REQ_VALIDATION_FAILED",
            message=message,
            error_class="validation",
            retryable=False,
            status_code=400,
            details={"fields": fields},
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return error_response(
                request,
                code="REQ_NOT_FOUND",
                message="resource not found",
                error_class="validation",
                retryable=False,
                status_code=404,
            )
        return error_response(
            request,
            code="REQ_HTTP_ERROR",
            message=str(exc.detail),
            error_class="validation",
            retryable=False,
            status_code=exc.status_code,
        )

    @app.get("/healthz")
    def healthz(request: Request) -> dict[str, object]:
        return success_envelope({"status": "ok"}, trace_id_from_request(request))

    @app.get("/api/v1/health")
    def health_api(request: Request) -> dict[str, object]:
        return success_envelope({"status": "ok"}, trace_id_from_request(request))

    app.include_router(certificate_requests.router)
    return app


app = create_app()
