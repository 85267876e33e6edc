from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class CertificateRequestCreateRequest(BaseModel):
    channel_identifier: str = Field(min_length=1, max_length=32)
    certificate_type: str = Field(min_length=1, max_length=120)
    requester_name: str | None = Field(default=None, max_length=200)
    requester_document: str | None = Field(default=None, max_length=40)
    request_payload: dict[str, Any] = Field(default_factory=dict)
    interaction_transcript: list[Any] = Field(default_factory=list)


class CertificateRequestUpdateRequest(BaseModel):
    certificate_type: str | None = Field(default=None, min_length=1, max_length=120)
    requester_name: str | None = Field(default=None, max_length=200)
    requester_document: str | None = Field(default=None, max_length=40)
    request_payload: dict[str, Any] | None = None


class BeginProcessingRequest(BaseModel):
    processed_by_user_id: str | None = None


class MarkCompletedRequest(BaseModel):
    document_path: str | None = Field(default=None, max_length=500)
    completion_reason: str | None = Field(default=None, max_length=500)


class MarkFailedRequest(BaseModel):
    error_message: str = Field(min_length=1, max_length=2000)


class AssignRequesterRequest(BaseModel):
    user_id: str = Field(min_length=1)


class IdentifyAndAssignRequest(BaseModel):
    channel_identifier: str = Field(min_length=1, max_length=32)
    identification_number: str = Field(min_length=1, max_length=40)


def success_envelope(data: Any, trace_id: str, message: str = "ok") -> dict[str, Any]:
    return {
        "success": True,
        "data": data,
        "message": message,
        "meta": {
            "trace_id": trace_id,
        },
    }


def error_envelope(
    *,
    code: str,
    message: str,
    error_class: str,
    retryable: bool,
    trace_id: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    error: dict[str, Any] = {
        "code": code,
        "message": message,
        "retryable": retryable,
        "class": error_class,
    }
    if details is not None:
        error["details"] = details
    return {
        "success": False,
        "error": error,
        "meta": {
            "trace_id": trace_id,
        },
    }
