from __future__ import annotations

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from app.routes._deps import auth_subject_from_request, trace_id_from_request
from app.schemas import (
    AssignRequesterRequest,
    BeginProcessingRequest,
    CertificateRequestCreateRequest,
    CertificateRequestUpdateRequest,
    IdentifyAndAssignRequest,
    MarkCompletedRequest,
    MarkFailedRequest,
    success_envelope,
)
from app.store import store

router = APIRouter(prefix="/api/v1", tags=["certificate-requests"])


def _pagination(
    page: int | None,
    limit: int | None,
    order_by: str | None,
    order_direction: str | None,
) -> dict[str, object]:
    return {"page": page, "limit": limit, "order_by": order_by, "order_direction": order_direction}


@router.post("/certificate-requests")
def create_certificate_request(payload: CertificateRequestCreateRequest, request: Request):
    data = store.create_request(payload=payload.model_dump(mode="json"))
    return JSONResponse(
        status_code=201,
        content=success_envelope(data, trace_id_from_request(request), message="created"),
    )


@router.get("/certificate-requests")
def list_certificate_requests(
    request: Request,
    page: int | None = Query(default=None),
    limit: int | None = Query(default=None),
    order_by: str | None = Query(default=None),
    order_direction: str | None = Query(default=None),
    channel_identifier: str | None = Query(default=None),
    certificate_type: str | None = Query(default=None),
    status: str | None = Query(default=None),
    requester_user_id: str | None = Query(default=None),
    processed_by_user_id: str | None = Query(default=None),
    document_sent: bool | None = Query(default=None),
    date_from: str | None = Query(default=None),
    date_to: str | None = Query(default=None),
    search: str | None = Query(default=None),
):
    data = store.list_requests(
        filters={
            "channel_identifier": channel_identifier,
            "certificate_type": certificate_type,
            "status": status,
            "requester_user_id": requester_user_id,
            "processed_by_user_id": processed_by_user_id,
            "document_sent": document_sent,
            "date_from": date_from,
            "date_to": date_to,
            "search": search,
        },
        pagination=_pagination(page, limit, order_by, order_direction),
    )
    return success_envelope(data, trace_id_from_request(request))


@router.get("/certificate-requests/search")
def search_certificate_requests(
    request: Request,
    q: str = Query(default=""),
    page: int | None = Query(default=None),
    limit: int | None = Query(default=None),
    order_by: str | None = Query(default=None),
    order_direction: str | None = Query(default=None),
):
    data = store.search(term=q, pagination=_pagination(page, limit, order_by, order_direction))
    return success_envelope(data, trace_id_from_request(request))


@router.get("/certificate-requests/statistics")
def certificate_request_statistics(
    request: Request,
    date_from: str | None = Query(default=None),
    date_to: str | None = Query(default=None),
):
    data = store.get_statistics(date_from=date_from, date_to=date_to)
    return success_envelope(data, trace_id_from_request(request))


@router.get("/certificate-requests/pending")
def list_pending_certificate_requests(request: Request, limit: int | None = Query(default=None)):
    items = store.list_pending(limit=limit)
    return success_envelope({"items": items, "total": len(items)}, trace_id_from_request(request))


@router.get("/certificate-requests/channel/{channel_identifier}")
def list_channel_certificate_requests(channel_identifier: str, request: Request):
    items = store.list_requests_for_channel(channel_identifier=channel_identifier)
    return success_envelope({"items": items, "total": len(items)}, trace_id_from_request(request))


@router.post("/certificate-requests/identify-and-assign")
def identify_and_assign(payload: IdentifyAndAssignRequest, request: Request):
    data = store.identify_and_assign(
        channel_identifier=payload.channel_identifier,
        identification_number=payload.identification_number,
    )
    return success_envelope(data, trace_id_from_request(request))


@router.get("/certificate-requests/{request_id}")
def get_certificate_request(request_id: str, request: Request):
    data = store.get_request(request_id=request_id)
    return success_envelope(data, trace_id_from_request(request))


@router.put("/certificate-requests/{request_id}")
def update_certificate_request(request_id: str, payload: CertificateRequestUpdateRequest, request: Request):
    data = store.update_request(request_id=request_id, changes=payload.model_dump(exclude_unset=True))
    return success_envelope(data, trace_id_from_request(request))


@router.delete("/certificate-requests/{request_id}")
def delete_certificate_request(request_id: str, request: Request):
    data = store.delete_request(request_id=request_id)
    return success_envelope(data, trace_id_from_request(request))


@router.post("/certificate-requests/{request_id}/start")
def begin_processing(request_id: str, request: Request, payload: BeginProcessingRequest | None = None):
    operator_id = payload.processed_by_user_id if payload is not None else None
    if operator_id is None and auth_subject_from_request(request) != "anonymous":
        operator_id = auth_subject_from_request(request)
    data = store.begin_processing(request_id=request_id, processed_by_user_id=operator_id)
    return success_envelope(data, trace_id_from_request(request))


@router.post("/certificate-requests/{request_id}/complete")
def mark_completed(request_id: str, request: Request, payload: MarkCompletedRequest | None = None):
    payload = payload or MarkCompletedRequest()
    data = store.mark_completed(
        request_id=request_id,
        document_path=payload.document_path,
        completion_reason=payload.completion_reason,
    )
    return success_envelope(data, trace_id_from_request(request))


@router.post("/certificate-requests/{request_id}/fail")
def mark_failed(request_id: str, payload: MarkFailedRequest, request: Request):
    data = store.mark_failed(request_id=request_id, error_message=payload.error_message)
    return success_envelope(data, trace_id_from_request(request))


@router.post("/certificate-requests/{request_id}/document-sent")
def mark_document_sent(request_id: str, request: Request):
    data = store.mark_document_sent(request_id=request_id)
    return success_envelope(data, trace_id_from_request(request))


@router.patch("/certificate-requests/{request_id}/requester")
def assign_requester(request_id: str, payload: AssignRequesterRequest, request: Request):
    data = store.assign_requester_user(request_id=request_id, user_id=payload.user_id)
    return success_envelope(data, trace_id_from_request(request))


@router.get("/users/{user_id}/certificate-requests")
def list_user_certificate_requests(user_id: str, request: Request):
    items = store.list_requests_for_user(user_id=user_id)
    return success_envelope({"items": items, "total": len(items)}, trace_id_from_request(request))
