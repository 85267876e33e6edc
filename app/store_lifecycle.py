from __future__ import annotations

import logging
import uuid
from typing import Any

from app.errors import InvalidArgumentError, InvalidTransitionError, request_not_found
from app.identifiers import mask_channel_identifier, normalize_channel_identifier
from app.repositories.certificate_requests import Mutation
from app.request_states import (
    COMPLETED,
    FAILED,
    IN_PROGRESS,
    PENDING,
    can_begin_processing,
    can_complete,
    can_fail,
    is_terminal,
)

logger = logging.getLogger(__name__)

DEFAULT_COMPLETION_REASON = "Processed successfully"
UPDATABLE_FIELDS: tuple[str, ...] = ("requester_name", "requester_document", "certificate_type")


def _optional_text(value: Any) -> str | None:
    text = str(value).strip() if value is not None else ""
    return text or None


class StoreLifecycleMixin:
    def create_request(self, *, payload: dict[str, Any]) -> dict[str, Any]:
        channel_identifier = normalize_channel_identifier(payload.get("channel_identifier"))
        certificate_type = str(payload.get("certificate_type") or "").strip()
        if not certificate_type:
            raise InvalidArgumentError("certificate_type is required")
        request_payload = payload.get("request_payload") or {}
        if not isinstance(request_payload, dict):
            raise InvalidArgumentError("request_payload must be an object")
        transcript = payload.get("interaction_transcript") or []
        if not isinstance(transcript, list):
            raise InvalidArgumentError("interaction_transcript must be a list")

        now = self._utcnow_iso()
        request = {
            "request_id": f"creq_{uuid.uuid4().hex[:12]}",
            "channel_identifier": channel_identifier,
            "certificate_type": certificate_type,
            "requester_name": _optional_text(payload.get("requester_name")),
            "requester_document": _optional_text(payload.get("requester_document")),
            "requester_user_id": None,
            "processed_by_user_id": None,
            "request_payload": dict(request_payload),
            "interaction_transcript": list(transcript),
            "status": PENDING,
            "document_path": None,
            "completion_reason": None,
            "error_message": None,
            "document_sent_at": None,
            "processing_started_at": None,
            "processing_ended_at": None,
            "created_at": now,
            "updated_at": now,
        }
        saved = self.requests_repository.create(request=request)
        logger.info(
            "certificate_request_created request_id=%s channel=%s certificate_type=%s",
            saved["request_id"],
            mask_channel_identifier(channel_identifier),
            certificate_type,
        )
        return saved

    def get_request(self, *, request_id: str) -> dict[str, Any]:
        request = self.requests_repository.get(request_id=request_id)
        if request is None:
            raise request_not_found(request_id)
        return request

    def list_requests_for_channel(self, *, channel_identifier: str) -> list[dict[str, Any]]:
        return self.requests_repository.list_by_channel(
            channel_identifier=normalize_channel_identifier(channel_identifier),
        )

    def _apply_transition(self, *, request_id: str, event: str, fn: Mutation) -> dict[str, Any]:
        try:
            updated = self.requests_repository.mutate(request_id=request_id, fn=fn)
        except InvalidTransitionError as exc:
            logger.warning("certificate_request_transition_rejected request_id=%s event=%s reason=%s", request_id, event, exc.message)
            raise
        if updated is None:
            raise request_not_found(request_id)
        logger.info("certificate_request_%s request_id=%s status=%s", event, request_id, updated["status"])
        return updated

    def begin_processing(self, *, request_id: str, processed_by_user_id: str | None = None) -> dict[str, Any]:
        now = self._utcnow_iso()
        operator_id = _optional_text(processed_by_user_id)

        def _begin(current: dict[str, Any]) -> dict[str, Any]:
            status = current["status"]
            if not can_begin_processing(status):
                raise InvalidTransitionError(f"invalid transition: {status} -> {IN_PROGRESS}")
            changes: dict[str, Any] = {
                "status": IN_PROGRESS,
                "processing_started_at": now,
                "updated_at": now,
            }
            if operator_id is not None:
                changes["processed_by_user_id"] = operator_id
            return changes

        return self._apply_transition(request_id=request_id, event="processing_started", fn=_begin)

    def mark_completed(
        self,
        *,
        request_id: str,
        document_path: str | None = None,
        completion_reason: str | None = None,
    ) -> dict[str, Any]:
        now = self._utcnow_iso()

        def _complete(current: dict[str, Any]) -> dict[str, Any]:
            status = current["status"]
            if status == COMPLETED:
                raise InvalidTransitionError("certificate request is already completed")
            if not can_complete(status):
                raise InvalidTransitionError(f"invalid transition: {status} -> {COMPLETED}")
            return {
                "status": COMPLETED,
                "document_path": _optional_text(document_path),
                "completion_reason": _optional_text(completion_reason) or DEFAULT_COMPLETION_REASON,
                "processing_ended_at": now,
                "updated_at": now,
            }

        return self._apply_transition(request_id=request_id, event="completed", fn=_complete)

    def mark_failed(self, *, request_id: str, error_message: str) -> dict[str, Any]:
        message = _optional_text(error_message)
        if message is None:
            raise InvalidArgumentError("error_message is required")
        now = self._utcnow_iso()

        def _fail(current: dict[str, Any]) -> dict[str, Any]:
            status = current["status"]
            if status == COMPLETED:
                raise InvalidTransitionError("cannot fail a certificate request that is already completed")
            if not can_fail(status):
                raise InvalidTransitionError(f"invalid transition: {status} -> {FAILED}")
            return {
                "status": FAILED,
                "error_message": message,
                "processing_ended_at": now,
                "updated_at": now,
            }

        return self._apply_transition(request_id=request_id, event="failed", fn=_fail)

    def mark_document_sent(self, *, request_id: str) -> dict[str, Any]:
        now = self._utcnow_iso()

        def _sent(current: dict[str, Any]) -> dict[str, Any]:
            if current.get("document_sent_at") is not None:
                return {}
            return {"document_sent_at": now, "updated_at": now}

        return self._apply_transition(request_id=request_id, event="document_sent", fn=_sent)

    def update_request(self, *, request_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        if "interaction_transcript" in changes:
            raise InvalidArgumentError("interaction_transcript cannot be modified after creation")
        if "certificate_type" in changes and not _optional_text(changes["certificate_type"]):
            raise InvalidArgumentError("certificate_type must not be empty")
        payload_patch = changes.get("request_payload")
        if payload_patch is not None and not isinstance(payload_patch, dict):
            raise InvalidArgumentError("request_payload must be an object")
        now = self._utcnow_iso()

        def _update(current: dict[str, Any]) -> dict[str, Any]:
            if is_terminal(current["status"]):
                raise InvalidTransitionError(f"cannot update a certificate request in status {current['status']}")
            updates: dict[str, Any] = {}
            for field in UPDATABLE_FIELDS:
                if field in changes:
                    updates[field] = _optional_text(changes[field])
            if payload_patch:
                updates["request_payload"] = {**(current.get("request_payload") or {}), **payload_patch}
            if updates:
                updates["updated_at"] = now
            return updates

        return self._apply_transition(request_id=request_id, event="updated", fn=_update)

    def delete_request(self, *, request_id: str) -> dict[str, Any]:
        if not self.requests_repository.delete(request_id=request_id):
            raise request_not_found(request_id)
        logger.info("certificate_request_deleted request_id=%s", request_id)
        return {"request_id": request_id, "deleted": True}
