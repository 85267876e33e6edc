from __future__ import annotations

import logging
from typing import Any

from app.errors import InvalidArgumentError, NotFoundError, request_not_found
from app.identifiers import (
    mask_channel_identifier,
    normalize_channel_identifier,
    normalize_identification_number,
)

logger = logging.getLogger(__name__)


class StoreAssignmentMixin:
    def assign_requester_user(self, *, request_id: str, user_id: str) -> dict[str, Any]:
        user_id = str(user_id or "").strip()
        if not user_id:
            raise InvalidArgumentError("user_id is required")
        now = self._utcnow_iso()
        updated = self.requests_repository.mutate(
            request_id=request_id,
            fn=lambda current: {"requester_user_id": user_id, "updated_at": now},
        )
        if updated is None:
            raise request_not_found(request_id)
        logger.info("certificate_request_requester_assigned request_id=%s user_id=%s", request_id, user_id)
        return updated

    def identify_and_assign(self, *, channel_identifier: str, identification_number: str) -> dict[str, Any]:
        """Attribute every request of a channel to the identity owning the identification number.

        The update is a single atomic repository call, so a concurrently created
        request for the same channel is either fully included or left untouched.
        Repeating the call yields the same set of request ids.
        """
        channel = normalize_channel_identifier(channel_identifier)
        number = normalize_identification_number(identification_number)
        identity = self.identities_repository.find_by_identification_number(identification_number=number)
        if identity is None:
            logger.warning(
                "identity_lookup_miss channel=%s",
                mask_channel_identifier(channel),
            )
            raise NotFoundError(
                code="IDENTITY_NOT_FOUND",
                message="no user matches the given identification number",
            )
        assigned = self.requests_repository.assign_requester_by_channel(
            channel_identifier=channel,
            user_id=str(identity["user_id"]),
            updated_at=self._utcnow_iso(),
        )
        logger.info(
            "certificate_requests_identified channel=%s user_id=%s total_assigned=%s",
            mask_channel_identifier(channel),
            identity["user_id"],
            len(assigned),
        )
        return {
            "user": identity,
            "assigned_requests": assigned,
            "total_assigned": len(assigned),
        }

    def list_requests_for_user(self, *, user_id: str) -> list[dict[str, Any]]:
        user_id = str(user_id or "").strip()
        if not user_id:
            raise InvalidArgumentError("user_id is required")
        return self.requests_repository.list_by_requester_user(user_id=user_id)
