from __future__ import annotations

import math
from datetime import UTC, datetime, timedelta
from typing import Any

from app.errors import InvalidArgumentError
from app.identifiers import normalize_channel_identifier
from app.request_states import ALL_STATUSES

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100
DEFAULT_ORDER_BY = "created_at"
DEFAULT_ORDER_DIRECTION = "desc"
SORTABLE_FIELDS = frozenset(
    {
        "created_at",
        "updated_at",
        "channel_identifier",
        "certificate_type",
        "status",
        "requester_name",
        "processing_started_at",
        "processing_ended_at",
    }
)


def _coerce_int(value: Any, *, default: int, name: str) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidArgumentError(f"{name} must be an integer") from exc


def normalize_pagination(raw: dict[str, Any] | None = None) -> dict[str, Any]:
    raw = raw or {}
    page = _coerce_int(raw.get("page"), default=DEFAULT_PAGE, name="page")
    limit = _coerce_int(raw.get("limit"), default=DEFAULT_LIMIT, name="limit")
    if page < 1:
        page = DEFAULT_PAGE
    if limit < 1:
        limit = DEFAULT_LIMIT
    limit = min(limit, MAX_LIMIT)

    order_by = str(raw.get("order_by") or DEFAULT_ORDER_BY).strip()
    if order_by not in SORTABLE_FIELDS:
        raise InvalidArgumentError(f"order_by must be one of: {', '.join(sorted(SORTABLE_FIELDS))}")
    order_direction = str(raw.get("order_direction") or DEFAULT_ORDER_DIRECTION).strip().lower()
    if order_direction not in {"asc", "desc"}:
        raise InvalidArgumentError("order_direction must be asc or desc")
    return {"page": page, "limit": limit, "order_by": order_by, "order_direction": order_direction}


def _normalize_bound(value: Any, *, name: str, end_of_day: bool = False) -> str | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise InvalidArgumentError(f"{name} must be an ISO-8601 date or timestamp") from exc
        # a bare date as upper bound covers the whole day
        if end_of_day and len(text) == 10:
            parsed = parsed + timedelta(days=1) - timedelta(microseconds=1)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC).isoformat()


def _paged(items: list[dict[str, Any]], total: int, pagination: dict[str, Any]) -> dict[str, Any]:
    return {
        "items": items,
        "total": total,
        "page": pagination["page"],
        "limit": pagination["limit"],
        "total_pages": math.ceil(total / pagination["limit"]) if total else 0,
    }


class StoreQueryMixin:
    def search(self, *, term: str | None, pagination: dict[str, Any] | None = None) -> dict[str, Any]:
        text = str(term or "").strip()
        if not text:
            raise InvalidArgumentError("search term is required")
        page = normalize_pagination(pagination)
        items, total = self.requests_repository.query(filters={"search": text}, pagination=page)
        return _paged(items, total, page)

    def list_requests(
        self,
        *,
        filters: dict[str, Any] | None = None,
        pagination: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        filters = filters or {}
        normalized: dict[str, Any] = {}
        if filters.get("channel_identifier"):
            normalized["channel_identifier"] = normalize_channel_identifier(filters["channel_identifier"])
        for field in ("certificate_type", "requester_user_id", "processed_by_user_id"):
            value = str(filters.get(field) or "").strip()
            if value:
                normalized[field] = value
        status = str(filters.get("status") or "").strip().upper()
        if status:
            if status not in ALL_STATUSES:
                raise InvalidArgumentError(f"status must be one of: {', '.join(sorted(ALL_STATUSES))}")
            normalized["status"] = status
        if filters.get("document_sent") is not None:
            normalized["document_sent"] = bool(filters["document_sent"])
        normalized["date_from"] = _normalize_bound(filters.get("date_from"), name="date_from")
        normalized["date_to"] = _normalize_bound(filters.get("date_to"), name="date_to", end_of_day=True)
        term = str(filters.get("search") or "").strip()
        if term:
            normalized["search"] = term

        page = normalize_pagination(pagination)
        items, total = self.requests_repository.query(filters=normalized, pagination=page)
        return _paged(items, total, page)

    def get_statistics(self, *, date_from: Any = None, date_to: Any = None) -> dict[str, Any]:
        # "today" is the current UTC calendar day
        now = datetime.fromisoformat(self._utcnow_iso()).astimezone(UTC)
        today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return self.requests_repository.count_by(
            date_from=_normalize_bound(date_from, name="date_from"),
            date_to=_normalize_bound(date_to, name="date_to", end_of_day=True),
            today_start=today_start.isoformat(),
        )

    def list_pending(self, *, limit: int | None = None) -> list[dict[str, Any]]:
        if limit is None:
            limit = self.pending_queue_limit
        if limit < 1:
            raise InvalidArgumentError("limit must be >= 1")
        return self.requests_repository.list_pending(limit=min(limit, MAX_LIMIT))
