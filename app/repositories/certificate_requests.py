from __future__ import annotations

import json
import threading
from collections.abc import Callable
from datetime import datetime
from typing import Any

from app.db.postgres import PostgresTxRunner, validate_identifier
from app.request_states import ALL_STATUSES, PENDING

Mutation = Callable[[dict[str, Any]], dict[str, Any]]

COLUMNS: tuple[str, ...] = (
    "request_id",
    "channel_identifier",
    "certificate_type",
    "requester_name",
    "requester_document",
    "requester_user_id",
    "processed_by_user_id",
    "request_payload",
    "interaction_transcript",
    "status",
    "document_path",
    "completion_reason",
    "error_message",
    "document_sent_at",
    "processing_started_at",
    "processing_ended_at",
    "created_at",
    "updated_at",
)
JSON_COLUMNS = frozenset({"request_payload", "interaction_transcript"})
TIMESTAMP_COLUMNS = frozenset(
    {"document_sent_at", "processing_started_at", "processing_ended_at", "created_at", "updated_at"}
)
SEARCH_COLUMNS: tuple[str, ...] = (
    "channel_identifier",
    "requester_name",
    "requester_document",
    "certificate_type",
    "completion_reason",
)
IMMUTABLE_COLUMNS = frozenset({"request_id", "created_at"})


def _parse_ts(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _sort_key(order_by: str) -> Callable[[dict[str, Any]], tuple[Any, ...]]:
    def _key(row: dict[str, Any]) -> tuple[Any, ...]:
        value = row.get(order_by)
        if order_by in TIMESTAMP_COLUMNS:
            value = _parse_ts(value)
        elif isinstance(value, str):
            value = value.lower()
        # nulls sort last ascending and first descending, as in PostgreSQL
        return (value is None, value if value is not None else "", row.get("request_id", ""))

    return _key


def _matches(row: dict[str, Any], filters: dict[str, Any]) -> bool:
    for field in ("channel_identifier", "certificate_type", "status", "requester_user_id", "processed_by_user_id"):
        expected = filters.get(field)
        if expected is not None and row.get(field) != expected:
            return False
    document_sent = filters.get("document_sent")
    if document_sent is not None and (row.get("document_sent_at") is not None) != document_sent:
        return False
    created_at = _parse_ts(row.get("created_at"))
    date_from = _parse_ts(filters.get("date_from"))
    if date_from is not None and (created_at is None or created_at < date_from):
        return False
    date_to = _parse_ts(filters.get("date_to"))
    if date_to is not None and (created_at is None or created_at > date_to):
        return False
    term = str(filters.get("search") or "").lower()
    if term:
        haystack = [str(row.get(col) or "").lower() for col in SEARCH_COLUMNS]
        if not any(term in value for value in haystack):
            return False
    return True


class InMemoryCertificateRequestsRepository:
    """Dict-backed repository; one re-entrant lock makes every write linearizable."""

    def __init__(self, requests: dict[str, dict[str, Any]]) -> None:
        self._requests = requests
        self._lock = threading.RLock()

    def create(self, *, request: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            self._requests[str(request["request_id"])] = dict(request)
        return dict(request)

    def get(self, *, request_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._requests.get(request_id)
            return dict(row) if row is not None else None

    def list_by_channel(self, *, channel_identifier: str) -> list[dict[str, Any]]:
        with self._lock:
            rows = [dict(x) for x in self._requests.values() if x.get("channel_identifier") == channel_identifier]
        return sorted(rows, key=_sort_key("created_at"), reverse=True)

    def list_by_requester_user(self, *, user_id: str) -> list[dict[str, Any]]:
        with self._lock:
            rows = [dict(x) for x in self._requests.values() if x.get("requester_user_id") == user_id]
        return sorted(rows, key=_sort_key("created_at"), reverse=True)

    def mutate(self, *, request_id: str, fn: Mutation) -> dict[str, Any] | None:
        with self._lock:
            row = self._requests.get(request_id)
            if row is None:
                return None
            changes = fn(dict(row))
            if not changes:
                return dict(row)
            updated = {**row, **{k: v for k, v in changes.items() if k not in IMMUTABLE_COLUMNS}}
            self._requests[request_id] = updated
            return dict(updated)

    def assign_requester_by_channel(
        self,
        *,
        channel_identifier: str,
        user_id: str,
        updated_at: str,
    ) -> list[dict[str, Any]]:
        with self._lock:
            assigned = []
            for request_id, row in self._requests.items():
                if row.get("channel_identifier") != channel_identifier:
                    continue
                updated = {**row, "requester_user_id": user_id, "updated_at": updated_at}
                self._requests[request_id] = updated
                assigned.append(dict(updated))
        return sorted(assigned, key=_sort_key("created_at"), reverse=True)

    def delete(self, *, request_id: str) -> bool:
        with self._lock:
            if request_id not in self._requests:
                return False
            del self._requests[request_id]
            return True

    def query(
        self,
        *,
        filters: dict[str, Any],
        pagination: dict[str, Any],
    ) -> tuple[list[dict[str, Any]], int]:
        with self._lock:
            rows = [dict(x) for x in self._requests.values() if _matches(x, filters)]
        rows.sort(key=_sort_key(pagination["order_by"]), reverse=pagination["order_direction"] == "desc")
        offset = (pagination["page"] - 1) * pagination["limit"]
        return rows[offset : offset + pagination["limit"]], len(rows)

    def list_pending(self, *, limit: int) -> list[dict[str, Any]]:
        with self._lock:
            rows = [dict(x) for x in self._requests.values() if x.get("status") == PENDING]
        rows.sort(key=_sort_key("created_at"))
        return rows[:limit]

    def count_by(
        self,
        *,
        date_from: str | None = None,
        date_to: str | None = None,
        today_start: str | None = None,
    ) -> dict[str, Any]:
        filters = {"date_from": date_from, "date_to": date_to}
        with self._lock:
            rows = [dict(x) for x in self._requests.values() if _matches(x, filters)]
        counts: dict[str, Any] = {status.lower(): 0 for status in ALL_STATUSES}
        by_certificate_type: dict[str, int] = {}
        for row in rows:
            key = str(row.get("status", "")).lower()
            if key in counts:
                counts[key] += 1
            certificate_type = str(row.get("certificate_type") or "")
            by_certificate_type[certificate_type] = by_certificate_type.get(certificate_type, 0) + 1
        counts["total"] = len(rows)
        counts["documents_generated"] = sum(1 for x in rows if x.get("document_path"))
        counts["documents_sent"] = sum(1 for x in rows if x.get("document_sent_at") is not None)
        counts["created_today"] = 0
        since = _parse_ts(today_start)
        if since is not None:
            for row in rows:
                created_at = _parse_ts(row.get("created_at"))
                if created_at is not None and created_at >= since:
                    counts["created_today"] += 1
        counts["by_certificate_type"] = dict(sorted(by_certificate_type.items()))
        return counts


def _row_to_record(row: tuple[Any, ...] | list[Any]) -> dict[str, Any]:
    record: dict[str, Any] = {}
    for column, value in zip(COLUMNS, row):
        if column in TIMESTAMP_COLUMNS and isinstance(value, datetime):
            value = value.isoformat()
        elif column == "request_payload":
            value = value if isinstance(value, dict) else {}
        elif column == "interaction_transcript":
            value = value if isinstance(value, list) else []
        record[column] = value
    return record


def _db_value(column: str, value: Any) -> Any:
    if column in JSON_COLUMNS:
        return json.dumps(value, ensure_ascii=True, sort_keys=True)
    return value


def _placeholder(column: str) -> str:
    return "%s::jsonb" if column in JSON_COLUMNS else "%s"


def _escape_like(term: str) -> str:
    # LIKE wildcards in a search term match themselves
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class PostgresCertificateRequestsRepository:
    """Certificate requests on PostgreSQL.

    Per-id mutations lock the row with SELECT ... FOR UPDATE for the whole
    read-check-write; bulk assignment is one UPDATE under SERIALIZABLE.
    """

    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "certificate_requests") -> None:
        self._tx_runner = tx_runner
        self._table_name = validate_identifier(table_name)
        self._select_columns = ", ".join(COLUMNS)

    def create(self, *, request: dict[str, Any]) -> dict[str, Any]:
        payload = {column: request.get(column) for column in COLUMNS}
        placeholders = ", ".join(_placeholder(column) for column in COLUMNS)
        sql = f"INSERT INTO {self._table_name} ({self._select_columns}) VALUES ({placeholders})"

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(_db_value(column, payload[column]) for column in COLUMNS))
            return payload

        return self._tx_runner.run_in_tx(fn=_op)

    def get(self, *, request_id: str) -> dict[str, Any] | None:
        sql = f"""
            SELECT {self._select_columns}
            FROM {self._table_name}
            WHERE request_id = %s
            LIMIT 1
        """

        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(sql, (request_id,))
                row = cur.fetchone()
            return _row_to_record(row) if row is not None else None

        return self._tx_runner.run_in_tx(fn=_op)

    def _list_where(self, column: str, value: str) -> list[dict[str, Any]]:
        sql = f"""
            SELECT {self._select_columns}
            FROM {self._table_name}
            WHERE {column} = %s
            ORDER BY created_at DESC, request_id DESC
        """

        def _op(conn: Any) -> list[dict[str, Any]]:
            with conn.cursor() as cur:
                cur.execute(sql, (value,))
                rows = cur.fetchall() or []
            return [_row_to_record(row) for row in rows]

        return self._tx_runner.run_in_tx(fn=_op)

    def list_by_channel(self, *, channel_identifier: str) -> list[dict[str, Any]]:
        return self._list_where("channel_identifier", channel_identifier)

    def list_by_requester_user(self, *, user_id: str) -> list[dict[str, Any]]:
        return self._list_where("requester_user_id", user_id)

    def mutate(self, *, request_id: str, fn: Mutation) -> dict[str, Any] | None:
        select_sql = f"""
            SELECT {self._select_columns}
            FROM {self._table_name}
            WHERE request_id = %s
            FOR UPDATE
        """

        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(select_sql, (request_id,))
                row = cur.fetchone()
            if row is None:
                return None
            current = _row_to_record(row)
            changes = {k: v for k, v in fn(dict(current)).items() if k not in IMMUTABLE_COLUMNS}
            if not changes:
                return current
            unknown = set(changes) - set(COLUMNS)
            if unknown:
                raise ValueError(f"unknown certificate request columns: {sorted(unknown)}")
            assignments = ", ".join(f"{column} = {_placeholder(column)}" for column in changes)
            params = [_db_value(column, value) for column, value in changes.items()]
            with conn.cursor() as cur:
                cur.execute(
                    f"UPDATE {self._table_name} SET {assignments} WHERE request_id = %s",
                    (*params, request_id),
                )
            return {**current, **changes}

        return self._tx_runner.run_in_tx(fn=_op)

    def assign_requester_by_channel(
        self,
        *,
        channel_identifier: str,
        user_id: str,
        updated_at: str,
    ) -> list[dict[str, Any]]:
        sql = f"""
            UPDATE {self._table_name}
            SET requester_user_id = %s, updated_at = %s
            WHERE channel_identifier = %s
            RETURNING {self._select_columns}
        """

        def _op(conn: Any) -> list[dict[str, Any]]:
            with conn.cursor() as cur:
                cur.execute(sql, (user_id, updated_at, channel_identifier))
                rows = cur.fetchall() or []
            records = [_row_to_record(row) for row in rows]
            return sorted(records, key=_sort_key("created_at"), reverse=True)

        return self._tx_runner.run_in_tx(fn=_op, isolation="SERIALIZABLE")

    def delete(self, *, request_id: str) -> bool:
        sql = f"DELETE FROM {self._table_name} WHERE request_id = %s"

        def _op(conn: Any) -> bool:
            with conn.cursor() as cur:
                cur.execute(sql, (request_id,))
                return cur.rowcount > 0

        return self._tx_runner.run_in_tx(fn=_op)

    @staticmethod
    def _where_clause(filters: dict[str, Any]) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        for field in ("channel_identifier", "certificate_type", "status", "requester_user_id", "processed_by_user_id"):
            if filters.get(field) is not None:
                clauses.append(f"{field} = %s")
                params.append(filters[field])
        if filters.get("document_sent") is not None:
            clauses.append("document_sent_at IS NOT NULL" if filters["document_sent"] else "document_sent_at IS NULL")
        if filters.get("date_from") is not None:
            clauses.append("created_at >= %s")
            params.append(filters["date_from"])
        if filters.get("date_to") is not None:
            clauses.append("created_at <= %s")
            params.append(filters["date_to"])
        term = str(filters.get("search") or "")
        if term:
            clauses.append("(" + " OR ".join(f"{col} ILIKE %s ESCAPE '\\'" for col in SEARCH_COLUMNS) + ")")
            params.extend([f"%{_escape_like(term)}%"] * len(SEARCH_COLUMNS))
        if not clauses:
            return "", params
        return "WHERE " + " AND ".join(clauses), params

    def query(
        self,
        *,
        filters: dict[str, Any],
        pagination: dict[str, Any],
    ) -> tuple[list[dict[str, Any]], int]:
        where, params = self._where_clause(filters)
        order_by = validate_identifier(pagination["order_by"])
        direction = "ASC" if pagination["order_direction"] == "asc" else "DESC"
        offset = (pagination["page"] - 1) * pagination["limit"]
        count_sql = f"SELECT COUNT(*) FROM {self._table_name} {where}"
        page_sql = f"""
            SELECT {self._select_columns}
            FROM {self._table_name}
            {where}
            ORDER BY {order_by} {direction}, request_id {direction}
            LIMIT %s OFFSET %s
        """

        def _op(conn: Any) -> tuple[list[dict[str, Any]], int]:
            with conn.cursor() as cur:
                cur.execute(count_sql, tuple(params))
                total_row = cur.fetchone()
                cur.execute(page_sql, (*params, pagination["limit"], offset))
                rows = cur.fetchall() or []
            total = int(total_row[0]) if total_row else 0
            return [_row_to_record(row) for row in rows], total

        return self._tx_runner.run_in_tx(fn=_op, isolation="REPEATABLE READ")

    def list_pending(self, *, limit: int) -> list[dict[str, Any]]:
        sql = f"""
            SELECT {self._select_columns}
            FROM {self._table_name}
            WHERE status = 'PENDING'
            ORDER BY created_at ASC, request_id ASC
            LIMIT %s
        """

        def _op(conn: Any) -> list[dict[str, Any]]:
            with conn.cursor() as cur:
                cur.execute(sql, (limit,))
                rows = cur.fetchall() or []
            return [_row_to_record(row) for row in rows]

        return self._tx_runner.run_in_tx(fn=_op)

    def count_by(
        self,
        *,
        date_from: str | None = None,
        date_to: str | None = None,
        today_start: str | None = None,
    ) -> dict[str, Any]:
        where, params = self._where_clause({"date_from": date_from, "date_to": date_to})
        totals_sql = f"""
            SELECT
                COUNT(*),
                COUNT(*) FILTER (WHERE status = 'PENDING'),
                COUNT(*) FILTER (WHERE status = 'IN_PROGRESS'),
                COUNT(*) FILTER (WHERE status = 'COMPLETED'),
                COUNT(*) FILTER (WHERE status = 'FAILED'),
                COUNT(*) FILTER (WHERE document_path IS NOT NULL AND document_path <> ''),
                COUNT(*) FILTER (WHERE document_sent_at IS NOT NULL),
                COUNT(*) FILTER (WHERE created_at >= %s)
            FROM {self._table_name}
            {where}
        """
        types_sql = f"""
            SELECT certificate_type, COUNT(*)
            FROM {self._table_name}
            {where}
            GROUP BY certificate_type
            ORDER BY certificate_type
        """

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(totals_sql, (today_start, *params))
                row = cur.fetchone()
                cur.execute(types_sql, tuple(params))
                type_rows = cur.fetchall() or []
            values = [int(x or 0) for x in (row or (0,) * 8)]
            return {
                "total": values[0],
                "pending": values[1],
                "in_progress": values[2],
                "completed": values[3],
                "failed": values[4],
                "documents_generated": values[5],
                "documents_sent": values[6],
                "created_today": values[7],
                "by_certificate_type": {str(name): int(count) for name, count in type_rows},
            }

        return self._tx_runner.run_in_tx(fn=_op, isolation="REPEATABLE READ")
