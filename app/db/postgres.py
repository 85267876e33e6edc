from __future__ import annotations

import logging
import re
from collections.abc import Callable
from typing import Any

from app.errors import ConflictRetryableError

logger = logging.getLogger(__name__)

# serialization_failure, deadlock_detected, lock_not_available
RETRYABLE_SQLSTATES = frozenset({"40001", "40P01", "55P03"})
ISOLATION_LEVELS = frozenset({"READ COMMITTED", "REPEATABLE READ", "SERIALIZABLE"})


def _import_psycopg() -> Any:
    try:
        import psycopg  # type: ignore
    except ImportError as exc:
        raise RuntimeError("psycopg is required for PostgreSQL backends; install psycopg[binary]") from exc
    return psycopg


def validate_identifier(name: str) -> str:
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name):
        raise ValueError(f"invalid SQL identifier: {name}")
    return name


def is_retryable_db_error(exc: BaseException) -> bool:
    return getattr(exc, "sqlstate", None) in RETRYABLE_SQLSTATES


class PostgresTxRunner:
    """Run callback logic in one PostgreSQL transaction.

    Concurrency failures reported by the server (serialization failures,
    deadlocks, lock timeouts) are raised as ConflictRetryableError; the
    transaction is rolled back and the caller decides whether to retry.
    """

    def __init__(self, dsn: str) -> None:
        if not dsn.strip():
            raise ValueError("POSTGRES_DSN must not be empty")
        self._dsn = dsn.strip()

    def run_in_tx(
        self,
        *,
        fn: Callable[[Any], Any],
        isolation: str | None = None,
    ) -> Any:
        if isolation is not None and isolation not in ISOLATION_LEVELS:
            raise ValueError(f"unsupported isolation level: {isolation}")

        psycopg = _import_psycopg()
        try:
            with psycopg.connect(self._dsn) as conn:
                if isolation is not None:
                    with conn.cursor() as cur:
                        cur.execute(f"SET TRANSACTION ISOLATION LEVEL {isolation}")
                result = fn(conn)
                conn.commit()
                return result
        except Exception as exc:
            if is_retryable_db_error(exc):
                logger.warning("postgres_tx_conflict sqlstate=%s", getattr(exc, "sqlstate", ""))
                raise ConflictRetryableError() from exc
            raise
