from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from app.db.postgres import PostgresTxRunner, validate_identifier
from app.identifiers import normalize_identification_number
from app.repositories import (
    InMemoryCertificateRequestsRepository,
    InMemoryIdentitiesRepository,
    PostgresCertificateRequestsRepository,
    PostgresIdentitiesRepository,
)
from app.runtime_profile import true_stack_required
from app.store_assignment import StoreAssignmentMixin
from app.store_lifecycle import StoreLifecycleMixin
from app.store_query import StoreQueryMixin

logger = logging.getLogger(__name__)


class InMemoryStore(StoreLifecycleMixin, StoreAssignmentMixin, StoreQueryMixin):
    def __init__(self) -> None:
        self.pending_queue_limit = self._env_int("CRS_PENDING_QUEUE_LIMIT", default=50, minimum=1)
        self.certificate_requests: dict[str, dict[str, Any]] = {}
        self.identities: dict[str, dict[str, Any]] = {}
        self._bind_repositories()

    @staticmethod
    def _env_int(name: str, *, default: int, minimum: int = 0) -> int:
        raw = os.environ.get(name, "").strip()
        if not raw:
            return default
        try:
            value = int(raw)
        except ValueError:
            return default
        return max(minimum, value)

    def _bind_repositories(self) -> None:
        self.requests_repository = InMemoryCertificateRequestsRepository(self.certificate_requests)
        self.identities_repository = InMemoryIdentitiesRepository(self.identities)

    def reset(self) -> None:
        self.certificate_requests.clear()
        self.identities.clear()
        self._bind_repositories()

    @staticmethod
    def _utcnow_iso() -> str:
        return datetime.now(UTC).isoformat()

    def seed_identity(
        self,
        *,
        user_id: str,
        full_name: str,
        identification_number: str,
        email: str | None = None,
        position: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Register an identity for lookups; the directory itself is owned elsewhere."""
        return self.identities_repository.upsert(
            identity={
                "user_id": user_id,
                "full_name": full_name,
                "email": email,
                "identification_number": normalize_identification_number(identification_number),
                "position": dict(position) if position else None,
            }
        )


class PostgresBackedStore(InMemoryStore):
    """Store whose repositories read and write PostgreSQL tables directly."""

    def __init__(
        self,
        *,
        dsn: str,
        requests_table: str = "certificate_requests",
        users_table: str = "users",
        positions_table: str = "positions",
    ) -> None:
        if not dsn.strip():
            raise ValueError("POSTGRES_DSN must be provided for postgres store backend")
        self._tx_runner = PostgresTxRunner(dsn.strip())
        self._requests_table = validate_identifier(requests_table.strip() or "certificate_requests")
        self._users_table = users_table.strip() or "users"
        self._positions_table = positions_table.strip() or "positions"
        super().__init__()

    def _bind_repositories(self) -> None:
        self.requests_repository = PostgresCertificateRequestsRepository(
            tx_runner=self._tx_runner,
            table_name=self._requests_table,
        )
        self.identities_repository = PostgresIdentitiesRepository(
            tx_runner=self._tx_runner,
            users_table=self._users_table,
            positions_table=self._positions_table,
        )

    def reset(self) -> None:
        sql = f"TRUNCATE TABLE {self._requests_table}"

        def _op(conn: Any) -> None:
            with conn.cursor() as cur:
                cur.execute(sql)

        self._tx_runner.run_in_tx(fn=_op)
        logger.warning("certificate_requests_truncated table=%s", self._requests_table)

    def seed_identity(self, **kwargs: Any) -> dict[str, Any]:
        raise RuntimeError("identities are read-only on the postgres backend")


def create_store_from_env(environ: Mapping[str, str] | None = None) -> InMemoryStore:
    env = os.environ if environ is None else environ
    backend = env.get("CRS_STORE_BACKEND", "memory").strip().lower()
    if true_stack_required(env) and backend != "postgres":
        raise RuntimeError("CRS_STORE_BACKEND must be postgres when CRS_REQUIRE_TRUESTACK=true")
    if backend == "postgres":
        dsn = env.get("POSTGRES_DSN", "").strip()
        if not dsn:
            raise ValueError("POSTGRES_DSN must be set when CRS_STORE_BACKEND=postgres")
        return PostgresBackedStore(
            dsn=dsn,
            requests_table=env.get("CRS_REQUESTS_TABLE", "certificate_requests"),
            users_table=env.get("CRS_USERS_TABLE", "users"),
            positions_table=env.get("CRS_POSITIONS_TABLE", "positions"),
        )
    if backend != "memory":
        raise ValueError(f"unsupported CRS_STORE_BACKEND: {backend}")
    return InMemoryStore()


store = create_store_from_env()
