from __future__ import annotations

from typing import Any

from app.db.postgres import PostgresTxRunner, validate_identifier


class PostgresSchemaManager:
    """Create the certificate request table and the identity tables it reads."""

    def __init__(
        self,
        tx_runner: PostgresTxRunner,
        *,
        requests_table: str = "certificate_requests",
        users_table: str = "users",
        positions_table: str = "positions",
        include_identity_tables: bool = True,
    ) -> None:
        self._tx_runner = tx_runner
        self._requests_table = validate_identifier(requests_table)
        self._users_table = validate_identifier(users_table)
        self._positions_table = validate_identifier(positions_table)
        self._include_identity_tables = include_identity_tables

    def statements(self) -> list[str]:
        ddl: list[str] = []
        if self._include_identity_tables:
            ddl.append(
                f"""
                CREATE TABLE IF NOT EXISTS {self._positions_table} (
                  position_id TEXT PRIMARY KEY,
                  name TEXT NOT NULL
                )
                """
            )
            ddl.append(
                f"""
                CREATE TABLE IF NOT EXISTS {self._users_table} (
                  user_id TEXT PRIMARY KEY,
                  full_name TEXT NOT NULL,
                  email TEXT,
                  identification_number TEXT NOT NULL UNIQUE,
                  position_id TEXT REFERENCES {self._positions_table} (position_id)
                )
                """
            )
        # requester_user_id is a weak reference: deleting a user leaves requests untouched
        ddl.append(
            f"""
            CREATE TABLE IF NOT EXISTS {self._requests_table} (
              request_id TEXT PRIMARY KEY,
              channel_identifier TEXT NOT NULL,
              certificate_type TEXT NOT NULL,
              requester_name TEXT,
              requester_document TEXT,
              requester_user_id TEXT,
              processed_by_user_id TEXT,
              request_payload JSONB NOT NULL DEFAULT '{{}}'::jsonb,
              interaction_transcript JSONB NOT NULL DEFAULT '[]'::jsonb,
              status TEXT NOT NULL CHECK (status IN ('PENDING', 'IN_PROGRESS', 'COMPLETED', 'FAILED')),
              document_path TEXT,
              completion_reason TEXT,
              error_message TEXT,
              document_sent_at TIMESTAMPTZ,
              processing_started_at TIMESTAMPTZ,
              processing_ended_at TIMESTAMPTZ,
              created_at TIMESTAMPTZ NOT NULL,
              updated_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        for column in ("channel_identifier", "requester_user_id", "status", "created_at"):
            ddl.append(
                f"CREATE INDEX IF NOT EXISTS idx_{self._requests_table}_{column} "
                f"ON {self._requests_table} ({column})"
            )
        return ddl

    def apply(self) -> list[str]:
        ddl = self.statements()

        def _op(conn: Any) -> None:
            with conn.cursor() as cur:
                for statement in ddl:
                    cur.execute(statement)

        self._tx_runner.run_in_tx(fn=_op)
        return ddl
