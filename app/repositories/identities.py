from __future__ import annotations

from typing import Any

from app.db.postgres import PostgresTxRunner, validate_identifier


class InMemoryIdentitiesRepository:
    """Read side of the user directory, keyed by user_id."""

    def __init__(self, identities: dict[str, dict[str, Any]]) -> None:
        self._identities = identities

    def upsert(self, *, identity: dict[str, Any]) -> dict[str, Any]:
        item = dict(identity)
        self._identities[str(item["user_id"])] = item
        return dict(item)

    def find_by_identification_number(self, *, identification_number: str) -> dict[str, Any] | None:
        for row in self._identities.values():
            if row.get("identification_number") == identification_number:
                return dict(row)
        return None


class PostgresIdentitiesRepository:
    def __init__(
        self,
        *,
        tx_runner: PostgresTxRunner,
        users_table: str = "users",
        positions_table: str = "positions",
    ) -> None:
        self._tx_runner = tx_runner
        self._users_table = validate_identifier(users_table)
        self._positions_table = validate_identifier(positions_table)

    def find_by_identification_number(self, *, identification_number: str) -> dict[str, Any] | None:
        sql = f"""
            SELECT u.user_id, u.full_name, u.email, u.identification_number, p.position_id, p.name
            FROM {self._users_table} u
            LEFT JOIN {self._positions_table} p ON p.position_id = u.position_id
            WHERE u.identification_number = %s
            LIMIT 1
        """

        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(sql, (identification_number,))
                row = cur.fetchone()
            if row is None:
                return None
            position = {"position_id": row[4], "name": row[5]} if row[4] is not None else None
            return {
                "user_id": row[0],
                "full_name": row[1],
                "email": row[2],
                "identification_number": row[3],
                "position": position,
            }

        return self._tx_runner.run_in_tx(fn=_op)
