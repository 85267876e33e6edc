#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.db.postgres import PostgresTxRunner
from app.db.schema import PostgresSchemaManager


def main() -> int:
    parser = argparse.ArgumentParser(description="Create the certificate request tables on PostgreSQL")
    parser.add_argument("--dsn", default=os.getenv("POSTGRES_DSN", ""), help="PostgreSQL DSN")
    parser.add_argument("--requests-table", default=os.getenv("CRS_REQUESTS_TABLE", "certificate_requests"))
    parser.add_argument("--users-table", default=os.getenv("CRS_USERS_TABLE", "users"))
    parser.add_argument("--positions-table", default=os.getenv("CRS_POSITIONS_TABLE", "positions"))
    parser.add_argument(
        "--skip-identity-tables",
        action="store_true",
        help="only create the request table; users/positions are owned by another service",
    )
    parser.add_argument("--dry-run", action="store_true", help="print the DDL without executing it")
    args = parser.parse_args()

    dsn = str(args.dsn or "").strip()
    if not dsn and not args.dry_run:
        raise SystemExit("POSTGRES_DSN is required (pass --dsn or set env)")

    manager = PostgresSchemaManager(
        PostgresTxRunner(dsn or "postgresql://dry-run"),
        requests_table=args.requests_table,
        users_table=args.users_table,
        positions_table=args.positions_table,
        include_identity_tables=not args.skip_identity_tables,
    )
    statements = manager.statements() if args.dry_run else manager.apply()
    print(
        json.dumps(
            {"applied": not args.dry_run, "statements": [" ".join(x.split()) for x in statements]},
            ensure_ascii=True,
            indent=2,
        )
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
