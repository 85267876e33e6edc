#!/usr/bin/env python3
from __future__ import annotations

import argparse
import os
import time

import jwt


def main() -> int:
    parser = argparse.ArgumentParser(description="Issue an HS256 bearer token for local development")
    parser.add_argument("--sub", default="dev_operator", help="subject (operator user id)")
    parser.add_argument("--secret", default=os.getenv("JWT_SHARED_SECRET", ""))
    parser.add_argument("--issuer", default=os.getenv("JWT_ISSUER", ""))
    parser.add_argument("--audience", default=os.getenv("JWT_AUDIENCE", ""))
    parser.add_argument("--ttl-seconds", type=int, default=3600)
    args = parser.parse_args()

    if not args.secret:
        raise SystemExit("JWT_SHARED_SECRET is required (pass --secret or set env)")

    now = int(time.time())
    claims: dict[str, object] = {"sub": args.sub, "iat": now, "exp": now + max(1, args.ttl_seconds)}
    if args.issuer:
        claims["iss"] = args.issuer
    if args.audience:
        claims["aud"] = args.audience
    print(jwt.encode(claims, args.secret, algorithm="HS256"))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
