from __future__ import annotations

import base64
import hashlib
import hmac
import json
import os
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from app.errors import ApiError


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def _split_csv(raw: str) -> list[str]:
    return [x.strip() for x in raw.split(",") if x.strip()]


def _b64url_decode(raw: str) -> bytes:
    padded = raw + "=" * ((4 - len(raw) % 4) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _unauthorized(message: str) -> ApiError:
    return ApiError(
        code="AUTH_UNAUTHORIZED",
        message=message,
        error_class="security_sensitive",
        retryable=False,
        http_status=401,
    )


def redact_sensitive(value: object) -> object:
    sensitive_keys = {"authorization", "token", "secret", "password", "access_token", "cookie"}
    if isinstance(value, dict):
        redacted: dict[str, object] = {}
        for key, item in value.items():
            if str(key).lower() in sensitive_keys:
                redacted[str(key)] = "***REDACTED***"
            else:
                redacted[str(key)] = redact_sensitive(item)
        return redacted
    if isinstance(value, list):
        return [redact_sensitive(x) for x in value]
    if isinstance(value, str) and len(value) >= 24 and "bearer " in value.lower():
        return "***REDACTED***"
    return value


@dataclass
class AuthContext:
    subject: str
    claims: dict[str, Any]


@dataclass
class JwtSecurityConfig:
    enabled: bool
    issuer: str
    audience: str
    shared_secret: str
    required_claims: list[str]
    log_redaction_enabled: bool

    @classmethod
    def from_env(cls) -> "JwtSecurityConfig":
        issuer = os.environ.get("JWT_ISSUER", "").strip()
        audience = os.environ.get("JWT_AUDIENCE", "").strip()
        shared_secret = os.environ.get("JWT_SHARED_SECRET", "").strip()
        return cls(
            enabled=bool(issuer or audience or shared_secret),
            issuer=issuer,
            audience=audience,
            shared_secret=shared_secret,
            required_claims=_split_csv(os.environ.get("JWT_REQUIRED_CLAIMS", "sub,exp")),
            log_redaction_enabled=_env_bool("SECURITY_LOG_REDACTION_ENABLED", True),
        )


def _parse_token_parts(token: str) -> tuple[dict[str, Any], dict[str, Any], str, str]:
    parts = token.split(".")
    if len(parts) != 3:
        raise _unauthorized("invalid token format")
    header_raw, payload_raw, signature_raw = parts
    try:
        header_obj = json.loads(_b64url_decode(header_raw))
        payload_obj = json.loads(_b64url_decode(payload_raw))
    except (json.JSONDecodeError, ValueError, TypeError):
        raise _unauthorized("invalid token payload") from None
    if not isinstance(header_obj, dict) or not isinstance(payload_obj, dict):
        raise _unauthorized("invalid token payload")
    return header_obj, payload_obj, f"{header_raw}.{payload_raw}", signature_raw


def parse_and_validate_bearer_token(*, authorization: str | None, cfg: JwtSecurityConfig) -> AuthContext:
    """Validate an HS256 bearer token against the configured secret, issuer and audience."""
    if not authorization:
        raise _unauthorized("missing Authorization bearer token")
    prefix = "Bearer "
    if not authorization.startswith(prefix):
        raise _unauthorized("invalid Authorization header")
    token = authorization[len(prefix) :].strip()
    if not token:
        raise _unauthorized("empty bearer token")

    header_obj, payload_obj, signing_input, signature_raw = _parse_token_parts(token)
    if str(header_obj.get("alg", "")).upper() != "HS256":
        raise _unauthorized("unsupported jwt algorithm")
    if not cfg.shared_secret:
        raise _unauthorized("jwt shared secret not configured")
    expected = _b64url_encode(
        hmac.new(
            cfg.shared_secret.encode("utf-8"),
            signing_input.encode("ascii"),
            hashlib.sha256,
        ).digest()
    )
    if not hmac.compare_digest(expected, signature_raw):
        raise _unauthorized("invalid token signature")

    now_ts = int(datetime.now(UTC).timestamp())
    exp = _as_int(payload_obj.get("exp"))
    if exp is None or exp <= now_ts:
        raise _unauthorized("token expired")
    nbf = _as_int(payload_obj.get("nbf"))
    if nbf is not None and nbf > now_ts:
        raise _unauthorized("token not yet valid")

    if cfg.issuer and str(payload_obj.get("iss", "")) != cfg.issuer:
        raise _unauthorized("jwt issuer mismatch")
    if cfg.audience:
        aud = payload_obj.get("aud")
        if isinstance(aud, list):
            aud_ok = cfg.audience in {str(x) for x in aud}
        else:
            aud_ok = str(aud or "") == cfg.audience
        if not aud_ok:
            raise _unauthorized("jwt audience mismatch")

    for claim in cfg.required_claims:
        if claim not in payload_obj:
            raise _unauthorized(f"missing required claim: {claim}")

    subject = str(payload_obj.get("sub") or "").strip()
    if not subject:
        raise _unauthorized("missing subject claim")
    return AuthContext(subject=subject, claims=payload_obj)
