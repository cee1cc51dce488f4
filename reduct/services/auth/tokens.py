from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from reduct.core.config import get_settings


@dataclass(frozen=True)
class AccessClaims:
    user_id: str
    email: str | None
    tenant_id: str | None
    platform_role: str | None


class InvalidTokenError(Exception):
    """Token signature, expiry or payload check failed."""


class MissingUserIdError(InvalidTokenError):
    """Token verified but carries no userId claim."""


def issue_access_token(
    *,
    user_id: str,
    email: str,
    tenant_id: str | None,
    platform_role: str | None,
    now: datetime | None = None,
) -> str:
    # Claim names stay camelCase for compatibility with existing clients.
    settings = get_settings()
    issued_at = now or datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "userId": user_id,
        "email": email,
        "tenantId": tenant_id,
        "platformRole": platform_role,
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + timedelta(hours=settings.jwt_ttl_hours)).timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> AccessClaims:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.PyJWTError as exc:
        raise InvalidTokenError(str(exc)) from exc
    user_id = payload.get("userId")
    if not user_id:
        raise MissingUserIdError("missing userId")
    return AccessClaims(
        user_id=str(user_id),
        email=payload.get("email"),
        tenant_id=payload.get("tenantId"),
        platform_role=payload.get("platformRole"),
    )


def token_expiry(token: str) -> datetime:
    # Read exp without re-verifying; callers only use it for session bookkeeping.
    payload = jwt.decode(token, options={"verify_signature": False})
    return datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
