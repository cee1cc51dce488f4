from __future__ import annotations

import asyncio
from dataclasses import dataclass
import json
import logging
import secrets
import time

from redis.asyncio import Redis

from reduct.core.config import get_settings


logger = logging.getLogger(__name__)

_KEY_PREFIX = "reduct:otp:"
# Keep expired entries around briefly so callers can tell "expired" from "missing".
_REDIS_GRACE_SECONDS = 600

_memory_store: dict[str, "OtpEntry"] = {}
_memory_lock = asyncio.Lock()
_redis_client: Redis | None = None


@dataclass(frozen=True)
class OtpEntry:
    code: str
    expires_at: float


class OtpVerificationError(Exception):
    """Code lookup failed; the message is safe to show to users."""


def _now() -> float:
    return time.time()


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def generate_code() -> str:
    # Six digits, never starting with zero.
    return str(100000 + secrets.randbelow(900000))


def _get_redis() -> Redis | None:
    # Shared OTP state only when explicitly configured; memory is the default.
    global _redis_client
    settings = get_settings()
    if settings.otp_store_backend != "redis":
        return None
    if _redis_client is None:
        _redis_client = Redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
    return _redis_client


def _prune_memory_store() -> None:
    # Mirrors the redis key lifetime: entries disappear once past the grace window.
    cutoff = _now() - _REDIS_GRACE_SECONDS
    for stale in [key for key, entry in _memory_store.items() if entry.expires_at < cutoff]:
        del _memory_store[stale]


async def store_code(email: str, code: str, *, ttl_seconds: int | None = None) -> OtpEntry:
    ttl = ttl_seconds if ttl_seconds is not None else get_settings().otp_ttl_seconds
    key = _normalize_email(email)
    entry = OtpEntry(code=code, expires_at=_now() + ttl)
    redis = _get_redis()
    if redis is None:
        async with _memory_lock:
            _prune_memory_store()
            _memory_store[key] = entry
        return entry
    payload = json.dumps({"code": entry.code, "expires_at": entry.expires_at})
    await redis.setex(f"{_KEY_PREFIX}{key}", ttl + _REDIS_GRACE_SECONDS, payload)
    return entry


async def get_entry(email: str) -> OtpEntry | None:
    key = _normalize_email(email)
    redis = _get_redis()
    if redis is None:
        async with _memory_lock:
            return _memory_store.get(key)
    raw = await redis.get(f"{_KEY_PREFIX}{key}")
    if raw is None:
        return None
    data = json.loads(raw)
    return OtpEntry(code=str(data["code"]), expires_at=float(data["expires_at"]))


async def delete_code(email: str) -> None:
    key = _normalize_email(email)
    redis = _get_redis()
    if redis is None:
        async with _memory_lock:
            _memory_store.pop(key, None)
        return
    await redis.delete(f"{_KEY_PREFIX}{key}")


async def check_code(email: str, code: str) -> None:
    """Validate ``code`` for ``email`` without consuming it.

    Raises OtpVerificationError when no code exists, when it expired (the entry
    is dropped), or when it does not match.
    """
    entry = await get_entry(email)
    if entry is None:
        raise OtpVerificationError("No verification code found")
    if _now() > entry.expires_at:
        await delete_code(email)
        raise OtpVerificationError("Verification code expired")
    if not secrets.compare_digest(entry.code, str(code).strip()):
        raise OtpVerificationError("Invalid verification code")


async def reset_memory_store() -> None:
    async with _memory_lock:
        _memory_store.clear()
