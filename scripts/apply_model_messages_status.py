from __future__ import annotations

import asyncio
import sys

import asyncpg

from reduct.core.config import Settings, get_settings


STATUS_CONSTRAINT = "chk_model_messages_status"

STATEMENTS = (
    "ALTER TABLE model_messages ADD COLUMN IF NOT EXISTS status VARCHAR(20) DEFAULT 'none'",
    "UPDATE model_messages SET status = CASE WHEN role = 'assistant' THEN 'success' ELSE 'none' END "
    "WHERE status IS NULL",
    "ALTER TABLE model_messages ALTER COLUMN status SET DEFAULT 'none'",
    "ALTER TABLE model_messages ALTER COLUMN status SET NOT NULL",
)
ADD_CONSTRAINT = (
    f"ALTER TABLE model_messages ADD CONSTRAINT {STATUS_CONSTRAINT} "
    "CHECK (status IN ('none', 'in_progress', 'success', 'failed', 'stopped'))"
)


def resolve_host(host: str) -> str:
    # Container-facing host names do not resolve from the host machine.
    if host == "host.docker.internal":
        return "127.0.0.1"
    return host


def connection_kwargs(settings: Settings) -> dict[str, object]:
    missing = [
        name
        for name, value in (
            ("POSTGRES_USER", settings.postgres_user),
            ("POSTGRES_PASSWORD", settings.postgres_password),
            ("POSTGRES_HOST", settings.postgres_host),
            ("POSTGRES_DB", settings.postgres_db),
        )
        if not value
    ]
    if missing:
        raise ValueError(f"Missing Postgres connection info ({', '.join(missing)})")
    return {
        "user": settings.postgres_user,
        "password": settings.postgres_password,
        "host": resolve_host(settings.postgres_host),
        "port": settings.postgres_port,
        "database": settings.postgres_db,
    }


async def apply(settings: Settings) -> None:
    conn = await asyncpg.connect(**connection_kwargs(settings))
    try:
        async with conn.transaction():
            for statement in STATEMENTS:
                await conn.execute(statement)
            exists = await conn.fetchval("SELECT 1 FROM pg_constraint WHERE conname = $1 LIMIT 1", STATUS_CONSTRAINT)
            if not exists:
                await conn.execute(ADD_CONSTRAINT)
    finally:
        await conn.close()


def main() -> int:
    try:
        asyncio.run(apply(get_settings()))
    except Exception as exc:  # noqa: BLE001 - one-shot maintenance script reports and exits
        print(f"[FAIL] {exc}", file=sys.stderr)
        return 1
    print("[OK] model_messages.status added/updated")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
