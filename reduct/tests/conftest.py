from __future__ import annotations

import os
import tempfile

# Settings are cached on first import, so the database must be chosen before any
# reduct module loads. Tests run on a throwaway SQLite file unless overridden.
_DB_DIR = tempfile.mkdtemp(prefix="reduct-tests-")
os.environ["DATABASE_URL"] = os.environ.get(
    "REDUCT_TEST_DATABASE_URL", f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'reduct.db')}"
)
os.environ["OTP_STORE_BACKEND"] = "memory"
os.environ["SMTP_HOST"] = ""
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["CREDENTIAL_ENCRYPTION_SECRET"] = "test-credential-secret"

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from reduct.apps.api.main import create_app  # noqa: E402
from reduct.domain.models import Base  # noqa: E402
from reduct.persistence.db import engine  # noqa: E402
from reduct.services.ai.auth_profiles import clear_token_cache  # noqa: E402
from reduct.services.auth.otp import reset_memory_store  # noqa: E402


@pytest.fixture(autouse=True)
async def fresh_schema() -> None:
    # Every test gets an empty schema and empty process-local caches.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await reset_memory_store()
    await clear_token_cache()
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    await engine.dispose()


@pytest.fixture
async def client() -> AsyncClient:
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
