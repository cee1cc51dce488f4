from __future__ import annotations

import pytest

from reduct.core.config import Settings
from scripts import apply_model_messages_status as script


def test_docker_host_maps_to_loopback() -> None:
    settings = Settings(postgres_host="host.docker.internal", postgres_port=6543)
    kwargs = script.connection_kwargs(settings)
    assert kwargs["host"] == "127.0.0.1"
    assert kwargs["port"] == 6543


def test_missing_connection_info_is_reported() -> None:
    settings = Settings(postgres_user="", postgres_db="")
    with pytest.raises(ValueError, match="POSTGRES_USER, POSTGRES_DB"):
        script.connection_kwargs(settings)


def test_main_prints_ok_and_fail(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    async def ok(_settings) -> None:
        return None

    monkeypatch.setattr(script, "apply", ok)
    assert script.main() == 0
    assert "[OK] model_messages.status added/updated" in capsys.readouterr().out

    async def broken(_settings) -> None:
        raise RuntimeError("connection refused")

    monkeypatch.setattr(script, "apply", broken)
    assert script.main() == 1
    assert "[FAIL] connection refused" in capsys.readouterr().err


def test_backfill_marks_assistant_rows_success() -> None:
    backfill = script.STATEMENTS[1]
    assert "WHEN role = 'assistant' THEN 'success' ELSE 'none'" in backfill
    assert "WHERE status IS NULL" in backfill
