from __future__ import annotations

import pytest
from pydantic import ValidationError

from books_api_pipeline.core import (
    ActionExecutionError,
    DeploymentError,
    DeploymentRolledBackError,
    HookConfig,
    Settings,
    action_error_from_exc,
    load_settings,
    provenance,
    time,
)
from books_api_pipeline.core.retry import DeterministicExponentialBackoff


def test_hook_config_defaults() -> None:
    cfg = HookConfig()
    assert cfg.backing_store_name == "books"
    assert cfg.validation_target == "books-create"
    assert cfg.settle_interval_ms == 1500
    assert cfg.settle_interval_s == pytest.approx(1.5)
    assert cfg.read_deadline_ms == 0


def test_hook_config_rejects_bad_values() -> None:
    with pytest.raises(ValidationError):
        HookConfig(settle_interval_ms=-1)
    with pytest.raises(ValidationError):
        HookConfig(hook_timeout_s=0)
    with pytest.raises(ValidationError):
        HookConfig(unknown_field=1)


def test_settings_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BOOKS_API_PIPELINE_TABLE_NAME", "books-staging")
    monkeypatch.setenv("BOOKS_API_PIPELINE_SETTLE_INTERVAL_MS", "250")
    monkeypatch.setenv("BOOKS_API_PIPELINE_LOG_FORMAT", "json")

    s = Settings()
    assert s.table_name == "books-staging"
    assert s.log_format == "json"

    cfg = s.hook_config(read_deadline_ms=2000)
    assert cfg.backing_store_name == "books-staging"
    assert cfg.settle_interval_ms == 250
    assert cfg.read_deadline_ms == 2000


def test_load_settings_is_cached() -> None:
    load_settings.cache_clear()
    assert load_settings() is load_settings()


def test_backoff_is_deterministic_and_capped() -> None:
    b = DeterministicExponentialBackoff(base=0.5, cap=2.0)
    assert [b.wait_for(n) for n in range(0, 6)] == [0.0, 0.5, 1.0, 2.0, 2.0, 2.0]


def test_action_error_record() -> None:
    try:
        raise DeploymentRolledBackError("candidate failed")
    except Exception as exc:
        err = action_error_from_exc(exc)
    assert err.exc_type == "DeploymentRolledBackError"
    assert "candidate failed" in err.message
    assert "DeploymentRolledBackError" in err.traceback
    assert issubclass(DeploymentRolledBackError, DeploymentError)
    assert issubclass(DeploymentRolledBackError, ActionExecutionError)


def test_run_id_and_time_helpers() -> None:
    rid1, rid2 = provenance.new_run_id(), provenance.new_run_id()
    assert rid1 != rid2 and len(rid1) == 32
    assert time.utc_now_iso().endswith("Z")
    assert time.format_duration_ms(250) == "250 ms"
    assert time.format_duration_ms(1500) == "1.50 s"
