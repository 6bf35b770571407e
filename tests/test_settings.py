from __future__ import annotations

from pathlib import Path

from saps_extract.config.settings import Settings, get_settings
from saps_extract.pipeline.fallback import CropDefaults


def test_settings_reads_env_override(monkeypatch, tmp_path: Path) -> None:
    db_path = tmp_path / "custom.sqlite3"
    monkeypatch.setenv("SAPS_SQLITE_PATH", str(db_path))
    monkeypatch.setenv("SAPS_BATCH_SIZE", "7")

    settings = Settings(_env_file=None)

    assert settings.sqlite_path == db_path
    assert settings.resolved_sqlite_path == db_path.resolve()
    assert settings.batch_size == 7


def test_settings_defaults_match_pipeline_limits() -> None:
    settings = Settings(_env_file=None)

    assert settings.batch_size == 20
    assert settings.overload_max_retries == 3
    assert settings.overload_base_delay_seconds == 2.0
    assert settings.request_timeout_seconds == 180.0
    assert settings.conversion_poll_max_attempts == 30
    assert settings.conversion_poll_interval_seconds == 6.0


def test_settings_accepts_unprefixed_api_keys(monkeypatch) -> None:
    monkeypatch.delenv("SAPS_ANTHROPIC_API_KEY", raising=False)
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
    monkeypatch.setenv("CONVERT_API_KEY", "conv-test")
    monkeypatch.setenv("CONVERSION_SERVICE_URL", "https://convert.example.com")

    settings = Settings(_env_file=None)

    assert settings.anthropic_api_key == "sk-test"
    assert settings.conversion_api_key == "conv-test"
    assert settings.conversion_service_url == "https://convert.example.com"


def test_settings_loads_crop_defaults_config() -> None:
    settings = Settings(_env_file=None)

    defaults = CropDefaults.from_config(settings.crop_defaults_config)

    assert defaults.default_yield_per_hectare == 4.5
    assert defaults.default_price_per_ton == 80000
    assert defaults.huf_per_eur == 380
    assert defaults.lookup("Kukorica").yield_per_hectare > 0


def test_get_settings_is_cached(monkeypatch) -> None:
    monkeypatch.setenv("SAPS_MODEL", "claude-test-model")
    get_settings.cache_clear()
    try:
        first = get_settings()
        second = get_settings()
    finally:
        get_settings.cache_clear()

    assert first is second
    assert first.model == "claude-test-model"
