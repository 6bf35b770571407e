from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Pipeline settings loaded from environment variables and .env."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SAPS_",
        extra="ignore",
    )

    environment: str = "local"
    data_dir: Path = Path("data")
    sqlite_path: Path = Path("data/saps_extract.sqlite3")

    crop_defaults_config_path: Path = Path("saps_extract/config/crop_defaults.yaml")
    prompts_root: Path = Path("saps_extract/prompts")
    default_prompt_name: str = "saps_extraction"
    default_prompt_version: str = "v001"

    model: str = "claude-3-5-sonnet-20241022"
    api_url: str = "https://api.anthropic.com/v1/messages"
    api_version: str = "2023-06-01"
    max_tokens: int = Field(default=4000, ge=1)

    batch_size: int = Field(default=20, ge=1, le=100)
    request_timeout_seconds: float = Field(default=180.0, gt=0)
    connect_timeout_seconds: float = Field(default=10.0, gt=0)
    overload_max_retries: int = Field(default=3, ge=0)
    overload_base_delay_seconds: float = Field(default=2.0, ge=0)
    document_deadline_seconds: float | None = Field(default=None, gt=0)

    conversion_service_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "SAPS_CONVERSION_SERVICE_URL",
            "CONVERSION_SERVICE_URL",
        ),
    )
    conversion_timeout_seconds: float = Field(default=60.0, gt=0)
    conversion_max_retries: int = Field(default=3, ge=1)
    conversion_retry_backoff_seconds: float = Field(default=1.0, ge=0)
    conversion_poll_max_attempts: int = Field(default=30, ge=1)
    conversion_poll_interval_seconds: float = Field(default=6.0, ge=0)

    log_level: str = "INFO"
    log_file: Path | None = None

    anthropic_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("SAPS_ANTHROPIC_API_KEY", "ANTHROPIC_API_KEY"),
    )
    conversion_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("SAPS_CONVERSION_API_KEY", "CONVERT_API_KEY"),
    )

    @property
    def project_root(self) -> Path:
        return Path(__file__).resolve().parents[2]

    @property
    def resolved_data_dir(self) -> Path:
        return self._resolve_path(self.data_dir)

    @property
    def resolved_sqlite_path(self) -> Path:
        return self._resolve_path(self.sqlite_path)

    @property
    def resolved_prompts_root(self) -> Path:
        return self._resolve_path(self.prompts_root)

    @property
    def resolved_crop_defaults_config_path(self) -> Path:
        return self._resolve_path(self.crop_defaults_config_path)

    def load_yaml(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with path.open("r", encoding="utf-8") as file:
            data = yaml.safe_load(file) or {}

        if not isinstance(data, dict):
            raise ValueError(f"YAML config must contain object root: {path}")

        return data

    @property
    def crop_defaults_config(self) -> dict[str, Any]:
        return self.load_yaml(self.resolved_crop_defaults_config_path)

    def _resolve_path(self, path: Path) -> Path:
        if path.is_absolute():
            return path
        return (self.project_root / path).resolve()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
