from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LogFormat = Literal["json", "console"]

DEFAULT_TABLE = "books"
DEFAULT_VALIDATION_TARGET = "books-create"
DEFAULT_SETTLE_INTERVAL_MS = 1500


class HookConfig(BaseModel):
    """
    Explicit configuration handed to the pre-traffic hook and the deploy stage.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    backing_store_name: str = Field(default=DEFAULT_TABLE, min_length=1)
    validation_target: str = Field(default=DEFAULT_VALIDATION_TARGET, min_length=1)
    settle_interval_ms: int = Field(default=DEFAULT_SETTLE_INTERVAL_MS, ge=0)
    # 0 means a single consistent read after the settle interval.
    read_deadline_ms: int = Field(default=0, ge=0)
    hook_timeout_s: float = Field(default=300.0, gt=0)

    @property
    def settle_interval_s(self) -> float:
        return self.settle_interval_ms / 1000.0

    @property
    def read_deadline_s(self) -> float:
        return self.read_deadline_ms / 1000.0


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="BOOKS_API_PIPELINE_",
        env_file=".env",
        extra="ignore",
    )

    run_root: Path = Field(default=Path("_runs"))
    artifact_root: Path = Field(default=Path("_artifacts"))
    log_level: str = Field(default="INFO")
    log_format: LogFormat = Field(default="console")

    table_name: str = Field(default=DEFAULT_TABLE)
    validation_target: str = Field(default=DEFAULT_VALIDATION_TARGET)
    settle_interval_ms: int = Field(default=DEFAULT_SETTLE_INTERVAL_MS, ge=0)
    read_deadline_ms: int = Field(default=0, ge=0)
    hook_timeout_s: float = Field(default=300.0, gt=0)
    status_endpoint: Optional[str] = Field(default=None)

    def hook_config(self, **overrides: object) -> HookConfig:
        values: dict[str, object] = {
            "backing_store_name": self.table_name,
            "validation_target": self.validation_target,
            "settle_interval_ms": self.settle_interval_ms,
            "read_deadline_ms": self.read_deadline_ms,
            "hook_timeout_s": self.hook_timeout_s,
        }
        values.update(overrides)
        return HookConfig.model_validate(values)


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    return Settings()
