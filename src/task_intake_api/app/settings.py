"""Application settings."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[3]


class Settings(BaseSettings):
    """Runtime settings loaded from ``TASK_INTAKE_*`` environment variables."""

    app_name: str = "task-intake-api"
    log_level: str = "INFO"
    database_url: str = ""
    allowed_origins: list[str] = ["http://localhost:5173"]
    min_task_length: int = Field(default=3, ge=1)
    # Seconds to wait for in-flight pipeline runs at shutdown.
    shutdown_grace_s: float = Field(default=30.0, gt=0.0)

    # Gemini
    llm_provider: str = "google"
    gemini_api_key: str = ""
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    llm_max_attempts: int = Field(default=3, ge=1)
    llm_retry_delay_s: float = Field(default=30.0, ge=0.0)
    # None disables the request timeout; a hung call only stalls its own run.
    llm_timeout_s: float | None = None
    easy_model: str = "gemini-2.5-flash"
    intermediate_model: str = "gemini-2.5-flash"
    complex_model: str = "gemini-2.5-pro"

    # n8n
    n8n_base_url: str = "http://localhost:5678"
    n8n_api_key: str = ""
    n8n_timeout_s: float = Field(default=30.0, gt=0.0)

    model_config = SettingsConfigDict(
        env_prefix="TASK_INTAKE_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )

    def resolved_database_url(self) -> str:
        return self.database_url or os.getenv("DATABASE_URL", "")

    def resolved_gemini_api_key(self) -> str:
        return self.gemini_api_key or os.getenv("GEMINI_API_KEY", "")

    def resolved_n8n_api_key(self) -> str:
        return self.n8n_api_key or os.getenv("N8N_API_KEY", "")

    def tier_models(self) -> dict[str, str]:
        return {
            "easy": self.easy_model,
            "intermediate": self.intermediate_model,
            "complex": self.complex_model,
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
