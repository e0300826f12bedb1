"""Application settings loaded from environment variables."""

import os
from datetime import timedelta
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Wayfinder configuration. All values come from environment variables."""

    # Anthropic (content generation)
    anthropic_api_key: str = Field(default="")
    generator_model: str = Field(default="claude-haiku-4-5-20251001")
    generator_max_tokens: int = Field(default=1024)

    # Database
    database_path: Path = Field(default=Path("data/wayfinder.db"))

    # Short-term memory retention
    stm_ttl_days: int = Field(default=7)
    stm_max_entries: int = Field(default=100)

    # Context retrieval
    context_limit: int = Field(default=5)
    responder_context_limit: int = Field(default=3)
    history_limit: int = Field(default=10)

    # Expiry sweep (0 disables)
    sweep_interval_minutes: int = Field(default=60)

    # Orchestration
    responder_timeout_seconds: float = Field(default=0.0)
    fail_on_total_responder_failure: bool = Field(default=False)

    # Responders
    responders_file: str = Field(default="")
    default_responder_id: str = Field(default="scenic")
    history_responder_id: str = Field(default="history")

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    def get_stm_ttl(self) -> timedelta:
        """Lifetime of a short-term memory entry."""
        return timedelta(days=self.stm_ttl_days)

    def get_responder_timeout(self) -> float | None:
        """Per-responder deadline in seconds, or None for an unbounded wait."""
        if self.responder_timeout_seconds <= 0:
            return None
        return self.responder_timeout_seconds


settings = Settings()
