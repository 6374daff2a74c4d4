"""Configuration settings for the train log bot."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class FlatSettings(BaseSettings):
    """Flat settings read from environment variables (or a .env file)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Persistence
    database_url: str = Field(
        default="sqlite:///train-logs.db", validation_alias="DATABASE_URL"
    )

    # Operating day
    new_day_hour: int = Field(default=3, ge=0, le=23, validation_alias="NEW_DAY_HOUR")
    timezone: str | None = Field(default=None, validation_alias="TIMEZONE")

    # Display
    character_limit: int = Field(default=2000, validation_alias="CHARACTER_LIMIT")
    max_search_results: int = Field(default=10, validation_alias="MAX_SEARCH_RESULTS")

    # Chat platform wiring (resolved by the host adapter)
    log_channel_id: str | None = Field(default=None, validation_alias="LOG_CHANNEL_ID")
    approval_channel_id: str | None = Field(
        default=None, validation_alias="APPROVAL_CHANNEL_ID"
    )
    feed_channel_id: str | None = Field(default=None, validation_alias="FEED_CHANNEL_ID")
    contributor_guild_id: str | None = Field(
        default=None, validation_alias="CONTRIBUTOR_GUILD_ID"
    )
    contributor_role_id: str | None = Field(
        default=None, validation_alias="CONTRIBUTOR_ROLE_ID"
    )

    # LLM API keys (a provider is only used when its key is set)
    google_ai_api_key: SecretStr | None = Field(
        default=None, validation_alias="GOOGLE_AI_API_KEY"
    )
    groq_api_key: SecretStr | None = Field(default=None, validation_alias="GROQ_API_KEY")
    openrouter_api_key: SecretStr | None = Field(
        default=None, validation_alias="OPENROUTER_API_KEY"
    )
    nvidia_nim_api_key: SecretStr | None = Field(
        default=None, validation_alias="NVIDIA_NIM_API_KEY"
    )
    anthropic_api_key: SecretStr | None = Field(
        default=None, validation_alias="ANTHROPIC_API_KEY"
    )
    openai_api_key: SecretStr | None = Field(default=None, validation_alias="OPENAI_API_KEY")

    # Model selections
    claude_model: str = Field(default="claude-haiku-4-5", validation_alias="CLAUDE_MODEL")
    gpt_model: str = Field(default="gpt-5-mini", validation_alias="GPT_MODEL")

    # LLM parameters
    llm_max_tokens: int = Field(default=4096, validation_alias="LLM_MAX_TOKENS")
    llm_temperature: float = Field(default=0.0, validation_alias="LLM_TEMPERATURE")

    # Reference data
    wiki_api_url: str = Field(
        default="https://metro.hopperelec.co.uk/wiki/api.php",
        validation_alias="WIKI_API_URL",
    )
    wiki_timeout: float = Field(default=15.0, validation_alias="WIKI_TIMEOUT")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", validation_alias="LOG_FORMAT"
    )

    @model_validator(mode="after")
    def _check_contributor_config(self) -> "FlatSettings":
        if (self.contributor_guild_id is None) != (self.contributor_role_id is None):
            raise ValueError(
                "Both CONTRIBUTOR_GUILD_ID and CONTRIBUTOR_ROLE_ID must be set if one is set."
            )
        return self


@lru_cache
def get_settings() -> FlatSettings:
    """Get cached settings instance."""
    return FlatSettings()
