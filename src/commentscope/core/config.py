"""Configuration management for CommentScope."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    ErrorConstants,
    FileConstants,
    LLMConstants,
    PlatformConstants,
    TaskConstants,
)


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # LLM API
    ai_api_key: str = Field("", description="API key for the chat completion endpoint")
    OPENAI_API_KEY: str = Field("", description="OpenAI API key (alternative naming)")
    ai_api_base: str = Field(LLMConstants.DEFAULT_API_BASE, description="Chat completion base URL")
    ai_model: str = Field(LLMConstants.DEFAULT_MODEL, description="Model name")
    ai_max_concurrent: int = Field(LLMConstants.MAX_CONCURRENT, description="Simultaneous model calls")
    ai_timeout: float = Field(LLMConstants.REQUEST_TIMEOUT, description="Model call timeout in seconds")
    ai_retry_wait: float = Field(LLMConstants.RETRY_WAIT, description="Wait before the model retry")

    @property
    def effective_ai_key(self) -> str:
        """Get the effective model API key from either field."""
        return self.ai_api_key or self.OPENAI_API_KEY

    # Video platform
    bilibili_cookie: str = Field("", description="Logged-in platform cookie")
    platform_timeout: float = Field(PlatformConstants.REQUEST_TIMEOUT, description="Platform call timeout")
    max_retries: int = Field(ErrorConstants.MAX_RETRY_ATTEMPTS, description="Maximum platform attempts")
    retry_delay: float = Field(ErrorConstants.RETRY_BASE_DELAY, description="Base retry delay in seconds")
    retry_backoff: float = Field(2.0, description="Retry backoff multiplier")

    # Storage
    data_dir: str = Field(FileConstants.DATA_DIR, description="Directory for persisted state")
    llm_cache_dir: str = Field(FileConstants.CACHE_DIR, description="LLM response cache, empty disables")

    # Recovery
    heartbeat_timeout_seconds: int = Field(
        TaskConstants.HEARTBEAT_TIMEOUT_SECONDS, description="Staleness threshold for running tasks"
    )
    sweep_interval_seconds: int = Field(
        TaskConstants.SWEEP_INTERVAL_SECONDS, description="Interval of the stale-task sweep"
    )

    # Logging
    log_level: str = Field("INFO", description="Logging level")


# Global settings instance
settings = Settings()
