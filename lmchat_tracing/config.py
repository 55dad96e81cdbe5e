"""
Configuration management using Pydantic Settings.
Reads from environment variables.
"""

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    model_config = ConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Provider credentials (used when a request carries none)
    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    groq_api_key: str | None = Field(default=None, alias="GROQ_API_KEY")
    google_api_key: str | None = Field(default=None, alias="GOOGLE_API_KEY")

    # Langfuse
    langfuse_public_key: str | None = Field(default=None, alias="LANGFUSE_PUBLIC_KEY")
    langfuse_secret_key: str | None = Field(default=None, alias="LANGFUSE_SECRET_KEY")
    langfuse_base_url: str = Field(default="https://cloud.langfuse.com", alias="LANGFUSE_BASE_URL")
    langfuse_flush_at: int = Field(default=1, alias="LANGFUSE_FLUSH_AT")

    # Application Configuration
    environment: str = Field(default="development", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Execution log retention
    max_executions: int = Field(default=500, alias="MAX_EXECUTIONS")
    execution_ttl_seconds: int = Field(default=3600, alias="EXECUTION_TTL_SECONDS")

    # Model catalog
    model_catalog_timeout: float = Field(default=10.0, alias="MODEL_CATALOG_TIMEOUT")

    # Circuit Breaker Configuration
    circuit_breaker_failure_threshold: int = Field(
        default=5, alias="CIRCUIT_BREAKER_FAILURE_THRESHOLD"
    )
    circuit_breaker_timeout: int = Field(default=60, alias="CIRCUIT_BREAKER_TIMEOUT")

    def provider_api_key(self, provider: str) -> str | None:
        """Return the configured API key for a provider, if any."""
        return getattr(self, f"{provider}_api_key", None)


# Global settings instance
settings = Settings()
