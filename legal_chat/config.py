"""Application configuration using Pydantic Settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    openai_api_key: str = ""
    openai_model: str = "gpt-3.5-turbo"
    openai_temperature: float = 0.2
    openai_max_tokens: int = 500

    redis_url: str = "redis://localhost:6379"
    database_url: str = "sqlite+aiosqlite:///./legal_chat.db"

    # Signs the anonymous q_used cookie. Override in every deployment.
    quota_secret: str = "change-me-in-production-legal-chat-quota-key"
    free_question_limit: int = 2
    quota_token_ttl_seconds: int = 24 * 60 * 60

    anonymous_rate_limit: int = 10
    registered_rate_limit: int = 30
    rate_limit_window_seconds: int = 60
    trust_forwarded_for: bool = True

    circuit_failure_threshold: int = 3
    redis_recovery_seconds: float = 10.0
    llm_recovery_seconds: float = 30.0

    allowed_origins: list[str] = ["http://localhost:3000"]
    cookie_secure: bool = False

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )


settings = Settings()
