"""Configuration settings for the application."""

from pydantic_settings import (
    BaseSettings,
    SettingsConfigDict,
)


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Loaded from environment variables or a .env file if not provided
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    API_PORT: int = 8000
    DEBUG: bool = False
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical

    # LLM Configuration
    PLANNER: str = "openai"  # Options: tgi, openai, anthropic
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_BASE_URL: str | None = None  # e.g. https://openrouter.ai/api/v1
    ANTHROPIC_API_KEY: str | None = None
    ANTHROPIC_MODEL: str = "claude-3-5-haiku-latest"
    TGI_ENDPOINT: str = "http://localhost:8080/generate"
    TEMPERATURE: float = 0.1

    # Agent loop
    MAX_ITERATIONS: int = 10
    MEMORY_WINDOW: int | None = 20  # None = whole session history
    DECISION_TIMEOUT: float | None = 60.0  # seconds, None = no timeout
    TOOL_TIMEOUT: float | None = 30.0


settings = Settings()
