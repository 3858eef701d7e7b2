"""Configuration settings for the application."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Loaded from environment variables or a .env file when present
    API_PORT: int = 8000
    DEBUG: bool = False
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical

    # Model callers
    MODEL_PROVIDER: str = "openai"  # Options: openai, anthropic, tgi
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    ANTHROPIC_API_KEY: str | None = None
    ANTHROPIC_MODEL: str = "claude-3-5-haiku-latest"
    TGI_ENDPOINT: str = "http://tgi:8080/generate"

    # Agent run defaults
    AGENT_MODE: str = "plan_act"  # Options: plan_act, react
    AGENT_MAX_STEPS: int = 10
    AGENT_MAX_TOKENS_PER_STEP: int = 2000
    AGENT_TEMPERATURE: float = 0.7
    AGENT_TIMEOUT_MS: int = 300_000
    AGENT_STREAM_STEPS: bool = True

    class Config:
        """Configuration for Pydantic settings."""

        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
