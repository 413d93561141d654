"""Configuration settings for the application."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Define the settings with default values and types
    # These will be loaded from environment variables or a .env file if not provided
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    DEBUG: bool = False
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical
    CORS_ORIGINS: list[str] = ["http://localhost:5173", "http://localhost:9926"]

    # Model configuration
    MODEL_PROVIDER: str = "openai"  # Options: openai (any OpenAI-compatible gateway), anthropic
    MODEL_NAME: str = "anthropic/claude-4.5-sonnet"
    MODEL_BASE_URL: str | None = "https://openrouter.ai/api/v1"
    MODEL_TEMPERATURE: float = 0.7
    MODEL_MAX_TOKENS: int = 10000
    MODEL_TIMEOUT_SECONDS: float = 120.0  # idle time allowed between two streamed chunks
    OPENAI_API_KEY: str | None = None
    OPENROUTER_API_KEY: str | None = None
    ANTHROPIC_API_KEY: str | None = None

    # Agent configuration
    AGENT_MAX_ITERATIONS: int = 25
    TRANSCRIPT_DEFAULT_MAX_CHARS: int = 5000

    # Collaborators
    STORE_URL: str = "http://localhost:9926"
    STORE_TIMEOUT_SECONDS: float = 30.0
    COMPONENT_TESTER: str = "placeholder"  # Options: placeholder, llm

    class Config:
        """Configuration for Pydantic settings."""

        # Load environment variables from a .env file
        env_file = ".env"
        env_file_encoding = "utf-8"
