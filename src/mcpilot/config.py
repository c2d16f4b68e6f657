"""Configuration settings for the application."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Define the settings with default values and types
    # These will be loaded from environment variables or a .env file if not provided
    API_PORT: int = 8000
    DEBUG: bool = False
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical

    # LLM Configuration
    PLANNER: str = "anthropic"
    ANTHROPIC_API_KEY: str | None = None
    ANTHROPIC_MODEL: str = "claude-sonnet-4-20250514"
    MAX_TOKENS: int = 4096

    # Remote tool servers
    SWIGGY_AUTH_TOKEN: str | None = None
    CURSOR_MCP_PATH: str = "~/.cursor/mcp.json"
    MCP_PROTOCOL_VERSION: str = "2024-11-05"
    MCP_CLIENT_NAME: str = "mcpilot"
    MCP_CLIENT_VERSION: str = "0.1.0"
    MCP_HTTP_TIMEOUT: float = 60.0

    # Agent loop
    MAX_ROUNDS: int = 15
    HISTORY_TURNS: int = 5  # user + assistant pairs kept per chat session
    SIDE_EFFECT_TOOL_PATTERN: str = (
        r"place_?\w*order|checkout|book_?\w*table|create_?booking|confirm_?booking|reserve"
    )

    class Config:
        """Configuration for Pydantic settings."""

        # Load environment variables from a .env file
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
