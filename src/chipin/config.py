"""Configuration management for ChipIn."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CHIPIN_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Identity of the person using this installation
    user_email: str | None = None

    # Display settings
    currency_code: str = "USD"

    # Database
    database_path: Path = Path.home() / ".chipin" / "chipin.db"
    busy_timeout: float = 5.0  # seconds to wait for a competing writer

    def __init__(self, **kwargs):
        """Initialize settings and create database directory if needed."""
        super().__init__(**kwargs)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)


def load_settings(**overrides) -> Settings:
    """Load application settings from environment variables."""
    try:
        return Settings(**overrides)
    except Exception as e:
        raise ConfigurationError(
            f"Failed to load settings. Check your CHIPIN_* environment "
            f"variables or .env file. See .env.example for reference.\n"
            f"Error: {e}"
        ) from e
