from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

APP_NAME = "pocket-notes"  # Application name constant. Should be in format "kebab-case".


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix=f"{APP_NAME.upper().replace('-', '_')}__",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application settings
    app_name: str = Field(default=APP_NAME, description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    app_data_dir: str = Field(
        default=Path.home().joinpath(f".{APP_NAME}").as_posix(),
        description="Data directory path",
    )
    database_url: Optional[str] = Field(
        default=None,
        description="SQLAlchemy database URL. Defaults to a SQLite file in the data directory",
    )

    # Reminder settings
    reminder_lead_minutes: int = Field(
        default=10, ge=0, description="Minutes before the due time a reminder fires"
    )
    reminder_poll_interval: float = Field(
        default=1.0,
        gt=0,
        description="Upper bound in seconds the reminder runner sleeps between checks",
    )
    notification_channel: str = Field(
        default="Notes", description="Name of the notification channel"
    )
    notification_timeout: int = Field(
        default=10, description="Seconds a desktop notification stays visible"
    )

    # Logging settings
    logging_level: str = Field(
        default="DEBUG", description="Logging level (e.g., DEBUG, INFO, WARNING, ERROR)"
    )
    logging_format: str = Field(
        default="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{module}</cyan>:<cyan>{line}</cyan> - <level>{message}</level> | {extra}",
        description="Logging format string",
    )
    logging_rotation: str = Field(
        default="10 MB", description="Log file rotation size"
    )
    logging_retention: str = Field(
        default="10 days", description="Log file retention period"
    )
    logging_compression: str = Field(
        default="zip", description="Log file compression method"
    )

    def resolved_database_url(self) -> str:
        """Database URL, falling back to notes.sqlite3 inside the data directory."""
        if self.database_url:
            return self.database_url
        return f"sqlite:///{Path(self.app_data_dir).joinpath('notes.sqlite3').as_posix()}"


def get_settings() -> Settings:
    """Retrieve application settings."""
    return Settings()
