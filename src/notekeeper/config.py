"""Configuration module for notekeeper."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from notekeeper import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config: lives alongside the user's notes
_USER_ENV = Path.home() / ".notekeeper" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class NotekeeperConfig(BaseModel):
    """Configuration for the notes application."""

    # Base directory that relative paths are resolved against
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("NOTEKEEPER_BASE_DIR", "."))
    )
    # Blob storage root (Images/ and Audio/ live underneath)
    data_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("NOTEKEEPER_DATA_DIR", "data/files"))
    )
    # Database configuration
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("NOTEKEEPER_DATABASE_PATH", "data/db/notekeeper.db")
        )
    )
    # Persistent log directory; console-only logging when unset
    log_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("NOTEKEEPER_LOG_DIR"))
            if os.getenv("NOTEKEEPER_LOG_DIR")
            else None
        )
    )
    log_level: str = Field(
        default_factory=lambda: os.getenv("NOTEKEEPER_LOG_LEVEL", "WARNING").upper()
    )
    # Number of content characters shown in list rows
    preview_length: int = Field(
        default_factory=lambda: int(os.getenv("NOTEKEEPER_PREVIEW_LENGTH", "120"))
    )
    app_version: str = Field(default=__version__)

    @model_validator(mode="after")
    def _validate(self) -> "NotekeeperConfig":
        """Reject settings that cannot work."""
        if self.preview_length < 1:
            raise ValueError("preview_length must be >= 1")
        if self.log_level not in _LOG_LEVELS:
            logger.warning(
                "Unknown log level %r, falling back to WARNING", self.log_level
            )
            self.log_level = "WARNING"
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"

    def get_data_dir(self) -> Path:
        """Get the absolute blob storage root, creating it if needed."""
        data_dir = self.get_absolute_path(self.data_dir)
        data_dir.mkdir(parents=True, exist_ok=True)
        return data_dir


# Create a global config instance
config = NotekeeperConfig()
