"""Configuration management using pydantic-settings."""

import sys
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# SubmarineTracker plugin folder, relative to the user's home directory
if sys.platform == "win32":
    SUBTRACKER_FOLDER = Path("AppData/Roaming/XIVLauncher/pluginConfigs/SubmarineTracker")
else:
    SUBTRACKER_FOLDER = Path(".xlcore/pluginConfigs/SubmarineTracker")

SUBTRACKER_DB_NAME = "submarine-sqlite.db"


def default_db_path() -> Path:
    """Get the default SubmarineTracker database path."""
    return Path.home() / SUBTRACKER_FOLDER / SUBTRACKER_DB_NAME


def default_data_dir() -> Path:
    """Get the default directory for daemon state (pid file, logs)."""
    return Path.home() / ".subwatch"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SUBWATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database and daemon state
    db_path: Path = Field(default_factory=default_db_path)
    data_dir: Path = Field(default_factory=default_data_dir)

    # Change watcher
    debounce_seconds: float = Field(default=0.3, gt=0)

    # Reconciler retry after a failed snapshot (doubles up to the max)
    source_retry_seconds: float = Field(default=5.0, gt=0)
    source_retry_max_seconds: float = Field(default=60.0, gt=0)

    # Timer engine wakeup bound, keeps timers honest across suspend / clock changes
    heartbeat_seconds: float = Field(default=30.0, gt=0)

    # Push bridge. Empty endpoint disables the remote leg.
    push_endpoint: str = ""  # e.g. https://push.example.net/notify
    push_token: str = ""
    push_max_attempts: int = Field(default=3, ge=1)
    push_backoff_seconds: float = Field(default=1.0, ge=0)
    push_timeout_seconds: float = Field(default=10.0, gt=0)

    # Desktop notifications
    app_name: str = "Submarine Tracker"

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    @property
    def has_push_bridge(self) -> bool:
        """Check if the push bridge is configured."""
        return bool(self.push_endpoint)

    @property
    def pid_file(self) -> Path:
        """Get the daemon PID file path."""
        return self.data_dir / "daemon.pid"

    @property
    def log_file(self) -> Path:
        """Get the daemon log file path."""
        return self.data_dir / "daemon.log"

    def ensure_directories(self) -> None:
        """Create the daemon state directory if it doesn't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)


# Global settings instance
settings = Settings()
