"""Configuration management using Pydantic Settings."""

import json
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageConfig(BaseModel):
    """Where the job table, session table and staged media live."""

    data_dir: str = "data"
    uploads_dir: str = "uploads"
    queue_file: str = "queue.json"
    sessions_file: str = "sessions.json"
    write_debounce_seconds: float = 1.0  # Coalesce progress writes within this window

    @property
    def queue_path(self) -> Path:
        return Path(self.data_dir) / self.queue_file

    @property
    def sessions_path(self) -> Path:
        return Path(self.data_dir) / self.sessions_file


class WorkerConfig(BaseModel):
    """Background worker loop settings."""

    poll_interval: float = 5.0  # Sleep when no pending job exists
    error_backoff: float = 10.0  # Sleep after an unexpected loop error
    status_log_every: int = 6  # Log a queue summary every N idle checks
    recover_stale_on_start: bool = True


class GoogleConfig(BaseModel):
    """OAuth client used to act on behalf of a signed-in user."""

    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    redirect_uri: Optional[str] = None
    token_uri: str = "https://oauth2.googleapis.com/token"
    scopes: list[str] = Field(
        default_factory=lambda: [
            "https://www.googleapis.com/auth/youtube.upload",
            "https://www.googleapis.com/auth/userinfo.profile",
        ]
    )
    credentials_file: Optional[str] = None  # Google "creds.json" with a "web" section

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.redirect_uri)

    def with_credentials_file(self) -> "GoogleConfig":
        """Fill missing client fields from ``credentials_file``.

        Values already set (e.g. from the environment) win over the file.
        """
        if not self.credentials_file:
            return self
        path = Path(self.credentials_file)
        if not path.exists():
            return self

        with open(path) as f:
            web = json.load(f).get("web", {})

        redirect_uris = web.get("redirect_uris") or [None]
        return self.model_copy(
            update={
                "client_id": self.client_id or web.get("client_id"),
                "client_secret": self.client_secret or web.get("client_secret"),
                "redirect_uri": self.redirect_uri or redirect_uris[0],
            }
        )


class ScheduleConfig(BaseModel):
    """Calendar settings for interval windows."""

    timezone: Optional[str] = None  # IANA name, host local zone when unset


class ServerConfig(BaseModel):
    """HTTP surface settings."""

    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False
    session_cookie: str = "sessionId"


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    file: Optional[str] = None
    max_size: int = 10
    backup_count: int = 5
    json_output: bool = False


class Settings(BaseSettings):
    """Main settings container."""

    model_config = SettingsConfigDict(
        env_prefix="YTB_",
        env_nested_delimiter="__",
    )

    storage: StorageConfig = Field(default_factory=StorageConfig)
    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    google: GoogleConfig = Field(default_factory=GoogleConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> "Settings":
        """Load settings from a YAML file."""
        import yaml

        with open(path) as f:
            data = yaml.safe_load(f)

        return cls(**data) if data else cls()


def load_settings(config_path: Optional[Path] = None) -> Settings:
    """Load settings from file or defaults."""
    if config_path and config_path.exists():
        return Settings.from_yaml(config_path)

    default_paths = [
        Path("config/config.yaml"),
        Path("config.yaml"),
        Path.home() / ".yt-batch" / "config.yaml",
    ]

    for path in default_paths:
        if path.exists():
            return Settings.from_yaml(path)

    return Settings()
