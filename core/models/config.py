"""
Configuration models for smart-bookmarks.

Handles backend connection settings, push channel retry policy and
synchronization engine tuning.
"""

from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BackendConfig(BaseModel):
    """Backend API connection configuration"""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True
    )

    # Connection settings
    url: str = "http://localhost:54321"
    api_key: Optional[str] = None
    access_token: Optional[str] = None
    timeout: float = Field(default=10.0, ge=0.1, le=300.0)

    # Resource settings
    table: str = Field(default="bookmarks", min_length=1)

    @field_validator('url')
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate backend URL format"""
        if not v.startswith(('http://', 'https://')):
            raise ValueError('Backend URL must start with http:// or https://')
        return v.rstrip('/')

    @property
    def rest_url(self) -> str:
        """REST endpoint for the bookmark table"""
        return f"{self.url}/rest/v1/{self.table}"


class RetrySettings(BaseModel):
    """Push channel reconnect policy"""
    model_config = ConfigDict(validate_assignment=True)

    max_attempts: int = Field(default=5, ge=1, le=100)
    initial_delay: float = Field(default=1.0, ge=0.0, le=60.0)
    max_delay: float = Field(default=30.0, ge=0.0, le=600.0)
    backoff_factor: float = Field(default=2.0, ge=1.0, le=10.0)
    jitter: bool = True


class SyncConfig(BaseModel):
    """Top-level synchronization configuration"""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True
    )

    backend: BackendConfig = Field(default_factory=BackendConfig)
    retry: RetrySettings = Field(default_factory=RetrySettings)

    # Push channel
    channel_name: str = Field(default="bookmark-updates", min_length=1)
    schema_name: str = Field(default="public", min_length=1)

    # Engine tuning
    max_queue_size: int = Field(default=1000, ge=1, le=100000)
    tombstone_ttl_seconds: float = Field(default=0.0, ge=0.0)
    settle_timeout: float = Field(default=10.0, gt=0.0)


class GlobalSettings(BaseSettings):
    """Global application settings with environment variable support"""
    model_config = SettingsConfigDict(
        env_prefix="SMART_BOOKMARKS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    config_dir: Path = Field(
        default_factory=lambda: Path.home() / ".smart-bookmarks"
    )

    # Logging
    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    log_to_file: bool = False

    @property
    def config_file(self) -> Path:
        """Default configuration file path"""
        return self.config_dir / "config.json"

    def get_log_file(self) -> Optional[Path]:
        """Get log file path if logging to file is enabled"""
        if not self.log_to_file:
            return None
        log_dir = self.config_dir / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        return log_dir / "smart-bookmarks.log"
