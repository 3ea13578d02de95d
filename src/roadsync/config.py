"""
Configuration management for RoadSync.

This module provides centralized configuration management using Pydantic
for type validation and python-dotenv for environment variable loading.
"""

import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator


class SyncConfig(BaseModel):
    """
    Sync core configuration model with validation.

    All configuration values are loaded from environment variables.
    Nothing is strictly required: without a backend or Firebase setup the
    core still runs and every write lands in the local store.
    """

    log_level: str = Field(default="INFO", description="Logging level")
    log_dir: str = Field(default="logs", description="Directory for rotating log files")

    # Relational store
    database_url: str = Field(
        default="sqlite:///data/roadsync.db", description="Relational store URL"
    )

    # On-device ephemeral store
    local_store_path: str = Field(
        default="data/local_cache.db", description="Local fallback store path"
    )

    # Backend HTTP API
    backend_url: str = Field(default="http://localhost:3000", description="Backend base URL")
    backend_fallback_urls: List[str] = Field(
        default_factory=list, description="Extra backend URLs tried in order after backend_url"
    )
    backend_status_path: str = Field(
        default="/status", description="Cheap endpoint used for reachability probes"
    )
    backend_token: Optional[str] = Field(default=None, description="Bearer token for the backend")
    embedded_backend: bool = Field(
        default=False, description="Serve backend records from the relational store in-process"
    )

    # Firebase settings
    firebase_credentials_path: Optional[str] = Field(
        default=None, description="Path to the Firebase service-account JSON"
    )
    firebase_project_id: Optional[str] = Field(default=None, description="Firebase project id")
    firebase_api_key: Optional[str] = Field(
        default=None, description="Firebase web API key used by the connectivity probe"
    )
    cloud_probe_url: str = Field(
        default="https://www.googleapis.com/identitytoolkit/v3/relyingparty/getProjectConfig",
        description="URL used to check cloud connectivity",
    )
    cloud_mode: str = Field(
        default="auto", description="Cloud availability mode: auto, online or offline"
    )

    # Availability and timeouts
    availability_ttl_seconds: float = Field(
        default=300.0, description="How long a probe result stays valid"
    )
    probe_timeout_seconds: float = Field(default=3.0, description="Reachability probe timeout")
    request_timeout_seconds: float = Field(
        default=10.0, description="Timeout applied to each store call"
    )
    cloud_page_size: int = Field(
        default=1000, description="Page size when listing cloud identities"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            levels_str = ", ".join(valid_levels)
            raise ValueError(f"Log level must be one of: {levels_str}")
        return v.upper()

    @field_validator("backend_url", "cloud_probe_url")
    @classmethod
    def validate_url(cls, v):
        """Validate HTTP URLs and strip the trailing slash."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"URL must start with http:// or https://: {v}")
        return v.rstrip("/")

    @field_validator("backend_fallback_urls", mode="before")
    @classmethod
    def validate_fallback_urls(cls, v):
        """Accept a comma-separated string or a list of URLs."""
        if v is None:
            return []
        if isinstance(v, str):
            v = [part.strip() for part in v.split(",") if part.strip()]
        urls = []
        for url in v:
            if not url.startswith(("http://", "https://")):
                raise ValueError(f"Fallback URL must start with http:// or https://: {url}")
            urls.append(url.rstrip("/"))
        return urls

    @field_validator("backend_status_path")
    @classmethod
    def validate_status_path(cls, v):
        """Validate the probe path."""
        if not v.startswith("/"):
            raise ValueError("Backend status path must start with '/'")
        return v

    @field_validator("cloud_mode")
    @classmethod
    def validate_cloud_mode(cls, v):
        """Validate cloud availability mode."""
        valid_modes = ["auto", "online", "offline"]
        if v.lower() not in valid_modes:
            raise ValueError(f"Cloud mode must be one of: {', '.join(valid_modes)}")
        return v.lower()

    @field_validator("availability_ttl_seconds")
    @classmethod
    def validate_ttl(cls, v):
        """Validate availability cache TTL."""
        if v <= 0:
            raise ValueError("Availability TTL must be positive")
        return v

    @field_validator("probe_timeout_seconds", "request_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v):
        """Validate timeouts."""
        if v <= 0:
            raise ValueError("Timeout must be positive")
        if v > 60:
            raise ValueError("Timeout should not exceed 60 seconds")
        return v

    @field_validator("cloud_page_size")
    @classmethod
    def validate_cloud_page_size(cls, v):
        """Validate identity listing page size."""
        if v < 1:
            raise ValueError("Cloud page size must be at least 1")
        if v > 1000:
            raise ValueError("Cloud page size cannot exceed 1000")
        return v

    @model_validator(mode="after")
    def validate_firebase_settings(self):
        """Validate Firebase settings consistency."""
        if self.cloud_mode == "online" and not self.firebase_credentials_path:
            raise ValueError(
                "Firebase credentials path is required when cloud mode is 'online'"
            )

        if self.firebase_credentials_path:
            credentials_path = Path(self.firebase_credentials_path)
            if credentials_path.is_dir():
                raise ValueError(
                    f"Firebase credentials path '{self.firebase_credentials_path}' "
                    "is a directory, not a file"
                )

        return self

    @property
    def backend_candidates(self) -> List[str]:
        """Backend base URLs in probing order, without duplicates."""
        candidates: List[str] = []
        for url in [self.backend_url, *self.backend_fallback_urls]:
            if url not in candidates:
                candidates.append(url)
        return candidates


class ConfigManager:
    """
    Configuration manager for the RoadSync application.

    Handles loading and validation of configuration from environment variables
    and .env files.
    """

    def __init__(self, env_file: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            env_file: Path to .env file. If None, looks for .env in current
                directory.
        """
        self._config: Optional[SyncConfig] = None
        self._env_file = env_file or ".env"
        self._load_env()

    def _load_env(self) -> None:
        """Load environment variables from .env file if it exists."""
        env_path = Path(self._env_file)
        if env_path.exists():
            load_dotenv(env_path)

    @property
    def config(self) -> SyncConfig:
        """
        Get validated configuration.

        Returns:
            SyncConfig: Validated configuration instance

        Raises:
            ValidationError: If configuration is invalid
        """
        if self._config is None:
            self._config = SyncConfig(
                log_level=os.getenv("LOG_LEVEL", "INFO"),
                log_dir=os.getenv("LOG_DIR", "logs"),
                database_url=os.getenv("DATABASE_URL", "sqlite:///data/roadsync.db"),
                local_store_path=os.getenv("LOCAL_STORE_PATH", "data/local_cache.db"),
                # Backend settings
                backend_url=os.getenv("BACKEND_URL", "http://localhost:3000"),
                backend_fallback_urls=os.getenv("BACKEND_FALLBACK_URLS", ""),
                backend_status_path=os.getenv("BACKEND_STATUS_PATH", "/status"),
                backend_token=os.getenv("BACKEND_TOKEN"),
                embedded_backend=os.getenv("EMBEDDED_BACKEND", "false").lower() == "true",
                # Firebase settings
                firebase_credentials_path=os.getenv("FIREBASE_CREDENTIALS_PATH"),
                firebase_project_id=os.getenv("FIREBASE_PROJECT_ID"),
                firebase_api_key=os.getenv("FIREBASE_API_KEY"),
                cloud_probe_url=os.getenv(
                    "CLOUD_PROBE_URL",
                    "https://www.googleapis.com/identitytoolkit/v3/relyingparty/getProjectConfig",
                ),
                cloud_mode=os.getenv("CLOUD_MODE", "auto"),
                # Availability settings
                availability_ttl_seconds=float(os.getenv("AVAILABILITY_TTL_SECONDS", "300")),
                probe_timeout_seconds=float(os.getenv("PROBE_TIMEOUT_SECONDS", "3")),
                request_timeout_seconds=float(os.getenv("REQUEST_TIMEOUT_SECONDS", "10")),
                cloud_page_size=int(os.getenv("CLOUD_PAGE_SIZE", "1000")),
            )
        return self._config

    def reload(self) -> None:
        """Reload configuration from environment variables."""
        self._config = None
        self._load_env()

    def get_log_level(self) -> str:
        """Get logging level."""
        return self.config.log_level

    def get_log_dir(self) -> str:
        """Get directory for log files."""
        return self.config.log_dir

    def get_database_url(self) -> str:
        """Get relational store URL."""
        return self.config.database_url

    def is_firebase_configured(self) -> bool:
        """Check if Firebase credentials are available."""
        path = self.config.firebase_credentials_path
        return bool(path) and Path(path).is_file()


# Global configuration manager instance
_config_manager: Optional[ConfigManager] = None


def get_config_manager() -> ConfigManager:
    """
    Get global configuration manager instance.

    Returns:
        ConfigManager: Global configuration manager instance
    """
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager


def get_config() -> SyncConfig:
    """
    Get validated sync configuration.

    Returns:
        SyncConfig: Validated configuration instance
    """
    return get_config_manager().config
