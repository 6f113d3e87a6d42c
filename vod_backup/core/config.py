"""Configuration management with YAML and environment variable support"""

import os
from typing import Any, Dict, Optional, Tuple, Type

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from vod_backup.models.video import Quality


class BaseConfigSection(BaseSettings):
    """Base class for all config sections with correct environment variable precedence.

    This class customizes the settings source priority to ensure that:
    1. Environment variables have highest priority
    2. Init kwargs (YAML data) have second priority
    3. Default values have lowest priority
    """

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """Customize settings source priority: env vars > init kwargs > defaults."""
        return (env_settings, init_settings, dotenv_settings, file_secret_settings)


class ServerConfig(BaseConfigSection):
    """Server configuration"""

    host: str = "127.0.0.1"
    port: int = 8000

    model_config = SettingsConfigDict(env_prefix="VOD_BACKUP_SERVER_")


class TwitchConfig(BaseConfigSection):
    """Twitch Helix API credentials and endpoints"""

    client_id: str = ""
    client_secret: str = ""
    api_base: str = "https://api.twitch.tv/helix"
    token_url: str = "https://id.twitch.tv/oauth2/token"
    request_timeout: float = 15.0  # seconds

    model_config = SettingsConfigDict(env_prefix="VOD_BACKUP_TWITCH_")


class DownloadsConfig(BaseConfigSection):
    """Download queue configuration"""

    download_path: str = os.path.join(os.path.expanduser("~"), "Downloads", "twitch-vods")
    max_concurrent: int = 2
    preferred_quality: Quality = Quality.SOURCE
    ytdlp_binary: str = "yt-dlp"

    model_config = SettingsConfigDict(env_prefix="VOD_BACKUP_DOWNLOADS_")

    @field_validator("max_concurrent")
    @classmethod
    def validate_max_concurrent(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_concurrent must be at least 1")
        return v


class StorageConfig(BaseConfigSection):
    """Task store configuration"""

    store_path: str = "data/store.json"

    model_config = SettingsConfigDict(env_prefix="VOD_BACKUP_STORAGE_")


class SchedulerConfig(BaseConfigSection):
    """Scheduled job configuration"""

    recent_items_limit: int = 5
    timezone: str = "UTC"

    model_config = SettingsConfigDict(env_prefix="VOD_BACKUP_SCHEDULER_")

    @field_validator("recent_items_limit")
    @classmethod
    def validate_recent_items_limit(cls, v: int) -> int:
        if not 1 <= v <= 100:
            raise ValueError("recent_items_limit must be between 1 and 100")
        return v


class LoggingConfig(BaseConfigSection):
    """Logging configuration"""

    level: str = "INFO"
    format: str = "json"

    model_config = SettingsConfigDict(env_prefix="VOD_BACKUP_LOGGING_")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"level must be one of {valid_levels}")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        if v not in ("json", "console"):
            raise ValueError("format must be 'json' or 'console'")
        return v


class Config(BaseSettings):
    """Main application configuration"""

    server: ServerConfig = Field(default_factory=ServerConfig)
    twitch: TwitchConfig = Field(default_factory=TwitchConfig)
    downloads: DownloadsConfig = Field(default_factory=DownloadsConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(env_prefix="VOD_BACKUP_")


class ConfigService:
    """Service for loading and managing configuration"""

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or os.environ.get("VOD_BACKUP_CONFIG", "config.yaml")
        self._config: Optional[Config] = None

    def load(self) -> Config:
        """Load configuration from YAML file with environment variable overrides."""
        config_data: Dict[str, Any] = {}

        if os.path.exists(self.config_path):
            with open(self.config_path, "r", encoding="utf-8") as f:
                yaml_data = yaml.safe_load(f)
                if yaml_data:
                    config_data = yaml_data

        self._config = Config(
            server=ServerConfig(**config_data.get("server", {})),
            twitch=TwitchConfig(**config_data.get("twitch", {})),
            downloads=DownloadsConfig(**config_data.get("downloads", {})),
            storage=StorageConfig(**config_data.get("storage", {})),
            scheduler=SchedulerConfig(**config_data.get("scheduler", {})),
            logging=LoggingConfig(**config_data.get("logging", {})),
        )

        return self._config

    @property
    def config(self) -> Config:
        """Get the loaded configuration"""
        if self._config is None:
            raise ValueError("Configuration not loaded. Call load() first.")
        return self._config
