"""Tests for configuration management"""

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from vod_backup.core.config import ConfigService, DownloadsConfig, LoggingConfig, SchedulerConfig
from vod_backup.models.video import Quality


class TestConfigService:
    """Test ConfigService functionality"""

    def test_load_from_yaml(self, tmp_path: Path) -> None:
        """Test loading configuration from YAML file"""
        config_file = tmp_path / "config.yaml"
        config_data = {
            "server": {"host": "0.0.0.0", "port": 9000},
            "downloads": {"download_path": "/srv/vods", "preferred_quality": "720p60"},
            "logging": {"level": "debug"},
        }

        with open(config_file, "w") as f:
            yaml.dump(config_data, f)

        config = ConfigService(str(config_file)).load()

        assert config.server.host == "0.0.0.0"
        assert config.server.port == 9000
        assert config.downloads.download_path == "/srv/vods"
        assert config.downloads.preferred_quality == Quality.P720_60
        assert config.logging.level == "DEBUG"

    def test_load_with_defaults(self, tmp_path: Path) -> None:
        """Test missing file falls back to defaults"""
        config = ConfigService(str(tmp_path / "missing.yaml")).load()

        assert config.server.host == "127.0.0.1"
        assert config.server.port == 8000
        assert config.downloads.max_concurrent == 2
        assert config.downloads.preferred_quality == Quality.SOURCE
        assert config.downloads.ytdlp_binary == "yt-dlp"
        assert config.scheduler.recent_items_limit == 5
        assert config.twitch.client_id == ""
        assert config.downloads.download_path.endswith("twitch-vods")

    def test_empty_file(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text("")

        config = ConfigService(str(config_file)).load()

        assert config.storage.store_path == "data/store.json"

    def test_environment_variable_override(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test environment variable overrides YAML configuration"""
        config_file = tmp_path / "config.yaml"
        with open(config_file, "w") as f:
            yaml.dump({"server": {"host": "127.0.0.1", "port": 8000}}, f)

        monkeypatch.setenv("VOD_BACKUP_SERVER_PORT", "9999")
        monkeypatch.setenv("VOD_BACKUP_TWITCH_CLIENT_SECRET", "from-env")
        monkeypatch.setenv("VOD_BACKUP_DOWNLOADS_MAX_CONCURRENT", "4")

        config = ConfigService(str(config_file)).load()

        assert config.server.port == 9999
        assert config.server.host == "127.0.0.1"
        assert config.twitch.client_secret == "from-env"
        assert config.downloads.max_concurrent == 4

    def test_config_path_from_environment(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        config_file = tmp_path / "custom.yaml"
        config_file.write_text("storage:\n  store_path: /var/lib/vods/store.json\n")
        monkeypatch.setenv("VOD_BACKUP_CONFIG", str(config_file))

        service = ConfigService()

        assert service.config_path == str(config_file)
        assert service.load().storage.store_path == "/var/lib/vods/store.json"

    def test_config_property_before_load(self) -> None:
        with pytest.raises(ValueError, match="not loaded"):
            ConfigService("unused.yaml").config


class TestConfigValidation:
    """Test configuration validators"""

    def test_max_concurrent_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            DownloadsConfig(max_concurrent=0)

    def test_unknown_quality_rejected(self) -> None:
        with pytest.raises(ValidationError):
            DownloadsConfig(preferred_quality="4k")

    @pytest.mark.parametrize("limit", [0, 101])
    def test_recent_items_limit_range(self, limit: int) -> None:
        with pytest.raises(ValidationError):
            SchedulerConfig(recent_items_limit=limit)

    def test_invalid_log_level(self) -> None:
        with pytest.raises(ValidationError):
            LoggingConfig(level="VERBOSE")

    def test_invalid_log_format(self) -> None:
        with pytest.raises(ValidationError):
            LoggingConfig(format="xml")
