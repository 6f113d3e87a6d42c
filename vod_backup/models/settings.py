"""User-editable settings persisted in the store's config collection."""

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from vod_backup.models.video import Quality

if TYPE_CHECKING:
    from vod_backup.core.config import Config


class StoredSettings(BaseModel):
    """Runtime settings that can be changed without restarting the service."""

    client_id: str = ""
    client_secret: str = ""
    download_path: str = ""
    max_concurrent_downloads: int = Field(2, ge=1)
    preferred_quality: Quality = Quality.SOURCE

    @classmethod
    def from_config(cls, config: "Config") -> "StoredSettings":
        """Seed settings from the bootstrap configuration."""
        return cls(
            client_id=config.twitch.client_id,
            client_secret=config.twitch.client_secret,
            download_path=config.downloads.download_path,
            max_concurrent_downloads=config.downloads.max_concurrent,
            preferred_quality=config.downloads.preferred_quality,
        )

    def has_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)
