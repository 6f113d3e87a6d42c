"""Source platform data models."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class Quality(str, Enum):
    """Quality selector accepted by the downloader."""

    SOURCE = "source"
    P1080_60 = "1080p60"
    P1080 = "1080p"
    P720_60 = "720p60"
    P720 = "720p"
    P480 = "480p"
    P360 = "360p"
    AUDIO_ONLY = "audio_only"

    @property
    def max_height(self) -> Optional[int]:
        """Maximum frame height for resolution selectors, None otherwise."""
        if self in (Quality.SOURCE, Quality.AUDIO_ONLY):
            return None
        # "720p60" -> 720: the frame-rate suffix is not part of the filter
        return int(self.value.split("p", 1)[0])


@dataclass
class Owner:
    """A channel whose archived videos can be backed up."""

    id: str
    login: str
    display_name: str
    profile_image_url: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Owner":
        """Build an owner from a Helix /users or /search/channels entry."""
        return cls(
            id=str(data["id"]),
            login=data.get("login") or data.get("broadcaster_login", ""),
            display_name=data.get("display_name", ""),
            profile_image_url=data.get("profile_image_url") or data.get("thumbnail_url", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "login": self.login,
            "display_name": self.display_name,
            "profile_image_url": self.profile_image_url,
        }


@dataclass
class SourceItem:
    """One archived video (VOD) identified by a stable id."""

    id: str
    owner_id: str
    owner_name: str
    title: str
    url: str
    created_at: datetime
    duration: Optional[str] = None
    thumbnail_url: Optional[str] = None
    view_count: Optional[int] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "SourceItem":
        """Build an item from a Helix /videos entry."""
        return cls(
            id=str(data["id"]),
            owner_id=str(data.get("user_id", "")),
            owner_name=data.get("user_name", ""),
            title=data.get("title", ""),
            url=data["url"],
            created_at=datetime.fromisoformat(data["created_at"].replace("Z", "+00:00")),
            duration=data.get("duration"),
            thumbnail_url=data.get("thumbnail_url"),
            view_count=data.get("view_count"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "owner_name": self.owner_name,
            "title": self.title,
            "url": self.url,
            "created_at": self.created_at.isoformat(),
            "duration": self.duration,
            "thumbnail_url": self.thumbnail_url,
            "view_count": self.view_count,
        }
