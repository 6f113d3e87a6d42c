"""API endpoints."""

from vod_backup.api import downloads, health, metrics, owners, progress, schedules, settings

__all__ = [
    "downloads",
    "health",
    "metrics",
    "owners",
    "progress",
    "schedules",
    "settings",
]
