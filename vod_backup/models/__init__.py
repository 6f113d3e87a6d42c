"""Data models for the application."""

from vod_backup.models.schedule import ScheduledJob
from vod_backup.models.settings import StoredSettings
from vod_backup.models.task import (
    CANCELLED_MESSAGE,
    DownloadTask,
    InvalidTransitionError,
    TaskStatus,
)
from vod_backup.models.video import Owner, Quality, SourceItem

__all__ = [
    "CANCELLED_MESSAGE",
    "DownloadTask",
    "InvalidTransitionError",
    "TaskStatus",
    "ScheduledJob",
    "StoredSettings",
    "Owner",
    "Quality",
    "SourceItem",
]
