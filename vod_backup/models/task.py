"""Download task data models.

A task is one attempt to back up a single source item. Tasks are persisted
by the task store and mutated only by the queue execution that owns them.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from vod_backup.models.video import Quality
from vod_backup.providers.exceptions import VodBackupError

CANCELLED_MESSAGE = "Cancelled by user"


class TaskStatus(str, Enum):
    """Status of a download task.

    State transitions (forward only):
    - PENDING -> DOWNLOADING: When a queue slot picks up the task
    - PENDING -> FAILED: When the task is cancelled before it starts
    - DOWNLOADING -> COMPLETED: When the downloader exits cleanly
    - DOWNLOADING -> FAILED: When the downloader fails or is cancelled
    """

    PENDING = "pending"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    FAILED = "failed"


ALLOWED_TRANSITIONS = {
    TaskStatus.PENDING: {TaskStatus.DOWNLOADING, TaskStatus.FAILED},
    TaskStatus.DOWNLOADING: {TaskStatus.COMPLETED, TaskStatus.FAILED},
    TaskStatus.COMPLETED: set(),
    TaskStatus.FAILED: set(),
}


class InvalidTransitionError(VodBackupError):
    """Raised when a task status change would move backwards or skip a state."""

    pass


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


@dataclass
class DownloadTask:
    """Represents one backup attempt of a source item."""

    id: str
    source_item_id: str
    owner_id: str
    owner_name: str
    title: str
    quality: Quality = Quality.SOURCE
    status: TaskStatus = TaskStatus.PENDING
    progress_percent: float = 0.0
    bytes_downloaded: int = 0
    bytes_total: int = 0
    error_message: Optional[str] = None
    output_path: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    def is_terminal(self) -> bool:
        """Check if the task is in a terminal state (completed or failed)."""
        return self.status in (TaskStatus.COMPLETED, TaskStatus.FAILED)

    def transition_to(self, status: TaskStatus) -> None:
        """Move the task to a new status, enforcing forward-only transitions.

        Raises:
            InvalidTransitionError: If the transition is not allowed.
        """
        if status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Task {self.id} cannot move from {self.status.value} to {status.value}"
            )
        self.status = status
        if self.is_terminal():
            self.completed_at = datetime.now(timezone.utc)

    def update_progress(self, percent: float, downloaded: int, total: int) -> None:
        """Record a progress sample. Ignored unless the task is downloading."""
        if self.status != TaskStatus.DOWNLOADING:
            return
        self.progress_percent = max(0.0, min(100.0, percent))
        self.bytes_downloaded = downloaded
        self.bytes_total = total

    def complete(self) -> None:
        self.transition_to(TaskStatus.COMPLETED)
        self.progress_percent = 100.0

    def fail(self, error_message: str) -> None:
        self.transition_to(TaskStatus.FAILED)
        self.error_message = error_message

    def to_dict(self) -> Dict[str, Any]:
        """Convert task to dictionary for storage and API responses."""
        return {
            "id": self.id,
            "source_item_id": self.source_item_id,
            "owner_id": self.owner_id,
            "owner_name": self.owner_name,
            "title": self.title,
            "quality": self.quality.value,
            "status": self.status.value,
            "progress_percent": self.progress_percent,
            "bytes_downloaded": self.bytes_downloaded,
            "bytes_total": self.bytes_total,
            "error_message": self.error_message,
            "output_path": self.output_path,
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DownloadTask":
        """Rebuild a task from its stored representation."""
        return cls(
            id=data["id"],
            source_item_id=data["source_item_id"],
            owner_id=data["owner_id"],
            owner_name=data.get("owner_name", ""),
            title=data.get("title", ""),
            quality=Quality(data.get("quality", Quality.SOURCE.value)),
            status=TaskStatus(data["status"]),
            progress_percent=float(data.get("progress_percent", 0.0)),
            bytes_downloaded=int(data.get("bytes_downloaded", 0)),
            bytes_total=int(data.get("bytes_total", 0)),
            error_message=data.get("error_message"),
            output_path=data.get("output_path"),
            created_at=_parse_datetime(data.get("created_at")) or datetime.now(timezone.utc),
            completed_at=_parse_datetime(data.get("completed_at")),
        )
