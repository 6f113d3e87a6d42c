"""Durable storage for download tasks, scheduled jobs and settings.

The store is a single JSON document with three top-level collections:
- config: user-editable settings
- downloads: the download task list
- scheduled_jobs: recurring backup rules

Every write replaces a whole collection and rewrites the document
atomically (temporary file + rename). Writes are serialized by a lock,
so concurrent updates to the same record resolve as last-writer-wins.
"""

import copy
import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from vod_backup.models.schedule import ScheduledJob
from vod_backup.models.settings import StoredSettings
from vod_backup.models.task import DownloadTask, TaskStatus
from vod_backup.providers.exceptions import VodBackupError

logger = structlog.get_logger(__name__)

CONFIG = "config"
DOWNLOADS = "downloads"
SCHEDULED_JOBS = "scheduled_jobs"

COLLECTION_DEFAULTS: Dict[str, Any] = {
    CONFIG: {},
    DOWNLOADS: [],
    SCHEDULED_JOBS: [],
}

INTERRUPTED_DOWNLOAD_MESSAGE = "Interrupted: service restarted during download"
INTERRUPTED_PENDING_MESSAGE = "Interrupted: service restarted before download started"


class StorageError(VodBackupError):
    """Exception raised when the store document cannot be read or written."""

    pass


class TaskNotFoundError(VodBackupError):
    """Raised when a download task is not found."""

    pass


class JobNotFoundError(VodBackupError):
    """Raised when a scheduled job is not found."""

    pass


class TaskStore:
    """JSON-document backed store for tasks, scheduled jobs and settings."""

    def __init__(self, path: str) -> None:
        """Initialize the store.

        Args:
            path: Location of the JSON document. Created on first write.
        """
        self.path = Path(path)
        self._lock = threading.RLock()
        self._data: Dict[str, Any] = copy.deepcopy(COLLECTION_DEFAULTS)
        self._load()

    # ------------------------------------------------------------------
    # Raw collection access
    # ------------------------------------------------------------------

    def _load(self) -> None:
        if not self.path.exists():
            logger.info("task_store_created", path=str(self.path))
            return

        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to read store document {self.path}: {e}") from e

        if not isinstance(data, dict):
            raise StorageError(f"Store document {self.path} is not a JSON object")

        for name, default in COLLECTION_DEFAULTS.items():
            self._data[name] = data.get(name, copy.deepcopy(default))

        logger.info(
            "task_store_loaded",
            path=str(self.path),
            downloads=len(self._data[DOWNLOADS]),
            scheduled_jobs=len(self._data[SCHEDULED_JOBS]),
        )

    def _flush(self) -> None:
        """Write the whole document atomically. Must be called with lock held."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=str(self.path.parent), prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(self._data, f, indent=2)
                os.replace(tmp_path, self.path)
            except BaseException:
                Path(tmp_path).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StorageError(f"Failed to write store document {self.path}: {e}") from e

    def get(self, collection: str) -> Any:
        """Return a copy of a top-level collection."""
        if collection not in COLLECTION_DEFAULTS:
            raise KeyError(f"Unknown collection: {collection}")
        with self._lock:
            return copy.deepcopy(self._data[collection])

    def set(self, collection: str, value: Any) -> None:
        """Replace a top-level collection and persist the document."""
        if collection not in COLLECTION_DEFAULTS:
            raise KeyError(f"Unknown collection: {collection}")
        with self._lock:
            self._data[collection] = copy.deepcopy(value)
            self._flush()

    def _upsert(self, collection: str, record: Dict[str, Any]) -> None:
        with self._lock:
            records: List[Dict[str, Any]] = self.get(collection)
            for index, existing in enumerate(records):
                if existing["id"] == record["id"]:
                    records[index] = record
                    break
            else:
                records.append(record)
            self.set(collection, records)

    def _delete(self, collection: str, record_id: str) -> bool:
        with self._lock:
            records: List[Dict[str, Any]] = self.get(collection)
            remaining = [r for r in records if r["id"] != record_id]
            if len(remaining) == len(records):
                return False
            self.set(collection, remaining)
            return True

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def initialize_settings(self, defaults: StoredSettings) -> StoredSettings:
        """Persist default settings unless settings already exist.

        Keys missing from an older document are filled from the defaults.
        """
        with self._lock:
            current = self.get(CONFIG)
            merged = {**defaults.model_dump(mode="json"), **current}
            if merged != current:
                self.set(CONFIG, merged)
            return StoredSettings.model_validate(merged)

    def get_settings(self) -> StoredSettings:
        return StoredSettings.model_validate(self.get(CONFIG))

    def update_settings(self, **updates: Any) -> StoredSettings:
        """Apply a partial update to the stored settings."""
        with self._lock:
            settings = self.get_settings().model_copy(update=updates)
            # model_copy skips validation
            settings = StoredSettings.model_validate(settings.model_dump())
            self.set(CONFIG, settings.model_dump(mode="json"))
            return settings

    # ------------------------------------------------------------------
    # Download tasks
    # ------------------------------------------------------------------

    def save_task(self, task: DownloadTask) -> None:
        self._upsert(DOWNLOADS, task.to_dict())

    def get_task(self, task_id: str) -> Optional[DownloadTask]:
        with self._lock:
            for record in self._data[DOWNLOADS]:
                if record["id"] == task_id:
                    return DownloadTask.from_dict(record)
        return None

    def get_task_or_raise(self, task_id: str) -> DownloadTask:
        task = self.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task not found: {task_id}")
        return task

    def list_tasks(self, status: Optional[TaskStatus] = None) -> List[DownloadTask]:
        """List tasks, newest first, optionally filtered by status."""
        tasks = [DownloadTask.from_dict(r) for r in self.get(DOWNLOADS)]
        if status is not None:
            tasks = [t for t in tasks if t.status == status]
        tasks.sort(key=lambda t: t.created_at, reverse=True)
        return tasks

    def remove_task(self, task_id: str) -> bool:
        return self._delete(DOWNLOADS, task_id)

    def has_completed_download(self, source_item_id: str) -> bool:
        """Check whether any task for this item finished successfully."""
        with self._lock:
            return any(
                r["source_item_id"] == source_item_id
                and r["status"] == TaskStatus.COMPLETED.value
                for r in self._data[DOWNLOADS]
            )

    def recover_interrupted(self) -> int:
        """Fail tasks that a previous run left pending or downloading.

        The queue does not resume work across restarts, so such tasks would
        otherwise stay in a non-terminal state forever.

        Returns:
            Number of tasks marked as failed.
        """
        with self._lock:
            recovered = 0
            records = self.get(DOWNLOADS)
            for index, record in enumerate(records):
                task = DownloadTask.from_dict(record)
                if task.status == TaskStatus.DOWNLOADING:
                    task.fail(INTERRUPTED_DOWNLOAD_MESSAGE)
                elif task.status == TaskStatus.PENDING:
                    task.fail(INTERRUPTED_PENDING_MESSAGE)
                else:
                    continue
                records[index] = task.to_dict()
                recovered += 1
                logger.warning(
                    "interrupted_task_recovered",
                    task_id=task.id,
                    source_item_id=task.source_item_id,
                )
            if recovered:
                self.set(DOWNLOADS, records)
            return recovered

    # ------------------------------------------------------------------
    # Scheduled jobs
    # ------------------------------------------------------------------

    def save_job(self, job: ScheduledJob) -> None:
        self._upsert(SCHEDULED_JOBS, job.to_dict())

    def get_job(self, job_id: str) -> Optional[ScheduledJob]:
        with self._lock:
            for record in self._data[SCHEDULED_JOBS]:
                if record["id"] == job_id:
                    return ScheduledJob.from_dict(record)
        return None

    def get_job_or_raise(self, job_id: str) -> ScheduledJob:
        job = self.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"Scheduled job not found: {job_id}")
        return job

    def list_jobs(self) -> List[ScheduledJob]:
        return [ScheduledJob.from_dict(r) for r in self.get(SCHEDULED_JOBS)]

    def remove_job(self, job_id: str) -> bool:
        return self._delete(SCHEDULED_JOBS, job_id)
