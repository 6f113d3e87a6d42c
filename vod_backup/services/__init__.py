"""Service layer implementations."""

from vod_backup.services.download_queue import (
    DownloadQueue,
    DownloadRequest,
    build_output_filename,
    sanitize_title,
)
from vod_backup.services.process_supervisor import (
    ParserState,
    ProcessHandle,
    ProcessSupervisor,
    ProgressEvent,
    build_command,
    parse_progress,
)
from vod_backup.services.scheduler import (
    CRON_PATTERNS,
    InvalidScheduleError,
    RunResult,
    Scheduler,
)
from vod_backup.services.task_store import (
    JobNotFoundError,
    StorageError,
    TaskNotFoundError,
    TaskStore,
)

__all__ = [
    # Download queue
    "DownloadQueue",
    "DownloadRequest",
    "build_output_filename",
    "sanitize_title",
    # Process supervisor
    "ParserState",
    "ProcessHandle",
    "ProcessSupervisor",
    "ProgressEvent",
    "build_command",
    "parse_progress",
    # Scheduler
    "CRON_PATTERNS",
    "InvalidScheduleError",
    "RunResult",
    "Scheduler",
    # Task store
    "JobNotFoundError",
    "StorageError",
    "TaskNotFoundError",
    "TaskStore",
]
