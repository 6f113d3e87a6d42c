"""Download queue with bounded concurrency.

Tasks wait in FIFO order until a slot is free. Each started task runs as its
own asyncio task that owns the task record until it reaches a terminal
state; nothing else mutates a task while it is downloading.
"""

import asyncio
import re
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Deque, Dict, Optional, Set, Tuple

import structlog

from vod_backup.core.logging import bind_task_context
from vod_backup.core.metrics import MetricsCollector
from vod_backup.models.task import CANCELLED_MESSAGE, DownloadTask, TaskStatus
from vod_backup.models.video import Quality, SourceItem
from vod_backup.providers.base import ItemSource
from vod_backup.providers.exceptions import ConfigurationError, DownloadError, ItemNotFoundError
from vod_backup.services.process_supervisor import ProcessHandle, ProcessSupervisor, ProgressEvent
from vod_backup.services.task_store import StorageError, TaskStore

logger = structlog.get_logger(__name__)

DEFAULT_CONCURRENCY = 2
SHUTDOWN_MESSAGE = "Interrupted: service shutting down"

# Minimum seconds between persisted progress samples of one task
PROGRESS_PERSIST_INTERVAL = 1.0

_UNSAFE_TITLE_CHARS = re.compile(r"[^a-z0-9]", re.IGNORECASE | re.ASCII)

ProgressObserver = Callable[[str, float, int, int], None]


def sanitize_title(title: str) -> str:
    """Replace every non-alphanumeric character with '_' and lower-case."""
    return _UNSAFE_TITLE_CHARS.sub("_", title).lower()


def build_output_filename(item: SourceItem) -> str:
    """Deterministic file name: <creation date>_<safe title>_<item id>.mp4"""
    created = item.created_at
    if created.tzinfo is not None:
        created = created.astimezone(timezone.utc)
    return f"{created.date().isoformat()}_{sanitize_title(item.title)}_{item.id}.mp4"


@dataclass
class DownloadRequest:
    """A request to back up one source item."""

    item_id: str
    owner_id: str
    owner_name: str
    quality: Quality = Quality.SOURCE


@dataclass
class _ActiveDownload:
    task_id: str
    item: SourceItem
    handle: ProcessHandle = field(default_factory=ProcessHandle)
    runner: Optional["asyncio.Task[None]"] = None


class DownloadQueue:
    """Bounded-concurrency executor for download tasks.

    Features:
    - FIFO start order among queued tasks
    - Runtime-adjustable concurrency limit
    - Cancellation of queued and running tasks
    - Single progress observer
    """

    def __init__(
        self,
        store: TaskStore,
        source: ItemSource,
        supervisor: ProcessSupervisor,
        concurrency: int = DEFAULT_CONCURRENCY,
    ) -> None:
        """Initialize the download queue.

        Args:
            store: Persistence for task records and settings.
            source: Item lookup used to validate requests.
            supervisor: Runs the downloader process.
            concurrency: Maximum number of simultaneous downloads.
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        self._store = store
        self._source = source
        self._supervisor = supervisor
        self._concurrency = concurrency

        self._pending: Deque[str] = deque()
        self._pending_items: Dict[str, SourceItem] = {}
        self._active: Dict[str, _ActiveDownload] = {}
        self._runners: Set["asyncio.Task[None]"] = set()
        self._observer: Optional[ProgressObserver] = None
        self._idle = asyncio.Event()
        self._idle.set()
        self._stopping = False

        logger.debug("download_queue_initialized", concurrency=concurrency)

    @property
    def concurrency(self) -> int:
        return self._concurrency

    def size(self) -> Tuple[int, int]:
        """Return (queued, active) task counts."""
        return len(self._pending), len(self._active)

    def set_progress_observer(self, observer: Optional[ProgressObserver]) -> None:
        """Register the progress observer, replacing any previous one."""
        self._observer = observer

    def set_concurrency(self, concurrency: int) -> None:
        """Change the concurrency limit.

        Raising the limit starts queued tasks immediately. Lowering it never
        interrupts running downloads; new starts wait until enough finish.
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        old = self._concurrency
        self._concurrency = concurrency
        logger.info("download_concurrency_changed", old=old, new=concurrency)
        self._start_ready()

    async def enqueue(self, request: DownloadRequest) -> str:
        """Validate a request, persist a pending task and queue it.

        Args:
            request: What to download.

        Returns:
            The new task id.

        Raises:
            ConfigurationError: If no download path is configured.
            ItemNotFoundError: If the source item does not exist.
            ListingError: If the lookup request fails.
        """
        if self._stopping:
            raise RuntimeError("Download queue is shutting down")

        if not self._store.get_settings().download_path:
            raise ConfigurationError("Download path is not configured")

        item = await self._source.get_item(request.item_id)
        if item is None:
            raise ItemNotFoundError(f"VOD not found: {request.item_id}")

        task = DownloadTask(
            id=str(uuid.uuid4()),
            source_item_id=item.id,
            owner_id=request.owner_id,
            owner_name=request.owner_name,
            title=item.title,
            quality=request.quality,
            created_at=datetime.now(timezone.utc),
        )
        self._store.save_task(task)

        self._pending.append(task.id)
        self._pending_items[task.id] = item
        self._idle.clear()

        logger.info(
            "task_enqueued",
            task_id=task.id,
            source_item_id=item.id,
            owner_id=request.owner_id,
            quality=request.quality.value,
            queue_size=len(self._pending),
        )

        self._start_ready()
        return task.id

    def cancel(self, task_id: str) -> bool:
        """Cancel a queued or running task.

        A running task receives a termination signal; its failed state is
        recorded once the process exits. A queued task is dropped from the
        queue and marked failed right away.

        Returns:
            True if a running download was signalled, False otherwise.
        """
        active = self._active.get(task_id)
        if active is not None:
            active.handle.cancel()
            logger.info("task_cancel_requested", task_id=task_id, pid=active.handle.pid)
            return True

        if task_id in self._pending_items:
            self._pending.remove(task_id)
            del self._pending_items[task_id]

            task = self._store.get_task(task_id)
            if task is not None and not task.is_terminal():
                task.fail(CANCELLED_MESSAGE)
                self._store.save_task(task)

            logger.info("queued_task_cancelled", task_id=task_id)
            self._after_change()

        return False

    async def join(self) -> None:
        """Wait until no task is queued or running."""
        await self._idle.wait()

    async def stop(self) -> None:
        """Fail queued tasks, terminate running downloads and wait for them."""
        self._stopping = True

        while self._pending:
            task_id = self._pending.popleft()
            self._pending_items.pop(task_id, None)
            task = self._store.get_task(task_id)
            if task is not None and not task.is_terminal():
                task.fail(SHUTDOWN_MESSAGE)
                self._persist(task)

        for active in list(self._active.values()):
            active.handle.cancel()

        if self._runners:
            await asyncio.gather(*self._runners, return_exceptions=True)

        self._after_change()
        logger.info("download_queue_stopped")

    def _start_ready(self) -> None:
        """Start queued tasks while slots are free."""
        while self._pending and len(self._active) < self._concurrency and not self._stopping:
            task_id = self._pending.popleft()
            item = self._pending_items.pop(task_id)

            task = self._store.get_task(task_id)
            if task is None or task.status != TaskStatus.PENDING:
                logger.warning("queued_task_skipped", task_id=task_id)
                continue

            task.transition_to(TaskStatus.DOWNLOADING)
            self._persist(task)

            active = _ActiveDownload(task_id=task_id, item=item)
            self._active[task_id] = active
            active.runner = asyncio.create_task(self._execute(task, active))
            self._runners.add(active.runner)
            active.runner.add_done_callback(self._runners.discard)

            logger.info(
                "task_started",
                task_id=task_id,
                active_count=len(self._active),
                remaining_queue_size=len(self._pending),
            )

        self._after_change()

    def _after_change(self) -> None:
        MetricsCollector.update_queue_metrics(
            queue_size=len(self._pending),
            active_downloads=len(self._active),
        )
        if not self._pending and not self._active:
            self._idle.set()

    def _output_path(self, task: DownloadTask, item: SourceItem) -> str:
        download_path = self._store.get_settings().download_path
        if not download_path:
            raise ConfigurationError("Download path is not configured")

        output_dir = Path(download_path) / task.owner_id
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(f"Invalid download path {output_dir}: {e}") from e
        return str(output_dir / build_output_filename(item))

    async def _execute(self, task: DownloadTask, active: _ActiveDownload) -> None:
        """Run one task to a terminal state."""
        bind_task_context(task.id)
        started = time.monotonic()
        last_persisted = 0.0

        def on_progress(event: ProgressEvent) -> None:
            nonlocal last_persisted
            task.update_progress(event.percent, event.downloaded, event.total)

            now = time.monotonic()
            if now - last_persisted >= PROGRESS_PERSIST_INTERVAL:
                self._persist(task)
                last_persisted = now

            self._notify(task.id, event)

        try:
            task.output_path = self._output_path(task, active.item)
            self._persist(task)

            await self._supervisor.run(
                active.item.url,
                task.output_path,
                task.quality,
                on_progress,
                active.handle,
            )
            if active.handle.cancel_requested:
                # cancel() arrived after the process had already exited
                task.fail(SHUTDOWN_MESSAGE if self._stopping else CANCELLED_MESSAGE)
                logger.info("download_cancelled_after_exit", output_path=task.output_path)
            else:
                task.complete()
                logger.info("download_completed", output_path=task.output_path)

        except DownloadError as e:
            if self._stopping:
                message = SHUTDOWN_MESSAGE
            elif active.handle.cancel_requested:
                message = CANCELLED_MESSAGE
            else:
                message = str(e)
            task.fail(message)
            logger.warning("download_failed", error=message, exit_code=e.exit_code)

        except ConfigurationError as e:
            task.fail(str(e))
            logger.error("download_failed_configuration", error=str(e))

        except asyncio.CancelledError:
            task.fail(SHUTDOWN_MESSAGE)
            raise

        except Exception as e:
            task.fail(f"Unexpected error: {e}")
            logger.error("download_failed_unexpected_error", error=str(e), exc_info=True)

        finally:
            try:
                self._persist(task)
                MetricsCollector.record_download(
                    status=task.status.value,
                    duration=time.monotonic() - started,
                )
            finally:
                self._active.pop(task.id, None)
                self._start_ready()

    def _persist(self, task: DownloadTask) -> None:
        """Save a task record, logging instead of raising on storage failure.

        A failed write must not hold a queue slot or stall the queue. The
        record is written again on the task's next state change.
        """
        try:
            self._store.save_task(task)
        except StorageError as e:
            logger.error(
                "task_persist_failed",
                task_id=task.id,
                status=task.status.value,
                error=str(e),
            )

    def _notify(self, task_id: str, event: ProgressEvent) -> None:
        observer = self._observer
        if observer is None:
            return
        try:
            observer(task_id, event.percent, event.downloaded, event.total)
        except Exception as e:
            logger.error("progress_observer_failed", task_id=task_id, error=str(e), exc_info=True)
