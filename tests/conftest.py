"""Pytest configuration and shared fixtures"""

import asyncio
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional

import pytest

from vod_backup.models.settings import StoredSettings
from vod_backup.models.video import Quality, SourceItem
from vod_backup.providers.base import ItemSource
from vod_backup.providers.exceptions import DownloadError
from vod_backup.services.download_queue import DownloadQueue
from vod_backup.services.process_supervisor import ProcessHandle, ProgressCallback, ProgressEvent
from vod_backup.services.task_store import TaskStore

WaitUntil = Callable[[Callable[[], bool]], Awaitable[None]]


@pytest.fixture(autouse=True)
def reset_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset environment variables before each test"""
    for key in list(os.environ.keys()):
        if key.startswith("VOD_BACKUP_"):
            monkeypatch.delenv(key, raising=False)


def make_item(
    item_id: str,
    owner_id: str = "1001",
    title: str = "Friday Stream",
    created_at: Optional[datetime] = None,
) -> SourceItem:
    return SourceItem(
        id=item_id,
        owner_id=owner_id,
        owner_name="streamer",
        title=title,
        url=f"https://www.twitch.tv/videos/{item_id}",
        created_at=created_at or datetime(2025, 1, 31, 20, 0, tzinfo=timezone.utc),
        duration="1h0m0s",
    )


class FakeItemSource(ItemSource):
    """In-memory item source."""

    def __init__(self) -> None:
        self.items: Dict[str, SourceItem] = {}
        self.recent: Dict[str, List[SourceItem]] = {}
        self.error: Optional[Exception] = None
        self.list_calls: List[str] = []

    def add(self, item: SourceItem) -> SourceItem:
        self.items[item.id] = item
        self.recent.setdefault(item.owner_id, []).insert(0, item)
        return item

    async def get_item(self, item_id: str) -> Optional[SourceItem]:
        if self.error is not None:
            raise self.error
        return self.items.get(item_id)

    async def list_recent_items(self, owner_id: str, limit: int = 20) -> List[SourceItem]:
        self.list_calls.append(owner_id)
        if self.error is not None:
            raise self.error
        return self.recent.get(owner_id, [])[:limit]


class FakeRun:
    """One supervised download whose outcome the test decides."""

    def __init__(
        self,
        url: str,
        output_path: str,
        quality: Quality,
        on_progress: ProgressCallback,
        handle: ProcessHandle,
    ) -> None:
        self.url = url
        self.output_path = output_path
        self.quality = quality
        self.on_progress = on_progress
        self.handle = handle
        self.exit_code = 0
        self.finished = asyncio.Event()

    def emit(self, percent: float, downloaded: int, total: int) -> None:
        self.on_progress(ProgressEvent(percent=percent, downloaded=downloaded, total=total))

    def finish(self, exit_code: int = 0) -> None:
        self.exit_code = exit_code
        self.finished.set()


class FakeSupervisor:
    """Stands in for ProcessSupervisor; runs last until the test finishes them.

    A cancelled handle ends the run the way a SIGTERM'd process would.
    """

    def __init__(self) -> None:
        self.runs: List[FakeRun] = []
        self.running = 0
        self.max_running = 0

    async def run(
        self,
        url: str,
        output_path: str,
        quality: Quality,
        on_progress: ProgressCallback,
        handle: Optional[ProcessHandle] = None,
    ) -> None:
        fake = FakeRun(url, output_path, quality, on_progress, handle or ProcessHandle())
        self.runs.append(fake)
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            while not fake.finished.is_set():
                if fake.handle.cancel_requested:
                    fake.exit_code = -15
                    break
                await asyncio.sleep(0.005)
        finally:
            self.running -= 1

        if fake.exit_code != 0:
            raise DownloadError(
                f"yt-dlp exited with code {fake.exit_code}", exit_code=fake.exit_code
            )
        fake.emit(100.0, 1024, 1024)

    def run_for(self, item_id: str) -> FakeRun:
        for fake in self.runs:
            if fake.url.endswith(f"/{item_id}"):
                return fake
        raise AssertionError(f"No run started for {item_id}")


class VirtualClock:
    """Clock and sleep pair for driving the scheduler in virtual time.

    Every sleep waits for a call to ``release()`` and then advances the
    clock by the requested delay.
    """

    def __init__(self, start: datetime) -> None:
        self.now = start
        self.sleeps: List[float] = []
        self._tickets = 0

    def __call__(self) -> datetime:
        return self.now

    def release(self, count: int = 1) -> None:
        self._tickets += count

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        while self._tickets == 0:
            await asyncio.sleep(0.001)
        self._tickets -= 1
        self.now += timedelta(seconds=delay)


@pytest.fixture
def download_dir(tmp_path: Path) -> Path:
    return tmp_path / "vods"


@pytest.fixture
def store(tmp_path: Path, download_dir: Path) -> TaskStore:
    """Task store with credentials and a download path configured."""
    store = TaskStore(str(tmp_path / "store.json"))
    store.initialize_settings(
        StoredSettings(
            client_id="test-client-id",
            client_secret="test-client-secret",
            download_path=str(download_dir),
        )
    )
    return store


@pytest.fixture
def source() -> FakeItemSource:
    return FakeItemSource()


@pytest.fixture
def supervisor() -> FakeSupervisor:
    return FakeSupervisor()


@pytest.fixture
def queue(store: TaskStore, source: FakeItemSource, supervisor: FakeSupervisor) -> DownloadQueue:
    return DownloadQueue(store=store, source=source, supervisor=supervisor, concurrency=2)  # type: ignore[arg-type]


@pytest.fixture
def wait_until() -> WaitUntil:
    """Poll a condition while letting the event loop run."""

    async def _wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.001)

    return _wait
