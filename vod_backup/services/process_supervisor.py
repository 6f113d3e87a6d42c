"""Supervision of external yt-dlp download processes.

Progress extraction is a pure function over (chunk, parser state) so it can
be tested without spawning anything; the supervisor only wires it to a
process's stdout and maps the exit status to a result.
"""

import asyncio
import re
import signal
from collections import deque
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Deque, List, Optional, Tuple, Union

import structlog

from vod_backup.models.video import Quality
from vod_backup.providers.exceptions import DownloadError

logger = structlog.get_logger(__name__)

PERCENT_PATTERN = re.compile(r"(\d+\.\d+)%")
SIZE_PATTERN = re.compile(r"(\d+\.\d+)([KMG]iB) / (\d+\.\d+)([KMG]iB)")

UNIT_MULTIPLIERS = {
    "KiB": 1024,
    "MiB": 1024**2,
    "GiB": 1024**3,
}

# Lines of stderr kept for failure details
STDERR_TAIL_LINES = 20


@dataclass(frozen=True)
class ProgressEvent:
    """One progress sample relayed to the queue."""

    percent: float
    downloaded: int
    total: int


@dataclass(frozen=True)
class ParserState:
    """Most recent values seen on the output stream."""

    percent: float = 0.0
    downloaded: int = 0
    total: int = 0


ProgressCallback = Callable[[ProgressEvent], Union[None, Awaitable[None]]]


def parse_size(value: str, unit: str) -> int:
    """Convert a binary-prefixed size ("1.50", "GiB") to bytes."""
    return int(float(value) * UNIT_MULTIPLIERS.get(unit, 1))


def parse_progress(chunk: str, state: ParserState) -> Tuple[ParserState, Optional[ProgressEvent]]:
    """Extract progress from one chunk of downloader output.

    The percentage and the size are matched independently. A percentage
    alone only updates the state; a size match produces an event carrying
    the most recently seen percentage.

    Args:
        chunk: Text read from the process's stdout.
        state: State returned for the previous chunk.

    Returns:
        The new state and the event to emit, if any.
    """
    percent_match = PERCENT_PATTERN.search(chunk)
    if percent_match:
        state = replace(state, percent=float(percent_match.group(1)))

    size_match = SIZE_PATTERN.search(chunk)
    if not size_match:
        return state, None

    state = replace(
        state,
        downloaded=parse_size(size_match.group(1), size_match.group(2)),
        total=parse_size(size_match.group(3), size_match.group(4)),
    )
    return state, ProgressEvent(
        percent=state.percent,
        downloaded=state.downloaded,
        total=state.total,
    )


def build_command(binary: str, url: str, output_path: str, quality: Quality) -> List[str]:
    """Build the downloader argument list.

    Args:
        binary: Downloader executable.
        url: Source item URL.
        output_path: Destination file.
        quality: Quality selector.

    Returns:
        Command as a list of arguments.
    """
    cmd = [
        binary,
        url,
        "-o",
        output_path,
        "--no-part",
        "--no-playlist",
        "--concurrent-fragments",
        "4",
        "--newline",
    ]

    if quality == Quality.AUDIO_ONLY:
        cmd.extend(["-f", "bestaudio"])
    elif quality.max_height is not None:
        cmd.extend(["-f", f"best[height<={quality.max_height}]"])

    return cmd


class ProcessHandle:
    """Cancellation handle for one supervised process.

    Cancelling before the process is spawned is remembered and applied
    as soon as the process exists.
    """

    def __init__(self) -> None:
        self._process: Optional[asyncio.subprocess.Process] = None
        self._cancel_requested = False

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    def attach(self, process: asyncio.subprocess.Process) -> None:
        self._process = process
        if self._cancel_requested:
            self._terminate()

    def cancel(self) -> None:
        """Send a termination signal to the process."""
        self._cancel_requested = True
        if self._process is not None:
            self._terminate()

    def _terminate(self) -> None:
        if self._process is None or self._process.returncode is not None:
            return
        try:
            self._process.send_signal(signal.SIGTERM)
        except ProcessLookupError:
            pass


class ProcessSupervisor:
    """Runs the downloader and turns its output into progress events."""

    def __init__(self, binary: str = "yt-dlp") -> None:
        """Initialize the supervisor.

        Args:
            binary: Downloader executable name or path.
        """
        self.binary = binary

    async def run(
        self,
        url: str,
        output_path: str,
        quality: Quality,
        on_progress: ProgressCallback,
        handle: Optional[ProcessHandle] = None,
    ) -> None:
        """Download one item.

        Args:
            url: Source item URL.
            output_path: Destination file.
            quality: Quality selector.
            on_progress: Called for every parsed progress event, in output order.
            handle: Cancellation handle bound to the spawned process.

        Raises:
            DownloadError: On spawn failure or non-zero exit, including
                termination after cancellation.
        """
        handle = handle or ProcessHandle()
        cmd = build_command(self.binary, url, output_path, quality)

        logger.debug("downloader_spawning", command=cmd)

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            logger.error("downloader_not_found", binary=self.binary)
            raise DownloadError(f"{self.binary} is not installed or not in PATH") from e
        except OSError as e:
            logger.error("downloader_spawn_failed", binary=self.binary, error=str(e))
            raise DownloadError(f"Failed to start {self.binary}: {e}") from e

        handle.attach(process)
        logger.info("downloader_started", pid=process.pid, output_path=output_path)

        stderr_tail: Deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        stderr_task = asyncio.create_task(self._drain_stderr(process, stderr_tail))

        state = ParserState()
        try:
            assert process.stdout is not None
            async for raw_line in process.stdout:
                state, event = parse_progress(raw_line.decode(errors="replace"), state)
                if event is not None:
                    await _emit(on_progress, event)
            returncode = await process.wait()
        except BaseException as e:
            # stdout is no longer drained, so the child must not outlive us
            handle.cancel()
            if not isinstance(e, asyncio.CancelledError):
                logger.error("downloader_output_handling_failed", pid=process.pid, error=str(e))
                await process.wait()
            raise
        finally:
            await stderr_task

        if returncode != 0:
            logger.warning(
                "downloader_exited_with_error",
                pid=process.pid,
                exit_code=returncode,
                cancel_requested=handle.cancel_requested,
                stderr_tail=list(stderr_tail)[-5:],
            )
            raise DownloadError(f"yt-dlp exited with code {returncode}", exit_code=returncode)

        await _emit(
            on_progress,
            ProgressEvent(percent=100.0, downloaded=state.total, total=state.total),
        )
        logger.info("downloader_finished", pid=process.pid, bytes_total=state.total)

    async def _drain_stderr(
        self, process: asyncio.subprocess.Process, tail: Deque[str]
    ) -> None:
        assert process.stderr is not None
        async for raw_line in process.stderr:
            line = raw_line.decode(errors="replace").rstrip()
            if line:
                tail.append(line)
                logger.debug("downloader_stderr", pid=process.pid, line=line)


async def _emit(callback: ProgressCallback, event: ProgressEvent) -> None:
    result = callback(event)
    if asyncio.iscoroutine(result):
        await result
