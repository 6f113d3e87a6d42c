"""Live download progress over WebSocket.

- WS /api/v1/downloads/progress

The hub is registered as the download queue's progress observer and fans
every update out to all connected clients.
"""

import asyncio
from typing import Any, Dict, Set

import structlog
from fastapi import APIRouter, Depends, WebSocket

from vod_backup.api.schemas import ProgressMessage

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["downloads"])

# Updates buffered per client before the oldest are dropped
SUBSCRIBER_BUFFER = 256


class ProgressHub:
    """Fan-out of progress updates to WebSocket subscribers."""

    def __init__(self, buffer_size: int = SUBSCRIBER_BUFFER) -> None:
        self._buffer_size = buffer_size
        self._subscribers: Set["asyncio.Queue[Dict[str, Any]]"] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> "asyncio.Queue[Dict[str, Any]]":
        queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue(maxsize=self._buffer_size)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: "asyncio.Queue[Dict[str, Any]]") -> None:
        self._subscribers.discard(queue)

    def publish(self, task_id: str, percent: float, downloaded: int, total: int) -> None:
        """Queue an update for every subscriber. Matches the queue observer signature."""
        message = ProgressMessage(
            task_id=task_id,
            percent=percent,
            bytes_downloaded=downloaded,
            bytes_total=total,
        ).model_dump()

        for queue in self._subscribers:
            if queue.full():
                # Slow client: drop its oldest update
                queue.get_nowait()
            queue.put_nowait(message)


# Dependency placeholders (to be configured in main app)
async def get_progress_hub() -> ProgressHub:
    """Get progress hub instance."""
    raise NotImplementedError("Progress hub dependency not configured")


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


async def _forward(websocket: WebSocket, queue: "asyncio.Queue[Dict[str, Any]]") -> None:
    while True:
        message = await queue.get()
        await websocket.send_json(message)


@router.websocket("/downloads/progress")
async def progress_stream(
    websocket: WebSocket,
    hub: ProgressHub = Depends(get_progress_hub),  # noqa: B008
) -> None:
    """Stream progress updates until the client disconnects."""
    await websocket.accept()
    subscription = hub.subscribe()
    logger.info("progress_client_connected", subscribers=hub.subscriber_count)

    sender = asyncio.create_task(_forward(websocket, subscription))
    receiver = asyncio.create_task(_wait_for_disconnect(websocket))
    try:
        await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (sender, receiver):
            task.cancel()
        for result in await asyncio.gather(sender, receiver, return_exceptions=True):
            if isinstance(result, Exception):
                logger.debug("progress_stream_closed", error=str(result))
        hub.unsubscribe(subscription)
        logger.info("progress_client_disconnected", subscribers=hub.subscriber_count)
