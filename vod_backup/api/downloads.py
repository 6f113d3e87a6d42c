"""Download and queue endpoints.

- POST   /api/v1/downloads
- GET    /api/v1/downloads
- GET    /api/v1/downloads/{task_id}
- POST   /api/v1/downloads/{task_id}/cancel
- DELETE /api/v1/downloads/{task_id}
- GET    /api/v1/queue
- PUT    /api/v1/queue/concurrency
"""

from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends, Query, status

from vod_backup.api.schemas import (
    CancelResponse,
    ConcurrencyRequest,
    DownloadCreateRequest,
    DownloadCreateResponse,
    QueueStatusResponse,
    TaskListResponse,
    TaskResponse,
)
from vod_backup.core.errors import APIError, ErrorCode
from vod_backup.models.task import TaskStatus
from vod_backup.services.download_queue import DownloadQueue, DownloadRequest
from vod_backup.services.task_store import TaskStore

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["downloads"])


# Dependency placeholders (to be configured in main app)
async def get_download_queue() -> DownloadQueue:
    """Get download queue instance."""
    raise NotImplementedError("Download queue dependency not configured")


async def get_task_store() -> TaskStore:
    """Get task store instance."""
    raise NotImplementedError("Task store dependency not configured")


@router.post(
    "/downloads",
    response_model=DownloadCreateResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={
        404: {"description": "VOD not found"},
        502: {"description": "Twitch API request failed"},
        503: {"description": "Credentials or download path not configured"},
    },
)
async def create_download(
    request: DownloadCreateRequest,
    queue: DownloadQueue = Depends(get_download_queue),  # noqa: B008
    store: TaskStore = Depends(get_task_store),  # noqa: B008
) -> Any:
    """
    Queue a VOD backup.

    The VOD is looked up before the task is created. The task starts as soon
    as a download slot is free.
    """
    quality = request.quality or store.get_settings().preferred_quality

    task_id = await queue.enqueue(
        DownloadRequest(
            item_id=request.item_id,
            owner_id=request.owner_id,
            owner_name=request.owner_name,
            quality=quality,
        )
    )
    task = store.get_task_or_raise(task_id)

    return DownloadCreateResponse(task_id=task_id, status=task.status.value)


@router.get("/downloads", response_model=TaskListResponse)
async def list_downloads(
    status_filter: Optional[TaskStatus] = Query(None, alias="status"),  # noqa: B008
    store: TaskStore = Depends(get_task_store),  # noqa: B008
) -> Any:
    """List download tasks, newest first, optionally filtered by status."""
    tasks = store.list_tasks(status=status_filter)
    return TaskListResponse(
        tasks=[TaskResponse(**task.to_dict()) for task in tasks],
        total=len(tasks),
    )


@router.get(
    "/downloads/{task_id}",
    response_model=TaskResponse,
    responses={404: {"description": "Task not found"}},
)
async def get_download(
    task_id: str,
    store: TaskStore = Depends(get_task_store),  # noqa: B008
) -> Any:
    """Get one download task."""
    return TaskResponse(**store.get_task_or_raise(task_id).to_dict())


@router.post(
    "/downloads/{task_id}/cancel",
    response_model=CancelResponse,
    responses={404: {"description": "Task not found"}},
)
async def cancel_download(
    task_id: str,
    queue: DownloadQueue = Depends(get_download_queue),  # noqa: B008
    store: TaskStore = Depends(get_task_store),  # noqa: B008
) -> Any:
    """
    Cancel a queued or running download.

    `cancelled` is true only when a running process was signalled; the task
    becomes failed once the process exits. A queued task is failed right away.
    """
    store.get_task_or_raise(task_id)

    cancelled = queue.cancel(task_id)
    task = store.get_task_or_raise(task_id)

    logger.info("download_cancel_requested", task_id=task_id, cancelled=cancelled)
    return CancelResponse(task_id=task_id, cancelled=cancelled, status=task.status.value)


@router.delete(
    "/downloads/{task_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={
        404: {"description": "Task not found"},
        409: {"description": "Task is still pending or downloading"},
    },
)
async def delete_download(
    task_id: str,
    store: TaskStore = Depends(get_task_store),  # noqa: B008
) -> None:
    """Remove a finished task from the download history. The file is kept."""
    task = store.get_task_or_raise(task_id)

    if not task.is_terminal():
        raise APIError(
            ErrorCode.TASK_ACTIVE,
            f"Task {task_id} is {task.status.value}",
        )

    store.remove_task(task_id)
    logger.info("download_removed_from_history", task_id=task_id)


@router.get("/queue", response_model=QueueStatusResponse)
async def get_queue_status(
    queue: DownloadQueue = Depends(get_download_queue),  # noqa: B008
) -> Any:
    """Get the number of queued and active downloads."""
    queued, active = queue.size()
    return QueueStatusResponse(queued=queued, active=active, concurrency=queue.concurrency)


@router.put("/queue/concurrency", response_model=QueueStatusResponse)
async def set_queue_concurrency(
    request: ConcurrencyRequest,
    queue: DownloadQueue = Depends(get_download_queue),  # noqa: B008
    store: TaskStore = Depends(get_task_store),  # noqa: B008
) -> Any:
    """
    Change the number of simultaneous downloads.

    Lowering the limit does not stop running downloads.
    """
    store.update_settings(max_concurrent_downloads=request.concurrency)
    queue.set_concurrency(request.concurrency)

    queued, active = queue.size()
    return QueueStatusResponse(queued=queued, active=active, concurrency=queue.concurrency)
