"""Health check endpoints.

- GET /liveness: the process is up
- GET /health: yt-dlp availability, download queue and credentials state
"""

import time
from datetime import datetime, timezone
from typing import Literal

import structlog
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from vod_backup import __version__
from vod_backup.api.schemas import ComponentHealth, HealthResponse, LivenessResponse
from vod_backup.core.checks import check_ytdlp
from vod_backup.core.config import Config
from vod_backup.services.download_queue import DownloadQueue
from vod_backup.services.task_store import TaskStore

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["health"])

# Track application start time for uptime calculation
_start_time: float = time.time()


def reset_start_time() -> None:
    """Start measuring uptime from now."""
    global _start_time
    _start_time = time.time()


# Dependency placeholders (to be configured in main app)
async def get_config() -> Config:
    """Get loaded configuration."""
    raise NotImplementedError("Config dependency not configured")


async def get_download_queue() -> DownloadQueue:
    """Get download queue instance."""
    raise NotImplementedError("Download queue dependency not configured")


async def get_task_store() -> TaskStore:
    """Get task store instance."""
    raise NotImplementedError("Task store dependency not configured")


async def _check_ytdlp(binary: str) -> ComponentHealth:
    result = await check_ytdlp(binary)
    if result.available:
        return ComponentHealth(status="healthy", version=result.version)
    return ComponentHealth(
        status="unhealthy",
        details={"error": result.error or "yt-dlp not available"},
    )


def _check_queue(queue: DownloadQueue) -> ComponentHealth:
    queued, active = queue.size()
    return ComponentHealth(
        status="healthy",
        details={"queued": queued, "active": active, "concurrency": queue.concurrency},
    )


def _check_settings(store: TaskStore) -> ComponentHealth:
    """Credentials and download path are required before anything can be backed up."""
    settings = store.get_settings()
    problems = []
    if not settings.has_credentials():
        problems.append("Twitch credentials not configured")
    if not settings.download_path:
        problems.append("Download path not configured")

    if problems:
        return ComponentHealth(status="unhealthy", details={"error": "; ".join(problems)})
    return ComponentHealth(status="healthy", details={"download_path": settings.download_path})


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={
        200: {"description": "All components healthy"},
        503: {"description": "One or more components unhealthy"},
    },
)
async def health_check(
    config: Config = Depends(get_config),  # noqa: B008
    queue: DownloadQueue = Depends(get_download_queue),  # noqa: B008
    store: TaskStore = Depends(get_task_store),  # noqa: B008
) -> JSONResponse:
    """
    Detailed health check endpoint.

    Returns HTTP 200 if all components are healthy,
    HTTP 503 if any component is unhealthy.
    """
    components = {
        "ytdlp": await _check_ytdlp(config.downloads.ytdlp_binary),
        "queue": _check_queue(queue),
        "settings": _check_settings(store),
    }

    all_healthy = all(c.status == "healthy" for c in components.values())
    overall_status: Literal["healthy", "unhealthy"] = "healthy" if all_healthy else "unhealthy"

    response = HealthResponse(
        status=overall_status,
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=__version__,
        uptime_seconds=round(time.time() - _start_time, 2),
        components=components,
    )

    status_code = status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE

    logger.info(
        "health_check_completed",
        status=overall_status,
        components={k: v.status for k, v in components.items()},
    )

    return JSONResponse(content=response.model_dump(), status_code=status_code)


@router.get("/liveness", response_model=LivenessResponse)
async def liveness_check() -> LivenessResponse:
    """Liveness probe endpoint. Returns HTTP 200 if the process is alive."""
    return LivenessResponse(status="alive")
