"""Prometheus metrics endpoint."""

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from vod_backup.core.metrics import MetricsCollector
from vod_backup.services.download_queue import DownloadQueue

router = APIRouter(tags=["monitoring"])


# Dependency placeholders (to be configured in main app)
async def get_download_queue() -> DownloadQueue:
    """Get download queue instance."""
    raise NotImplementedError("Download queue dependency not configured")


@router.get(
    "/metrics",
    response_class=Response,
    summary="Prometheus metrics endpoint",
    description="Returns metrics in Prometheus text format for scraping.",
)
async def metrics(
    queue: DownloadQueue = Depends(get_download_queue),  # noqa: B008
) -> Response:
    """Prometheus metrics endpoint.

    Queue gauges are refreshed from the live queue before rendering.
    """
    queued, active = queue.size()
    MetricsCollector.update_queue_metrics(queue_size=queued, active_downloads=active)

    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
