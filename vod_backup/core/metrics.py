"""Prometheus metrics collection for the backup service.

This module defines and manages Prometheus metrics for monitoring
download queue depth, download outcomes, scheduled job runs and
API token refreshes.
"""

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("vod_backup", "VOD backup service information")

# Download metrics
downloads_total = Counter(
    "vod_backup_downloads_total",
    "Total finished downloads by status",
    ["status"],
)

download_duration_seconds = Histogram(
    "vod_backup_download_duration_seconds",
    "Download duration in seconds",
    buckets=[30.0, 60.0, 300.0, 600.0, 1800.0, 3600.0, 7200.0, 14400.0],
)

# Queue metrics
download_queue_size = Gauge(
    "vod_backup_download_queue_size",
    "Current number of tasks waiting for a download slot",
)

concurrent_downloads = Gauge(
    "vod_backup_concurrent_downloads",
    "Number of currently active downloads",
)

# Scheduler metrics
scheduled_job_runs_total = Counter(
    "vod_backup_scheduled_job_runs_total",
    "Scheduled job fires by result",
    ["result"],
)

# API token metrics
token_refreshes_total = Counter(
    "vod_backup_token_refreshes_total",
    "Client-credentials token exchanges",
)


class MetricsCollector:
    """Centralized metrics collection and update helper.

    Provides static methods for recording various metrics throughout
    the application in a consistent manner.
    """

    @staticmethod
    def record_download(status: str, duration: float) -> None:
        """Record a finished download.

        Args:
            status: Terminal task status ('completed' or 'failed').
            duration: Time spent in the downloading state, in seconds.
        """
        downloads_total.labels(status=status).inc()
        download_duration_seconds.observe(duration)

    @staticmethod
    def update_queue_metrics(queue_size: int, active_downloads: int) -> None:
        """Update download queue metrics.

        Args:
            queue_size: Current number of tasks waiting.
            active_downloads: Number of active download processes.
        """
        download_queue_size.set(queue_size)
        concurrent_downloads.set(active_downloads)

    @staticmethod
    def record_scheduled_run(result: str) -> None:
        """Record a scheduled job fire.

        Args:
            result: 'enqueued', 'already_downloaded', 'no_items' or 'error'.
        """
        scheduled_job_runs_total.labels(result=result).inc()

    @staticmethod
    def record_token_refresh() -> None:
        """Record a client-credentials exchange."""
        token_refreshes_total.inc()


def initialize_metrics(version: str) -> None:
    """Initialize application metrics with version information.

    Should be called during application startup.

    Args:
        version: Application version string.
    """
    app_info.info({"version": version})
