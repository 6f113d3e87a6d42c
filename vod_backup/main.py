"""FastAPI application entry point.

This module assembles all components and creates the main application.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncContextManager, AsyncGenerator, Callable, Optional, Tuple

import httpx
import structlog
from fastapi import FastAPI
from starlette.requests import HTTPConnection

from vod_backup import __version__
from vod_backup.api import downloads, health, metrics, owners, progress, schedules, settings
from vod_backup.api.progress import ProgressHub
from vod_backup.core.config import Config, ConfigService
from vod_backup.core.errors import DOMAIN_EXCEPTIONS, APIError, global_exception_handler
from vod_backup.core.logging import configure_logging, mask_secret
from vod_backup.core.metrics import initialize_metrics
from vod_backup.models.settings import StoredSettings
from vod_backup.providers.base import ItemSource
from vod_backup.providers.token_cache import TokenCache
from vod_backup.providers.twitch import TwitchClient
from vod_backup.services.download_queue import DownloadQueue
from vod_backup.services.process_supervisor import ProcessSupervisor
from vod_backup.services.scheduler import Scheduler
from vod_backup.services.task_store import TaskStore

logger = structlog.get_logger(__name__)

Lifespan = Callable[[FastAPI], AsyncContextManager[None]]


@dataclass
class Services:
    """Long-lived components shared by all requests."""

    config: Config
    store: TaskStore
    http_client: httpx.AsyncClient
    token_cache: TokenCache
    twitch: TwitchClient
    supervisor: ProcessSupervisor
    queue: DownloadQueue
    progress_hub: ProgressHub
    scheduler: Scheduler


def build_services(
    config: Config,
    item_source: Optional[ItemSource] = None,
    supervisor: Optional[ProcessSupervisor] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> Services:
    """Construct and wire every component.

    Interrupted tasks from a previous run are failed and the persisted
    settings are seeded from the configuration before anything starts.

    Args:
        config: Loaded configuration.
        item_source: Replaces the Twitch client as the queue's and
            scheduler's item source.
        supervisor: Replaces the yt-dlp process supervisor.
        http_client: Replaces the shared HTTP client.
    """
    store = TaskStore(config.storage.store_path)

    recovered = store.recover_interrupted()
    if recovered:
        logger.warning("interrupted_tasks_recovered", count=recovered)

    stored = store.initialize_settings(StoredSettings.from_config(config))
    logger.info(
        "settings_loaded",
        download_path=stored.download_path,
        max_concurrent_downloads=stored.max_concurrent_downloads,
        preferred_quality=stored.preferred_quality.value,
        client_secret=mask_secret(stored.client_secret),
    )

    def credentials() -> Tuple[str, str]:
        current = store.get_settings()
        return current.client_id, current.client_secret

    http_client = http_client or httpx.AsyncClient(timeout=config.twitch.request_timeout)
    token_cache = TokenCache(http_client, credentials, token_url=config.twitch.token_url)
    twitch = TwitchClient(http_client, token_cache, credentials, api_base=config.twitch.api_base)
    source = item_source or twitch
    supervisor = supervisor or ProcessSupervisor(config.downloads.ytdlp_binary)

    queue = DownloadQueue(
        store=store,
        source=source,
        supervisor=supervisor,
        concurrency=stored.max_concurrent_downloads,
    )
    progress_hub = ProgressHub()
    queue.set_progress_observer(progress_hub.publish)

    scheduler = Scheduler(
        store=store,
        queue=queue,
        source=source,
        recent_items_limit=config.scheduler.recent_items_limit,
        timezone=config.scheduler.timezone,
    )

    return Services(
        config=config,
        store=store,
        http_client=http_client,
        token_cache=token_cache,
        twitch=twitch,
        supervisor=supervisor,
        queue=queue,
        progress_hub=progress_hub,
        scheduler=scheduler,
    )


async def shutdown_services(services: Services) -> None:
    """Stop triggers, terminate running downloads and close the HTTP client."""
    await services.scheduler.stop_all()
    await services.queue.stop()
    await services.http_client.aclose()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown."""
    config = ConfigService().load()

    configure_logging(config.logging.level, config.logging.format)
    initialize_metrics(__version__)

    logger.info(
        "application_starting",
        version=__version__,
        store_path=config.storage.store_path,
        ytdlp_binary=config.downloads.ytdlp_binary,
    )

    services = build_services(config)
    services.scheduler.start()
    app.state.services = services
    health.reset_start_time()

    logger.info("application_startup_complete", version=__version__)

    yield

    logger.info("application_shutting_down")
    await shutdown_services(services)
    logger.info("application_shutdown_complete")


# Dependency providers reading from app.state
def _services(conn: HTTPConnection) -> Services:
    services: Optional[Services] = getattr(conn.app.state, "services", None)
    if services is None:
        raise RuntimeError("Application services not initialized")
    return services


def get_config(conn: HTTPConnection) -> Config:
    return _services(conn).config


def get_task_store(conn: HTTPConnection) -> TaskStore:
    return _services(conn).store


def get_download_queue(conn: HTTPConnection) -> DownloadQueue:
    return _services(conn).queue


def get_scheduler(conn: HTTPConnection) -> Scheduler:
    return _services(conn).scheduler


def get_twitch_client(conn: HTTPConnection) -> TwitchClient:
    return _services(conn).twitch


def get_token_cache(conn: HTTPConnection) -> TokenCache:
    return _services(conn).token_cache


def get_progress_hub(conn: HTTPConnection) -> ProgressHub:
    return _services(conn).progress_hub


def create_app(lifespan_handler: Optional[Lifespan] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        lifespan_handler: Replaces the default lifespan, which loads the
            configuration and builds the real services.
    """
    app = FastAPI(
        title="VOD Backup",
        description="Scheduled and on-demand Twitch VOD backups using yt-dlp",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan_handler or lifespan,
    )

    # Register global exception handlers
    app.add_exception_handler(Exception, global_exception_handler)
    app.add_exception_handler(APIError, global_exception_handler)
    for exc_type in DOMAIN_EXCEPTIONS:
        app.add_exception_handler(exc_type, global_exception_handler)

    # Override dependency injection for routers

    # Download router dependencies
    app.dependency_overrides[downloads.get_download_queue] = get_download_queue
    app.dependency_overrides[downloads.get_task_store] = get_task_store

    # Schedule router dependencies
    app.dependency_overrides[schedules.get_scheduler] = get_scheduler

    # Owner router dependencies
    app.dependency_overrides[owners.get_twitch_client] = get_twitch_client
    app.dependency_overrides[owners.get_task_store] = get_task_store

    # Settings router dependencies
    app.dependency_overrides[settings.get_task_store] = get_task_store
    app.dependency_overrides[settings.get_download_queue] = get_download_queue
    app.dependency_overrides[settings.get_token_cache] = get_token_cache

    # Progress router dependencies
    app.dependency_overrides[progress.get_progress_hub] = get_progress_hub

    # Health and metrics router dependencies
    app.dependency_overrides[health.get_config] = get_config
    app.dependency_overrides[health.get_download_queue] = get_download_queue
    app.dependency_overrides[health.get_task_store] = get_task_store
    app.dependency_overrides[metrics.get_download_queue] = get_download_queue

    # Register routers
    app.include_router(health.router)
    app.include_router(downloads.router)
    app.include_router(progress.router)
    app.include_router(schedules.router)
    app.include_router(owners.router)
    app.include_router(settings.router)
    app.include_router(metrics.router)

    return app


# Create the application instance
app = create_app()
