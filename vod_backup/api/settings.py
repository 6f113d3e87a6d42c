"""Runtime settings endpoints.

- GET /api/v1/config
- PUT /api/v1/config
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends

from vod_backup.api.schemas import SettingsResponse, SettingsUpdateRequest
from vod_backup.core.logging import mask_secret
from vod_backup.models.settings import StoredSettings
from vod_backup.providers.token_cache import TokenCache
from vod_backup.services.download_queue import DownloadQueue
from vod_backup.services.task_store import TaskStore

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["config"])

CREDENTIAL_FIELDS = ("client_id", "client_secret")


# Dependency placeholders (to be configured in main app)
async def get_task_store() -> TaskStore:
    """Get task store instance."""
    raise NotImplementedError("Task store dependency not configured")


async def get_download_queue() -> DownloadQueue:
    """Get download queue instance."""
    raise NotImplementedError("Download queue dependency not configured")


async def get_token_cache() -> TokenCache:
    """Get token cache instance."""
    raise NotImplementedError("Token cache dependency not configured")


def _to_response(settings: StoredSettings) -> SettingsResponse:
    return SettingsResponse(
        client_id=settings.client_id,
        client_secret=mask_secret(settings.client_secret),
        download_path=settings.download_path,
        max_concurrent_downloads=settings.max_concurrent_downloads,
        preferred_quality=settings.preferred_quality,
        has_credentials=settings.has_credentials(),
    )


@router.get("/config", response_model=SettingsResponse)
async def get_settings(
    store: TaskStore = Depends(get_task_store),  # noqa: B008
) -> Any:
    """Get the runtime settings. The client secret is masked."""
    return _to_response(store.get_settings())


@router.put("/config", response_model=SettingsResponse)
async def update_settings(
    request: SettingsUpdateRequest,
    store: TaskStore = Depends(get_task_store),  # noqa: B008
    queue: DownloadQueue = Depends(get_download_queue),  # noqa: B008
    token_cache: TokenCache = Depends(get_token_cache),  # noqa: B008
) -> Any:
    """
    Update runtime settings.

    Omitted fields are left unchanged. A new concurrency limit applies to the
    queue immediately; new credentials discard the cached API token. A
    client secret equal to the masked value returned by GET is ignored.
    """
    changes = request.model_dump(exclude_none=True)
    current = store.get_settings()
    if current.client_secret and changes.get("client_secret") == mask_secret(current.client_secret):
        # Masked value echoed back from GET
        del changes["client_secret"]

    settings = store.update_settings(**changes)

    if "max_concurrent_downloads" in changes:
        queue.set_concurrency(settings.max_concurrent_downloads)

    if any(getattr(settings, name) != getattr(current, name) for name in CREDENTIAL_FIELDS):
        token_cache.invalidate()

    logger.info(
        "settings_updated",
        fields=sorted(changes),
        client_secret=mask_secret(settings.client_secret) if "client_secret" in changes else None,
    )
    return _to_response(settings)
