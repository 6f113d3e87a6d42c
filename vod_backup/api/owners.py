"""Channel lookup endpoints.

- GET /api/v1/owners/search?query=
- GET /api/v1/owners/{owner_id}
- GET /api/v1/owners/{owner_id}/items
"""

from typing import Any, List

import structlog
from fastapi import APIRouter, Depends, Query

from vod_backup.api.schemas import OwnerResponse, SourceItemResponse
from vod_backup.core.errors import APIError, ErrorCode
from vod_backup.providers.twitch import TwitchClient
from vod_backup.services.task_store import TaskStore

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["owners"])


# Dependency placeholders (to be configured in main app)
async def get_twitch_client() -> TwitchClient:
    """Get Twitch client instance."""
    raise NotImplementedError("Twitch client dependency not configured")


async def get_task_store() -> TaskStore:
    """Get task store instance."""
    raise NotImplementedError("Task store dependency not configured")


@router.get(
    "/owners/search",
    response_model=List[OwnerResponse],
    responses={
        502: {"description": "Twitch API request failed"},
        503: {"description": "Credentials not configured"},
    },
)
async def search_owners(
    query: str = Query(..., max_length=100),
    client: TwitchClient = Depends(get_twitch_client),  # noqa: B008
) -> Any:
    """Search channels by name. Queries shorter than two characters return nothing."""
    owners = await client.search_owners(query)
    logger.debug("owner_search_completed", query=query, results=len(owners))
    return [OwnerResponse(**owner.to_dict()) for owner in owners]


@router.get(
    "/owners/{owner_id}",
    response_model=OwnerResponse,
    responses={404: {"description": "Channel not found"}},
)
async def get_owner(
    owner_id: str,
    client: TwitchClient = Depends(get_twitch_client),  # noqa: B008
) -> Any:
    """Get one channel."""
    owner = await client.get_owner(owner_id)
    if owner is None:
        raise APIError(ErrorCode.ITEM_NOT_FOUND, f"Channel not found: {owner_id}")
    return OwnerResponse(**owner.to_dict())


@router.get(
    "/owners/{owner_id}/items",
    response_model=List[SourceItemResponse],
    responses={502: {"description": "Twitch API request failed"}},
)
async def list_owner_items(
    owner_id: str,
    limit: int = Query(TwitchClient.DEFAULT_LIST_LIMIT, ge=1, le=100),
    client: TwitchClient = Depends(get_twitch_client),  # noqa: B008
    store: TaskStore = Depends(get_task_store),  # noqa: B008
) -> Any:
    """List a channel's archived broadcasts, marking the ones already backed up."""
    items = await client.list_recent_items(owner_id, limit)
    return [
        SourceItemResponse(**item.to_dict(), downloaded=store.has_completed_download(item.id))
        for item in items
    ]
