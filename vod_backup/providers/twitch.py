"""Twitch Helix API client."""

from typing import Any, Dict, List, Optional

import httpx
import structlog

from vod_backup.models.video import Owner, SourceItem
from vod_backup.providers.base import ItemSource
from vod_backup.providers.exceptions import AuthorizationError, ListingError
from vod_backup.providers.token_cache import CredentialsProvider, TokenCache

logger = structlog.get_logger(__name__)


class TwitchClient(ItemSource):
    """Lists channels and archived broadcasts through the Helix API."""

    SEARCH_LIMIT = 10
    DEFAULT_LIST_LIMIT = 20

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_cache: TokenCache,
        credentials: CredentialsProvider,
        api_base: str = "https://api.twitch.tv/helix",
    ) -> None:
        """
        Initialize the client.

        Args:
            http_client: Shared HTTP client
            token_cache: Source of bearer tokens
            credentials: Returns the current (client_id, client_secret) pair
            api_base: Helix base URL
        """
        self._http = http_client
        self._tokens = token_cache
        self._credentials = credentials
        self.api_base = api_base.rstrip("/")

    async def _send(self, endpoint: str, params: Dict[str, Any], token: str) -> httpx.Response:
        client_id, _ = self._credentials()
        return await self._http.get(
            f"{self.api_base}{endpoint}",
            params=params,
            headers={"Authorization": f"Bearer {token}", "Client-Id": client_id},
        )

    async def _request(self, endpoint: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Perform an authenticated GET, refreshing the token once on 401.

        Raises:
            ConfigurationError: If credentials are not configured
            AuthenticationError: If a token cannot be obtained
            AuthorizationError: If a freshly obtained token is rejected as well
            ListingError: If the request fails for any other reason
        """
        token = await self._tokens.get_token()
        try:
            response = await self._send(endpoint, params, token)

            if response.status_code == httpx.codes.UNAUTHORIZED:
                logger.warning("api_token_rejected", endpoint=endpoint)
                self._tokens.invalidate()
                token = await self._tokens.get_token()
                response = await self._send(endpoint, params, token)
                if response.status_code == httpx.codes.UNAUTHORIZED:
                    raise AuthorizationError(
                        f"Twitch API rejected a refreshed token for {endpoint}"
                    )

            response.raise_for_status()
            return response.json()

        except httpx.HTTPStatusError as e:
            message = _error_message(e.response)
            logger.error(
                "api_request_failed",
                endpoint=endpoint,
                status_code=e.response.status_code,
                error=message,
            )
            raise ListingError(f"Twitch API request failed: {message}") from e
        except httpx.HTTPError as e:
            logger.error("api_request_failed", endpoint=endpoint, error=str(e))
            raise ListingError(f"Twitch API request failed: {e}") from e

    async def search_owners(self, query: str) -> List[Owner]:
        """
        Search channels by name.

        Args:
            query: Search text; fewer than two characters returns nothing

        Returns:
            Up to ten matching channels
        """
        if not query or len(query) < 2:
            return []

        response = await self._request(
            "/search/channels",
            {"query": query, "first": self.SEARCH_LIMIT, "live_only": "false"},
        )
        return [Owner.from_api(entry) for entry in response.get("data", [])]

    async def get_owner(self, owner_id: str) -> Optional[Owner]:
        response = await self._request("/users", {"id": owner_id})
        data = response.get("data", [])
        return Owner.from_api(data[0]) if data else None

    async def list_recent_items(
        self, owner_id: str, limit: int = DEFAULT_LIST_LIMIT
    ) -> List[SourceItem]:
        response = await self._request(
            "/videos",
            {"user_id": owner_id, "first": limit, "type": "archive"},
        )
        items = [SourceItem.from_api(entry) for entry in response.get("data", [])]
        logger.debug("recent_items_listed", owner_id=owner_id, count=len(items))
        return items

    async def get_item(self, item_id: str) -> Optional[SourceItem]:
        try:
            response = await self._request("/videos", {"id": item_id})
        except ListingError as e:
            # Helix answers 404 for unknown or deleted video ids
            if isinstance(e.__cause__, httpx.HTTPStatusError) and (
                e.__cause__.response.status_code == httpx.codes.NOT_FOUND
            ):
                return None
            raise
        data = response.get("data", [])
        return SourceItem.from_api(data[0]) if data else None


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return response.reason_phrase
