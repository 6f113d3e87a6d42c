"""OAuth client-credentials token cache.

The cached token is refreshed lazily: five minutes before the expiry the
server reports, or immediately after the API rejects it with a 401.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import httpx
import structlog

from vod_backup.core.metrics import MetricsCollector
from vod_backup.providers.exceptions import AuthenticationError, ConfigurationError

logger = structlog.get_logger(__name__)

# Seconds subtracted from the reported lifetime
EXPIRY_MARGIN_SECONDS = 300

CredentialsProvider = Callable[[], Tuple[str, str]]


@dataclass
class CachedToken:
    """A bearer token and the wall-clock time it stops being served."""

    value: str
    expires_at: float


class TokenCache:
    """Caches an app access token obtained with the client-credentials grant."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        credentials: CredentialsProvider,
        token_url: str = "https://id.twitch.tv/oauth2/token",
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the token cache.

        Args:
            http_client: Client used for the token exchange.
            credentials: Returns the current (client_id, client_secret) pair.
            token_url: OAuth token endpoint.
            clock: Wall-clock source in seconds.
        """
        self._http = http_client
        self._credentials = credentials
        self.token_url = token_url
        self._clock = clock
        self._token: Optional[CachedToken] = None
        self._lock = asyncio.Lock()

    @property
    def cached(self) -> Optional[CachedToken]:
        return self._token

    def invalidate(self) -> None:
        """Drop the cached token so the next call performs a new exchange."""
        if self._token is not None:
            logger.info("api_token_invalidated")
        self._token = None

    def _is_valid(self) -> bool:
        return self._token is not None and self._clock() < self._token.expires_at

    async def get_token(self) -> str:
        """Return a valid bearer token, exchanging credentials if needed.

        Raises:
            ConfigurationError: If client id or secret are not configured.
            AuthenticationError: If the token exchange fails.
        """
        if self._is_valid():
            return self._token.value  # type: ignore[union-attr]

        async with self._lock:
            # Another caller may have refreshed while we waited
            if self._is_valid():
                return self._token.value  # type: ignore[union-attr]
            self._token = await self._exchange()
            return self._token.value

    async def _exchange(self) -> CachedToken:
        client_id, client_secret = self._credentials()
        if not client_id or not client_secret:
            raise ConfigurationError("Twitch Client ID and Secret not configured")

        now = self._clock()
        try:
            response = await self._http.post(
                self.token_url,
                params={
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "grant_type": "client_credentials",
                },
            )
            response.raise_for_status()
            payload = response.json()
            value = payload["access_token"]
            expires_in = float(payload["expires_in"])
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.error("api_token_exchange_failed", error=str(e))
            raise AuthenticationError(f"Failed to get Twitch access token: {e}") from e

        MetricsCollector.record_token_refresh()
        token = CachedToken(value=value, expires_at=now + expires_in - EXPIRY_MARGIN_SECONDS)

        logger.info(
            "api_token_obtained",
            expires_in=expires_in,
            serve_for_seconds=max(0.0, expires_in - EXPIRY_MARGIN_SECONDS),
        )
        return token
