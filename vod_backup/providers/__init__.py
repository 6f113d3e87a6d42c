"""Source platform clients."""

from vod_backup.providers.base import ItemSource
from vod_backup.providers.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConfigurationError,
    DownloadError,
    ItemNotFoundError,
    ListingError,
    ProviderError,
    VodBackupError,
)
from vod_backup.providers.token_cache import CachedToken, TokenCache
from vod_backup.providers.twitch import TwitchClient

__all__ = [
    "ItemSource",
    "TwitchClient",
    "TokenCache",
    "CachedToken",
    "VodBackupError",
    "ConfigurationError",
    "ProviderError",
    "ItemNotFoundError",
    "ListingError",
    "AuthenticationError",
    "AuthorizationError",
    "DownloadError",
]
