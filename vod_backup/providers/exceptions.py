"""Provider-specific exceptions."""

from typing import Optional


class VodBackupError(Exception):
    """Base exception for all service errors."""

    pass


class ConfigurationError(VodBackupError):
    """Raised when credentials or the download path are missing or unusable."""

    pass


class ProviderError(VodBackupError):
    """Base exception for source platform errors."""

    pass


class ItemNotFoundError(ProviderError):
    """Raised when a source item does not exist or is not accessible."""

    pass


class ListingError(ProviderError):
    """Raised when a listing or lookup request fails."""

    pass


class AuthenticationError(ProviderError):
    """Raised when the client-credentials exchange fails."""

    pass


class AuthorizationError(ProviderError):
    """Raised when the API rejects a freshly obtained token."""

    pass


class DownloadError(VodBackupError):
    """Raised when the downloader process fails."""

    def __init__(self, message: str, exit_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.exit_code = exit_code
