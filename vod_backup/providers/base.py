"""Abstract base class for source platforms."""

from abc import ABC, abstractmethod
from typing import List, Optional

from vod_backup.models.video import SourceItem


class ItemSource(ABC):
    """Lookup and listing operations the download core depends on."""

    @abstractmethod
    async def get_item(self, item_id: str) -> Optional[SourceItem]:
        """
        Look up a single archived item.

        Args:
            item_id: Platform identifier of the item

        Returns:
            The item, or None if it does not exist

        Raises:
            ListingError: If the lookup request fails
            ConfigurationError: If credentials are not configured
        """
        pass

    @abstractmethod
    async def list_recent_items(self, owner_id: str, limit: int) -> List[SourceItem]:
        """
        List an owner's most recent archived items.

        Args:
            owner_id: Platform identifier of the owner
            limit: Maximum number of items to return

        Returns:
            Items ordered most recent first

        Raises:
            ListingError: If the listing request fails
            ConfigurationError: If credentials are not configured
        """
        pass
