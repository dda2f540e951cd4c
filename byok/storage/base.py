"""Key store interface consumed by the key manager."""
import json
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional
from byok.keys.models import (
    AIProvider,
    EncryptedApiKey,
    StorageStats,
    UserPreferences,
)


class KeyStore(ABC):
    """Abstract base class for durable per-user key record storage."""

    @abstractmethod
    async def init(self) -> None:
        """Prepare the underlying storage. Safe to call more than once."""
        pass

    @abstractmethod
    async def store_api_key(self, record: EncryptedApiKey, make_default: bool = False) -> None:
        """
        Insert or replace a key record.

        Args:
            record: Record to persist, keyed by ``record.key_id``
            make_default: Also mark the record as the provider default and
                clear ``is_default`` on every other record of that provider
                in the same write
        """
        pass

    @abstractmethod
    async def get_api_key(self, key_id: str) -> Optional[EncryptedApiKey]:
        """Return one record, or None if it does not exist."""
        pass

    @abstractmethod
    async def get_api_keys(self) -> List[EncryptedApiKey]:
        """Return every stored record."""
        pass

    @abstractmethod
    async def get_default_api_key(self, provider: AIProvider) -> Optional[EncryptedApiKey]:
        """Return the default record of a provider, or None."""
        pass

    @abstractmethod
    async def update_api_key_usage(self, key_id: str, used_at: Optional[datetime] = None) -> None:
        """
        Stamp ``last_used_at`` on a record.

        Raises:
            NotFoundError: If the record does not exist
        """
        pass

    @abstractmethod
    async def delete_api_key(self, key_id: str) -> None:
        """Remove a record. Unknown ids are ignored."""
        pass

    @abstractmethod
    async def clear_all_data(self) -> None:
        """Remove every record and preference."""
        pass

    @abstractmethod
    async def get_user_preferences(self) -> UserPreferences:
        """Return stored preferences, or the defaults."""
        pass

    @abstractmethod
    async def set_user_preferences(self, **preferences) -> None:
        """Merge the given preference fields into the stored preferences."""
        pass

    @abstractmethod
    async def get_storage_stats(self) -> StorageStats:
        """Return the record count and a human readable size."""
        pass


def format_size(num_bytes: int) -> str:
    """Format a byte count the way storage stats report it."""
    if num_bytes < 1024:
        return f"{num_bytes} B"
    if num_bytes < 1024 * 1024:
        return f"{num_bytes / 1024:.2f} KB"
    return f"{num_bytes / (1024 * 1024):.2f} MB"


def compute_storage_stats(records: List[EncryptedApiKey]) -> StorageStats:
    """Compute storage stats from the JSON size of the records."""
    if not records:
        return StorageStats(api_keys_count=0, total_size="0 B")
    payload = json.dumps([record.model_dump(mode="json") for record in records])
    return StorageStats(
        api_keys_count=len(records),
        total_size=format_size(len(payload.encode("utf-8"))),
    )
