"""In-process key store."""
from datetime import datetime, timezone
from typing import Dict, List, Optional
from byok.errors import NotFoundError
from byok.keys.models import (
    AIProvider,
    EncryptedApiKey,
    StorageStats,
    UserPreferences,
)
from byok.storage.base import KeyStore, compute_storage_stats


class InMemoryKeyStore(KeyStore):
    """
    Key store holding records in a dict for the lifetime of the process.

    No method awaits between reading and writing, so each call is atomic
    with respect to other coroutines on the same event loop.
    """

    def __init__(self):
        self._records: Dict[str, EncryptedApiKey] = {}
        self._preferences = UserPreferences()

    async def init(self) -> None:
        return None

    async def store_api_key(self, record: EncryptedApiKey, make_default: bool = False) -> None:
        if make_default:
            for key_id, existing in self._records.items():
                if existing.provider == record.provider and existing.is_default:
                    self._records[key_id] = existing.model_copy(update={"is_default": False})
            record = record.model_copy(update={"is_default": True})
        self._records[record.key_id] = record.model_copy()

    async def get_api_key(self, key_id: str) -> Optional[EncryptedApiKey]:
        record = self._records.get(key_id)
        return record.model_copy() if record else None

    async def get_api_keys(self) -> List[EncryptedApiKey]:
        return [record.model_copy() for record in self._records.values()]

    async def get_default_api_key(self, provider: AIProvider) -> Optional[EncryptedApiKey]:
        for record in self._records.values():
            if record.provider == provider and record.is_default:
                return record.model_copy()
        return None

    async def update_api_key_usage(self, key_id: str, used_at: Optional[datetime] = None) -> None:
        record = self._records.get(key_id)
        if record is None:
            raise NotFoundError("API key not found")
        self._records[key_id] = record.model_copy(
            update={"last_used_at": used_at or datetime.now(timezone.utc)}
        )

    async def delete_api_key(self, key_id: str) -> None:
        self._records.pop(key_id, None)

    async def clear_all_data(self) -> None:
        self._records.clear()
        self._preferences = UserPreferences()

    async def get_user_preferences(self) -> UserPreferences:
        return self._preferences.model_copy()

    async def set_user_preferences(self, **preferences) -> None:
        self._preferences = self._preferences.model_copy(update=preferences)

    async def get_storage_stats(self) -> StorageStats:
        return compute_storage_stats(list(self._records.values()))
