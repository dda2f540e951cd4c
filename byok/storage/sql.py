"""SQLAlchemy backed key store."""
from datetime import datetime, timezone
from typing import List, Optional
from sqlalchemy import select, update, delete
from sqlalchemy.exc import SQLAlchemyError
from byok.errors import NotFoundError, StorageError
from byok.keys.models import (
    AIProvider,
    EncryptedApiKey,
    StorageStats,
    UserPreferences,
)
from byok.storage.base import KeyStore, compute_storage_stats
from byok.storage.database import create_db_engine, create_session_factory, init_db
from byok.storage.models import ApiKeyRecord, UserPreferenceRecord
from byok.utils.logging import get_logger

logger = get_logger(__name__)

PREFERENCES_ROW_ID = 1


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_model(row: ApiKeyRecord) -> EncryptedApiKey:
    return EncryptedApiKey(
        provider=AIProvider(row.provider),
        encrypted_key=row.encrypted_key,
        key_id=row.key_id,
        created_at=_as_utc(row.created_at),
        last_used_at=_as_utc(row.last_used_at),
        expires_at=_as_utc(row.expires_at),
        is_default=row.is_default,
    )


def _to_row(record: EncryptedApiKey) -> ApiKeyRecord:
    return ApiKeyRecord(
        key_id=record.key_id,
        provider=record.provider.value,
        encrypted_key=record.encrypted_key,
        created_at=record.created_at,
        last_used_at=record.last_used_at,
        expires_at=record.expires_at,
        is_default=record.is_default,
    )


class SQLKeyStore(KeyStore):
    """
    Key store persisting records through SQLAlchemy.

    The encryption key preference is held on the instance only, so it lives
    as long as the session that created the store and never reaches disk.
    """

    def __init__(self, database_url: Optional[str] = None):
        self.engine = create_db_engine(database_url)
        self.SessionLocal = create_session_factory(self.engine)
        self._encryption_key: Optional[str] = None
        self._initialized = False

    async def init(self) -> None:
        if self._initialized:
            return
        try:
            init_db(self.engine)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to initialize key store: {e}") from e
        self._initialized = True

    async def store_api_key(self, record: EncryptedApiKey, make_default: bool = False) -> None:
        await self.init()
        try:
            with self.SessionLocal.begin() as db:
                if make_default:
                    # Clearing and setting happen in one transaction
                    db.execute(
                        update(ApiKeyRecord)
                        .where(
                            ApiKeyRecord.provider == record.provider.value,
                            ApiKeyRecord.key_id != record.key_id,
                        )
                        .values(is_default=False)
                    )
                    record = record.model_copy(update={"is_default": True})
                db.merge(_to_row(record))
        except SQLAlchemyError as e:
            logger.error("Failed to store API key", extra={"key_id": record.key_id})
            raise StorageError("Failed to store API key") from e

    async def get_api_key(self, key_id: str) -> Optional[EncryptedApiKey]:
        await self.init()
        try:
            with self.SessionLocal() as db:
                row = db.get(ApiKeyRecord, key_id)
                return _to_model(row) if row else None
        except SQLAlchemyError as e:
            raise StorageError("Failed to retrieve API key") from e

    async def get_api_keys(self) -> List[EncryptedApiKey]:
        await self.init()
        try:
            with self.SessionLocal() as db:
                rows = db.scalars(select(ApiKeyRecord).order_by(ApiKeyRecord.created_at)).all()
                return [_to_model(row) for row in rows]
        except SQLAlchemyError as e:
            raise StorageError("Failed to retrieve API keys") from e

    async def get_default_api_key(self, provider: AIProvider) -> Optional[EncryptedApiKey]:
        await self.init()
        try:
            with self.SessionLocal() as db:
                row = db.scalars(
                    select(ApiKeyRecord).where(
                        ApiKeyRecord.provider == AIProvider(provider).value,
                        ApiKeyRecord.is_default.is_(True),
                    )
                ).first()
                return _to_model(row) if row else None
        except SQLAlchemyError as e:
            raise StorageError("Failed to retrieve default API key") from e

    async def update_api_key_usage(self, key_id: str, used_at: Optional[datetime] = None) -> None:
        await self.init()
        try:
            with self.SessionLocal.begin() as db:
                result = db.execute(
                    update(ApiKeyRecord)
                    .where(ApiKeyRecord.key_id == key_id)
                    .values(last_used_at=used_at or datetime.now(timezone.utc))
                )
        except SQLAlchemyError as e:
            raise StorageError("Failed to update API key usage") from e
        if result.rowcount == 0:
            raise NotFoundError("API key not found")

    async def delete_api_key(self, key_id: str) -> None:
        await self.init()
        try:
            with self.SessionLocal.begin() as db:
                db.execute(delete(ApiKeyRecord).where(ApiKeyRecord.key_id == key_id))
        except SQLAlchemyError as e:
            raise StorageError("Failed to delete API key") from e

    async def clear_all_data(self) -> None:
        await self.init()
        try:
            with self.SessionLocal.begin() as db:
                db.execute(delete(ApiKeyRecord))
                db.execute(delete(UserPreferenceRecord))
        except SQLAlchemyError as e:
            raise StorageError("Failed to clear data") from e
        self._encryption_key = None

    async def get_user_preferences(self) -> UserPreferences:
        await self.init()
        try:
            with self.SessionLocal() as db:
                row = db.get(UserPreferenceRecord, PREFERENCES_ROW_ID)
        except SQLAlchemyError as e:
            raise StorageError("Failed to retrieve user preferences") from e

        if row is None:
            return UserPreferences(encryption_key=self._encryption_key)
        return UserPreferences(
            encryption_key=self._encryption_key,
            default_provider=AIProvider(row.default_provider) if row.default_provider else None,
            gemini_fallback_enabled=row.gemini_fallback_enabled,
            usage_tracking_enabled=row.usage_tracking_enabled,
        )

    async def set_user_preferences(self, **preferences) -> None:
        await self.init()
        if "encryption_key" in preferences:
            self._encryption_key = preferences.pop("encryption_key")
        if not preferences:
            return

        merged = (await self.get_user_preferences()).model_copy(update=preferences)
        try:
            with self.SessionLocal.begin() as db:
                db.merge(
                    UserPreferenceRecord(
                        id=PREFERENCES_ROW_ID,
                        default_provider=(
                            AIProvider(merged.default_provider).value
                            if merged.default_provider
                            else None
                        ),
                        gemini_fallback_enabled=merged.gemini_fallback_enabled,
                        usage_tracking_enabled=merged.usage_tracking_enabled,
                    )
                )
        except SQLAlchemyError as e:
            raise StorageError("Failed to store user preferences") from e

    async def get_storage_stats(self) -> StorageStats:
        return compute_storage_stats(await self.get_api_keys())
