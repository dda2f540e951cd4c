"""
Key management service for user supplied provider API keys.

The manager is the only component talking to the key store. It encrypts on
the way in, decrypts on the way out, and keeps at most one default key per
provider. The master key is always supplied by the caller.
"""
from typing import Any, Callable, Dict, List, Optional
from byok.crypto.encryption import (
    AI_PROVIDERS,
    create_encrypted_api_key,
    decrypt_api_key,
    encrypt_api_key,
    is_api_key_expired,
    validate_api_key,
)
from byok.errors import DecryptionError, NotFoundError, ValidationError
from byok.keys.models import (
    AIProvider,
    DecryptedApiKey,
    EncryptedApiKey,
    GenerationRequest,
    GenerationResponse,
    StorageStats,
    TokenUsage,
    UsageStats,
)
from byok.metrics.prometheus import record_key_operation
from byok.providers.base import LLMProvider
from byok.providers.registry import get_provider
from byok.storage.base import KeyStore
from byok.utils.logging import get_logger

logger = get_logger(__name__)


class AIKeyManager:
    """Service for managing encrypted provider API keys."""

    def __init__(
        self,
        store: KeyStore,
        provider_factory: Callable[[AIProvider], LLMProvider] = get_provider,
    ):
        self.store = store
        self.provider_factory = provider_factory
        self._master_key: Optional[str] = None

    async def initialize(self, master_key: str) -> None:
        """
        Remember the caller's master key for the rest of the session.

        The key is derived or generated by the caller; the manager only keeps
        it in memory and in the session-scoped preferences.
        """
        self._master_key = master_key
        await self.store.set_user_preferences(encryption_key=master_key)

    def _resolve_master_key(self, master_key: Optional[str]) -> str:
        resolved = master_key or self._master_key
        if not resolved:
            raise ValidationError("Encryption key is required")
        return resolved

    def _decrypt(self, record: EncryptedApiKey, master_key: str) -> DecryptedApiKey:
        plaintext = decrypt_api_key(record.encrypted_key, master_key)
        return DecryptedApiKey(**record.model_dump(), api_key=plaintext)

    async def add_api_key(
        self,
        provider: AIProvider,
        api_key: str,
        master_key: str,
        make_default: bool = False,
    ) -> EncryptedApiKey:
        """
        Encrypt and store a new API key.

        Args:
            provider: Provider the key belongs to
            api_key: Plaintext API key
            master_key: Caller's master key
            make_default: Make this key the provider default

        Returns:
            The stored record (ciphertext only)

        Raises:
            ValidationError: If a key is missing or the format is invalid
        """
        if not master_key:
            raise ValidationError("Encryption key is required")
        if api_key is None or api_key == "":
            raise ValidationError("API key is required")
        if not validate_api_key(api_key, provider):
            raise ValidationError("Invalid API key format")

        await self.store.init()
        record = create_encrypted_api_key(
            AIProvider(provider), api_key, master_key, is_default=make_default
        )
        await self.store.store_api_key(record, make_default=make_default)

        record_key_operation("add")
        logger.info(
            "Stored API key",
            extra={"key_id": record.key_id, "provider": record.provider.value},
        )
        return record

    async def get_api_keys(self, master_key: Optional[str] = None) -> List[DecryptedApiKey]:
        """
        Return every stored key, decrypted.

        Records that cannot be decrypted are skipped so that one damaged or
        foreign record does not hide the others.
        """
        master_key = self._resolve_master_key(master_key)
        decrypted = []
        for record in await self.store.get_api_keys():
            try:
                decrypted.append(self._decrypt(record, master_key))
            except DecryptionError:
                logger.warning(
                    "Skipping API key that could not be decrypted",
                    extra={"key_id": record.key_id, "provider": record.provider.value},
                )
        return decrypted

    async def get_all_api_keys(self, master_key: Optional[str] = None) -> List[str]:
        """Return the plaintext of every key that decrypts."""
        return [key.get_api_key() for key in await self.get_api_keys(master_key)]

    async def get_api_key(
        self, key_id: str, master_key: Optional[str] = None
    ) -> Optional[DecryptedApiKey]:
        """Return one decrypted key, or None if it does not exist."""
        record = await self.store.get_api_key(key_id)
        if record is None:
            return None
        return self._decrypt(record, self._resolve_master_key(master_key))

    async def get_default_api_key(
        self, provider: AIProvider, master_key: Optional[str] = None
    ) -> Optional[DecryptedApiKey]:
        """Return the provider's default key decrypted, or None."""
        record = await self.store.get_default_api_key(AIProvider(provider))
        if record is None:
            return None
        return self._decrypt(record, self._resolve_master_key(master_key))

    async def update_api_key(self, key_id: str, api_key: str, master_key: str) -> EncryptedApiKey:
        """Replace a key's secret, keeping its id, creation time and flags."""
        master_key = self._resolve_master_key(master_key)
        if api_key is None or api_key == "":
            raise ValidationError("API key is required")

        existing = await self.store.get_api_key(key_id)
        if existing is None:
            raise NotFoundError("API key not found")
        if not validate_api_key(api_key, existing.provider):
            raise ValidationError(
                f"Invalid API key format for {AI_PROVIDERS[existing.provider]['name']}"
            )

        updated = existing.model_copy(
            update={"encrypted_key": encrypt_api_key(api_key.strip(), master_key)}
        )
        await self.store.store_api_key(updated)

        record_key_operation("update")
        logger.info(
            "Rotated API key",
            extra={"key_id": key_id, "provider": existing.provider.value},
        )
        return updated

    async def delete_api_key(self, key_id: str) -> None:
        await self.store.delete_api_key(key_id)
        record_key_operation("delete")
        logger.info("Deleted API key", extra={"key_id": key_id})

    async def set_default_api_key(
        self, key_id: str, provider: Optional[AIProvider] = None
    ) -> None:
        """
        Make a key the default of its provider.

        The store clears the previous default and sets the new one in a
        single write. Two managers writing for the same user concurrently can
        still race if the store does not serialize writes.
        """
        record = await self.store.get_api_key(key_id)
        if record is None:
            raise NotFoundError("API key not found")
        if provider is not None and AIProvider(provider) != record.provider:
            raise ValidationError(
                f"API key {key_id} does not belong to provider {AIProvider(provider).value}"
            )

        await self.store.store_api_key(record, make_default=True)
        await self.store.set_user_preferences(default_provider=record.provider)

        record_key_operation("set_default")
        logger.info(
            "Set default API key",
            extra={"key_id": key_id, "provider": record.provider.value},
        )

    def validate_key(self, provider: AIProvider, api_key: str) -> bool:
        return validate_api_key(api_key, provider)

    async def get_usage_stats(self) -> UsageStats:
        """Aggregate key metadata. Nothing is decrypted."""
        records = await self.store.get_api_keys()
        keys_by_provider: Dict[AIProvider, int] = {provider: 0 for provider in AIProvider}
        last_used_times: Dict[str, str] = {}
        expired_keys: List[str] = []

        for record in records:
            keys_by_provider[record.provider] += 1
            if record.last_used_at:
                last_used_times[record.key_id] = record.last_used_at.isoformat()
            if is_api_key_expired(record):
                expired_keys.append(record.key_id)

        return UsageStats(
            total_keys=len(records),
            keys_by_provider=keys_by_provider,
            last_used_times=last_used_times,
            expired_keys=expired_keys,
        )

    async def make_generation_request(
        self, request: GenerationRequest, master_key: Optional[str] = None
    ) -> GenerationResponse:
        """
        Serve a non-streaming request with the user's stored key.

        Raises:
            NotFoundError: If no usable key exists for the provider
            ProviderError: Propagated unchanged from the provider call
        """
        if request.key_id:
            key = await self.get_api_key(request.key_id, master_key)
            if key is not None and key.provider != request.provider:
                key = None
        else:
            key = await self.get_default_api_key(request.provider, master_key)
        if key is None:
            raise NotFoundError("No default API key found")

        provider = self.provider_factory(request.provider)
        options: Dict[str, Any] = dict(request.options)
        response = await provider.complete(
            request.prompt,
            api_key=key.get_api_key(),
            model=request.model,
            temperature=options.pop("temperature", 0.7),
            max_tokens=options.pop("max_tokens", None),
            **options,
        )

        await self.store.update_api_key_usage(key.key_id)
        logger.info(
            "Generation request served",
            extra={
                "key_id": key.key_id,
                "provider": request.provider.value,
                "model": response.model,
            },
        )

        return GenerationResponse(
            content=response.content,
            usage=TokenUsage(
                prompt_tokens=response.tokens_in,
                completion_tokens=response.tokens_out,
                total_tokens=response.tokens_in + response.tokens_out,
            ),
            provider=request.provider,
            model=response.model,
        )

    async def clear_all_data(self) -> None:
        await self.store.clear_all_data()
        self._master_key = None
        record_key_operation("clear")

    async def get_storage_stats(self) -> StorageStats:
        return await self.store.get_storage_stats()

    def get_available_models(self, provider: AIProvider) -> List[str]:
        return list(AI_PROVIDERS[AIProvider(provider)]["models"])

    def get_provider_config(self, provider: AIProvider) -> Dict[str, Any]:
        return dict(AI_PROVIDERS[AIProvider(provider)])
