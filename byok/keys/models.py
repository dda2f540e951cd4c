"""Data models for stored provider keys and key management results."""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, SecretStr


class AIProvider(str, Enum):
    """AI providers a user can bring a key for."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"


class EncryptedApiKey(BaseModel):
    """Persisted key record. Only ciphertext is ever stored."""

    provider: AIProvider
    encrypted_key: str
    key_id: str
    created_at: datetime
    last_used_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    is_default: bool = False


class DecryptedApiKey(EncryptedApiKey):
    """Key record together with its plaintext value."""

    api_key: SecretStr

    def get_api_key(self) -> str:
        return self.api_key.get_secret_value()


class UserPreferences(BaseModel):
    """Per-user preferences kept next to the key records."""

    # Session scoped: stores never write this field to durable storage
    encryption_key: Optional[str] = Field(default=None, repr=False)
    default_provider: Optional[AIProvider] = AIProvider.GOOGLE
    gemini_fallback_enabled: bool = True
    usage_tracking_enabled: bool = True


class UsageStats(BaseModel):
    """Aggregated key metadata."""

    total_keys: int
    keys_by_provider: Dict[AIProvider, int]
    last_used_times: Dict[str, str]
    expired_keys: List[str]


class StorageStats(BaseModel):
    """Size information reported by a key store."""

    api_keys_count: int
    total_size: str


class GenerationRequest(BaseModel):
    """Non-streaming generation request served with a stored key."""

    provider: AIProvider
    model: str
    prompt: str
    key_id: Optional[str] = None
    options: Dict[str, Any] = Field(default_factory=dict)


class TokenUsage(BaseModel):
    """Token usage information."""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


class GenerationResponse(BaseModel):
    """Provider response normalized to one shape."""

    content: str
    usage: TokenUsage
    provider: AIProvider
    model: str
