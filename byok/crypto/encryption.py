"""Encryption primitives for user supplied provider API keys.

Keys are encrypted with Fernet (AES-128-CBC + HMAC-SHA256). The Fernet key is
derived from the caller's master key with HKDF over a random per-ciphertext
salt, so encrypting the same key twice never yields the same ciphertext.
"""
import base64
import binascii
import hashlib
import os
import re
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from byok.config import settings
from byok.errors import DecryptionError, ValidationError
from byok.keys.models import AIProvider, EncryptedApiKey

CIPHERTEXT_VERSION = "v1"
SALT_BYTES = 16
HKDF_INFO = b"byok-api-key"
KEY_ID_PREFIX = "key_"

AI_PROVIDERS: Dict[AIProvider, Dict[str, Any]] = {
    AIProvider.OPENAI: {
        "name": "OpenAI",
        "base_url": "https://api.openai.com/v1",
        "models": ["gpt-4o", "gpt-4o-mini", "gpt-4-turbo"],
        "max_tokens": 128000,
        "rate_limit_per_minute": 3500,
        "requires_organization": True,
    },
    AIProvider.ANTHROPIC: {
        "name": "Anthropic",
        "base_url": "https://api.anthropic.com/v1",
        "models": [
            "claude-sonnet-4-20250514",
            "claude-haiku-4-5-20251001",
            "claude-3-5-sonnet-20241022",
        ],
        "max_tokens": 200000,
        "rate_limit_per_minute": 1000,
    },
    AIProvider.GOOGLE: {
        "name": "Google AI",
        "base_url": "https://generativelanguage.googleapis.com/v1beta",
        "models": ["gemini-2.0-flash", "gemini-1.5-pro-latest", "gemini-1.5-flash-latest"],
        "max_tokens": 2097152,
        "rate_limit_per_minute": 60,
    },
}

# Prefix and minimum length per provider
KEY_FORMATS = {
    AIProvider.OPENAI: ("sk-", 20),
    AIProvider.ANTHROPIC: ("sk-ant-", 24),
    AIProvider.GOOGLE: ("AIza", 20),
}

_SECRET_PATTERN = re.compile(r"(sk-ant-|sk-|AIza)[A-Za-z0-9_\-]+")


def _fernet_for(master_key: str, salt: bytes) -> Fernet:
    """Build a Fernet cipher from the master key and a salt."""
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        info=HKDF_INFO,
    )
    return Fernet(base64.urlsafe_b64encode(hkdf.derive(master_key.encode("utf-8"))))


def encrypt_api_key(api_key: str, master_key: str) -> str:
    """
    Encrypt an API key with the caller's master key.

    Args:
        api_key: Plaintext provider API key
        master_key: Master or derived key supplied by the caller

    Returns:
        Ciphertext string in the form ``v1.<salt>.<token>``

    Raises:
        ValidationError: If the API key or master key is missing
    """
    if api_key is None:
        raise ValidationError("API key is required")
    if api_key == "":
        raise ValidationError("API key cannot be empty")
    if not master_key:
        raise ValidationError("Encryption key is required")

    salt = os.urandom(SALT_BYTES)
    token = _fernet_for(master_key, salt).encrypt(api_key.encode("utf-8"))
    encoded_salt = base64.urlsafe_b64encode(salt).decode("ascii")
    return f"{CIPHERTEXT_VERSION}.{encoded_salt}.{token.decode('ascii')}"


def decrypt_api_key(encrypted_key: str, master_key: str) -> str:
    """
    Decrypt a ciphertext produced by ``encrypt_api_key``.

    Raises:
        ValidationError: If the ciphertext or master key is missing
        DecryptionError: If the key is wrong or the ciphertext is damaged
    """
    if encrypted_key is None:
        raise ValidationError("Encrypted key is required")
    if not master_key:
        raise ValidationError("Encryption key is required")

    try:
        version, encoded_salt, token = encrypted_key.split(".")
        if version != CIPHERTEXT_VERSION:
            raise ValueError("unsupported ciphertext version")
        salt = base64.urlsafe_b64decode(encoded_salt.encode("ascii"))
        plaintext = _fernet_for(master_key, salt).decrypt(token.encode("ascii"))
        return plaintext.decode("utf-8")
    except (ValueError, InvalidToken, binascii.Error, AttributeError):
        raise DecryptionError("Failed to decrypt API key. Invalid encryption key.") from None


def derive_key(passphrase: str, salt: Optional[str] = None) -> str:
    """Derive a hex encoded 256-bit key from a passphrase with PBKDF2."""
    if not passphrase:
        raise ValidationError("Passphrase is required")

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=(salt if salt is not None else settings.kdf_default_salt).encode("utf-8"),
        iterations=settings.kdf_iterations,
    )
    return kdf.derive(passphrase.encode("utf-8")).hex()


def generate_master_key() -> str:
    """Generate a random 256-bit master key, hex encoded."""
    return secrets.token_hex(32)


def validate_api_key(api_key: str, provider: AIProvider) -> bool:
    """Check the structural format of a provider API key."""
    if not isinstance(api_key, str):
        return False
    try:
        prefix, min_length = KEY_FORMATS[AIProvider(provider)]
    except (KeyError, ValueError):
        return False

    trimmed = api_key.strip()
    if not trimmed.startswith(prefix) or len(trimmed) < min_length:
        return False
    if AIProvider(provider) == AIProvider.GOOGLE and any(c.isspace() for c in trimmed):
        return False
    return True


validate_key_format = validate_api_key


def hash_api_key(api_key: str) -> str:
    """One-way SHA-256 fingerprint of an API key, for auditing only."""
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


def generate_key_id() -> str:
    """Generate an opaque key identifier."""
    return f"{KEY_ID_PREFIX}{uuid.uuid4().hex}"


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_api_key_expired(record: EncryptedApiKey, now: Optional[datetime] = None) -> bool:
    """
    Check whether a key record is expired.

    An explicit ``expires_at`` wins. Otherwise keys expire once they are
    ``settings.key_max_age_days`` old.
    """
    now = _as_utc(now or datetime.now(timezone.utc))
    if record.expires_at is not None:
        return now >= _as_utc(record.expires_at)
    age = now - _as_utc(record.created_at)
    return age >= timedelta(days=settings.key_max_age_days)


def create_encrypted_api_key(
    provider: AIProvider,
    api_key: str,
    master_key: str,
    is_default: bool = False,
    expires_at: Optional[datetime] = None,
) -> EncryptedApiKey:
    """Validate, encrypt and wrap an API key into a new record."""
    if not validate_api_key(api_key, provider):
        raise ValidationError(
            f"Invalid API key format for {AI_PROVIDERS[AIProvider(provider)]['name']}"
        )

    return EncryptedApiKey(
        provider=provider,
        encrypted_key=encrypt_api_key(api_key.strip(), master_key),
        key_id=generate_key_id(),
        created_at=datetime.now(timezone.utc),
        expires_at=expires_at,
        is_default=is_default,
    )


def sanitize_error(message: str) -> str:
    """Mask anything that looks like a provider API key."""
    return _SECRET_PATTERN.sub(lambda m: f"{m.group(1)}***", message)
