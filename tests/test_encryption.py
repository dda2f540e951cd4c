"""Tests for encryption primitives."""
import pytest
from datetime import datetime, timedelta, timezone
from byok.crypto.encryption import (
    create_encrypted_api_key,
    decrypt_api_key,
    derive_key,
    encrypt_api_key,
    generate_key_id,
    generate_master_key,
    hash_api_key,
    is_api_key_expired,
    sanitize_error,
    validate_api_key,
)
from byok.errors import DecryptionError, ValidationError
from byok.keys.models import AIProvider, EncryptedApiKey


def _record(created_days_ago=0, expires_in_days=None):
    now = datetime.now(timezone.utc)
    return EncryptedApiKey(
        provider=AIProvider.OPENAI,
        encrypted_key="v1.x.y",
        key_id=generate_key_id(),
        created_at=now - timedelta(days=created_days_ago),
        expires_at=now + timedelta(days=expires_in_days) if expires_in_days is not None else None,
    )


@pytest.mark.parametrize(
    "secret",
    ["sk-1234567890abcdefghij", "a", "ünïcødé key ✓", "x" * 4096],
)
def test_encrypt_decrypt_round_trip(secret):
    """Test that decrypting with the same key returns the secret."""
    master_key = generate_master_key()
    assert decrypt_api_key(encrypt_api_key(secret, master_key), master_key) == secret


def test_encrypt_is_not_deterministic():
    """Test that each encryption uses a fresh salt."""
    master_key = generate_master_key()
    first = encrypt_api_key("sk-1234567890abcdefghij", master_key)
    second = encrypt_api_key("sk-1234567890abcdefghij", master_key)
    assert first != second
    assert "sk-1234567890abcdefghij" not in first


def test_decrypt_with_wrong_key_fails():
    """Test that a wrong master key never yields the secret."""
    ciphertext = encrypt_api_key("sk-1234567890abcdefghij", generate_master_key())
    with pytest.raises(DecryptionError):
        decrypt_api_key(ciphertext, generate_master_key())


@pytest.mark.parametrize("ciphertext", ["", "garbage", "v1.???.???", "v2.abc.def", "v1.AAAA.notatoken"])
def test_decrypt_malformed_ciphertext_is_generic_failure(ciphertext):
    """Test that malformed input fails the same way as a wrong key."""
    with pytest.raises(DecryptionError) as exc_info:
        decrypt_api_key(ciphertext, generate_master_key())
    assert str(exc_info.value) == "Failed to decrypt API key. Invalid encryption key."


def test_encrypt_validation_messages():
    """Test the distinct validation messages."""
    with pytest.raises(ValidationError, match="API key is required"):
        encrypt_api_key(None, "master")
    with pytest.raises(ValidationError, match="API key cannot be empty"):
        encrypt_api_key("", "master")
    with pytest.raises(ValidationError, match="Encryption key is required"):
        encrypt_api_key("sk-1234567890abcdefghij", "")


def test_decrypt_requires_ciphertext():
    """Test decrypting None."""
    with pytest.raises(ValidationError, match="Encrypted key is required"):
        decrypt_api_key(None, "master")


def test_derive_key_is_pure():
    """Test key derivation determinism and sensitivity to inputs."""
    key = derive_key("correct horse battery staple")
    assert key == derive_key("correct horse battery staple")
    assert len(key) == 64
    assert key != derive_key("correct horse battery stapler")
    assert key != derive_key("correct horse battery staple", salt="other-salt")


def test_generate_master_key_is_random():
    """Test master key entropy and uniqueness."""
    keys = {generate_master_key() for _ in range(50)}
    assert len(keys) == 50
    assert all(len(key) == 64 for key in keys)


@pytest.mark.parametrize(
    "api_key,provider,expected",
    [
        ("sk-1234567890abcdefghij", AIProvider.OPENAI, True),
        ("invalid-key", AIProvider.OPENAI, False),
        ("sk-short", AIProvider.OPENAI, False),
        ("sk-ant-REDACTED", AIProvider.ANTHROPIC, True),
        ("sk-1234567890abcdefghij", AIProvider.ANTHROPIC, False),
        ("sk-ant-12345", AIProvider.ANTHROPIC, False),
        ("AIzaSyD1234567890abcdefghij", AIProvider.GOOGLE, True),
        ("AIzaSyD1234 567890abcdefghij", AIProvider.GOOGLE, False),
        ("BIzaSyD1234567890abcdefghij", AIProvider.GOOGLE, False),
        ("  sk-1234567890abcdefghij  ", AIProvider.OPENAI, True),
        ("\tAIzaSyD1234567890abcdefghij\n", AIProvider.GOOGLE, True),
        ("sk-1234567890abcdefghij", "openai", True),
        ("sk-1234567890abcdefghij", "mistral", False),
        (None, AIProvider.OPENAI, False),
    ],
)
def test_validate_api_key(api_key, provider, expected):
    """Test provider key format validation."""
    assert validate_api_key(api_key, provider) is expected


def test_hash_api_key():
    """Test fingerprint stability."""
    assert hash_api_key("sk-abc") == hash_api_key("sk-abc")
    assert hash_api_key("sk-abc") != hash_api_key("sk-abd")
    assert "sk-abc" not in hash_api_key("sk-abc")


def test_generate_key_id_unique_and_prefixed():
    """Test key id format."""
    ids = {generate_key_id() for _ in range(1000)}
    assert len(ids) == 1000
    assert all(key_id.startswith("key_") for key_id in ids)


def test_expiry_boundaries():
    """Test implicit and explicit expiry."""
    assert is_api_key_expired(_record(created_days_ago=100)) is True
    assert is_api_key_expired(_record(created_days_ago=30)) is False
    assert is_api_key_expired(_record(created_days_ago=0, expires_in_days=-10)) is True
    assert is_api_key_expired(_record(created_days_ago=200, expires_in_days=30)) is False


def test_expiry_exact_threshold():
    """Test that a key exactly 90 days old is expired."""
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    record = _record()
    at_threshold = record.model_copy(update={"created_at": now - timedelta(days=90)})
    below = record.model_copy(update={"created_at": now - timedelta(days=90) + timedelta(seconds=1)})
    assert is_api_key_expired(at_threshold, now=now) is True
    assert is_api_key_expired(below, now=now) is False


def test_create_encrypted_api_key():
    """Test building a record from a plaintext key."""
    master_key = generate_master_key()
    record = create_encrypted_api_key(AIProvider.OPENAI, "sk-1234567890abcdefghij", master_key)
    assert record.provider == AIProvider.OPENAI
    assert record.key_id.startswith("key_")
    assert record.is_default is False
    assert decrypt_api_key(record.encrypted_key, master_key) == "sk-1234567890abcdefghij"

    with pytest.raises(ValidationError, match="Invalid API key format for OpenAI"):
        create_encrypted_api_key(AIProvider.OPENAI, "invalid-key", master_key)


def test_sanitize_error_masks_keys():
    """Test that key-looking strings are masked."""
    message = sanitize_error("bad key sk-abc123DEF and sk-ant-xyz789 and AIzaSyD123")
    assert "abc123DEF" not in message
    assert "xyz789" not in message
    assert "SyD123" not in message
    assert "sk-***" in message
    assert "sk-ant-***" in message
