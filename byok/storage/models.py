"""Database models for key records and user preferences."""
from datetime import datetime, timezone
from sqlalchemy import (
    Column,
    String,
    Boolean,
    DateTime,
    Integer,
    Text,
    Index,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApiKeyRecord(Base):
    """Encrypted provider API key."""

    __tablename__ = "byok_api_keys"

    key_id = Column(String(64), primary_key=True)
    provider = Column(String(32), nullable=False)
    encrypted_key = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    is_default = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("idx_byok_api_keys_provider_default", "provider", "is_default"),
    )


class UserPreferenceRecord(Base):
    """Durable user preferences. The encryption key is never stored here."""

    __tablename__ = "byok_user_preferences"

    id = Column(Integer, primary_key=True, default=1)
    default_provider = Column(String(32), nullable=True)
    gemini_fallback_enabled = Column(Boolean, nullable=False, default=True)
    usage_tracking_enabled = Column(Boolean, nullable=False, default=True)
