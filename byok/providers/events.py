"""Streaming generation events and request options."""
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class EventType(str, Enum):
    """Kinds of events produced while generating."""

    START = "start"
    CHUNK = "chunk"
    COMPLETE = "complete"
    ERROR = "error"
    # Emitted by the router, never by providers
    ROUTING = "routing"
    FALLBACK = "fallback"


@dataclass
class GenerationEvent:
    """One event of a generation stream, discriminated by ``type``."""

    type: EventType
    content: Optional[str] = None
    message: Optional[str] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    reason: Optional[str] = None
    partial: bool = False
    timestamp: float = field(default_factory=time.time)

    @property
    def is_terminal(self) -> bool:
        return self.type in (EventType.COMPLETE, EventType.ERROR)

    @classmethod
    def start(cls) -> "GenerationEvent":
        return cls(type=EventType.START)

    @classmethod
    def chunk(cls, content: str) -> "GenerationEvent":
        return cls(type=EventType.CHUNK, content=content)

    @classmethod
    def complete(cls, partial: bool = False) -> "GenerationEvent":
        return cls(type=EventType.COMPLETE, partial=partial)

    @classmethod
    def error(cls, message: str) -> "GenerationEvent":
        return cls(type=EventType.ERROR, message=message)

    @classmethod
    def routing(cls, provider: str, model: str, reason: str) -> "GenerationEvent":
        return cls(type=EventType.ROUTING, provider=provider, model=model, reason=reason)

    @classmethod
    def fallback(cls, provider: str, model: str, message: str) -> "GenerationEvent":
        return cls(type=EventType.FALLBACK, provider=provider, model=model, message=message)


@dataclass
class GenerateOptions:
    """Options of a component generation request."""

    prompt: str
    framework: str = "react"
    component_library: Optional[str] = None
    style: Optional[str] = None
    typescript: bool = False
    # User supplied key for the pinned provider
    api_key: Optional[str] = field(default=None, repr=False)
    context_addition: Optional[str] = None
    image_base64: Optional[str] = field(default=None, repr=False)
    image_mime_type: Optional[str] = None
    # Pinned provider/model; None lets the router decide
    provider: Optional[str] = None
    model: Optional[str] = None
    is_free_tier: bool = False

    @property
    def has_image(self) -> bool:
        return bool(self.image_base64 and self.image_mime_type)
