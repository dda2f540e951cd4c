"""Deterministic routing rules for generation requests."""
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from byok.config import settings
from byok.keys.models import AIProvider

DEFAULT_MODEL = "gemini-2.0-flash"
QUALITY_MODEL = "claude-sonnet-4-20250514"
ANTHROPIC_FALLBACK_MODEL = "claude-haiku-4-5-20251001"
GOOGLE_FALLBACK_MODEL = "gemini-2.0-flash"

COMPLEXITY_THRESHOLD = 0.6

COMPLEXITY_KEYWORDS = [
    "state management",
    "animation",
    "api",
    "fetch",
    "authentication",
    "form validation",
    "drag and drop",
    "real-time",
    "websocket",
    "canvas",
    "chart",
    "graph",
    "dashboard",
    "crud",
    "pagination",
    "infinite scroll",
    "virtualized",
    "complex",
    "advanced",
]

QUOTA_ERROR_PATTERNS = [
    "quota",
    "429",
    "rate limit",
    "resource_exhausted",
    "too many requests",
]


class RoutingReason(str, Enum):
    """Why a provider was chosen."""

    DEFAULT = "default"
    VISION = "vision"
    QUALITY = "quality"
    FREE_TIER = "free-tier"
    QUOTA_FALLBACK = "quota-fallback"


@dataclass(frozen=True)
class RoutingDecision:
    """Provider and model chosen for a request."""

    provider: AIProvider
    model: str
    reason: RoutingReason


def analyze_prompt_complexity(prompt: str) -> float:
    """
    Score a prompt between 0 and 1.

    Half of the score comes from length (saturating at 100 words), half from
    distinct complexity keywords (0.2 each, capped at 0.5).
    """
    words = len(prompt.split())
    word_score = min(words / 200, 0.5)

    lower = prompt.lower()
    keyword_hits = sum(1 for keyword in COMPLEXITY_KEYWORDS if keyword in lower)
    keyword_score = min(keyword_hits / 5, 0.5)

    return max(0.0, min(word_score + keyword_score, 1.0))


def route_siza_generation(prompt: str, has_image: bool, is_free_tier: bool) -> RoutingDecision:
    """
    Deterministically pick a provider for an auto-routed request.

    Routing priority:
    1. Image attached: vision-capable default model
    2. Free tier: cost-free default model
    3. Complex prompt: higher quality model
    4. Otherwise the cheap default model
    """
    if has_image:
        return RoutingDecision(AIProvider.GOOGLE, DEFAULT_MODEL, RoutingReason.VISION)

    if is_free_tier:
        return RoutingDecision(AIProvider.GOOGLE, DEFAULT_MODEL, RoutingReason.FREE_TIER)

    if analyze_prompt_complexity(prompt) >= COMPLEXITY_THRESHOLD:
        return RoutingDecision(AIProvider.ANTHROPIC, QUALITY_MODEL, RoutingReason.QUALITY)

    return RoutingDecision(AIProvider.GOOGLE, DEFAULT_MODEL, RoutingReason.DEFAULT)


def is_quota_error(message: Optional[str]) -> bool:
    """Check whether an error message signals quota or rate limit exhaustion."""
    if not message:
        return False
    lower = message.lower()
    return any(pattern in lower for pattern in QUOTA_ERROR_PATTERNS)


def get_quota_fallback(current_provider: AIProvider) -> Optional[RoutingDecision]:
    """Return the provider to fall back to after a quota error, if any."""
    current_provider = AIProvider(current_provider)

    if current_provider == AIProvider.ANTHROPIC:
        if settings.gemini_api_key:
            return RoutingDecision(
                AIProvider.GOOGLE, GOOGLE_FALLBACK_MODEL, RoutingReason.QUOTA_FALLBACK
            )
        return None

    # Google and every other provider fall back to the server-side Anthropic key
    if settings.anthropic_api_key:
        return RoutingDecision(
            AIProvider.ANTHROPIC, ANTHROPIC_FALLBACK_MODEL, RoutingReason.QUOTA_FALLBACK
        )
    return None
