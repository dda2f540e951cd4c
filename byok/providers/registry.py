"""Provider lookup keyed by the closed set of supported providers."""
from typing import Dict, Optional, Type
import httpx
from byok.keys.models import AIProvider
from byok.providers.base import LLMProvider
from byok.providers.anthropic import AnthropicProvider
from byok.providers.google import GoogleProvider
from byok.providers.openai import OpenAIProvider

PROVIDER_CLASSES: Dict[AIProvider, Type[LLMProvider]] = {
    AIProvider.OPENAI: OpenAIProvider,
    AIProvider.ANTHROPIC: AnthropicProvider,
    AIProvider.GOOGLE: GoogleProvider,
}


def get_provider(
    provider: AIProvider, transport: Optional[httpx.AsyncBaseTransport] = None
) -> LLMProvider:
    """Select a provider implementation by name."""
    try:
        provider_class = PROVIDER_CLASSES[AIProvider(provider)]
    except (KeyError, ValueError):
        raise ValueError(f"Unsupported provider: {provider}")
    return provider_class(transport=transport)
