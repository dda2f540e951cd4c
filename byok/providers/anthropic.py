"""Anthropic provider adapter."""
from typing import Any, AsyncIterator, Dict, List, Optional
from byok.config import settings
from byok.keys.models import AIProvider
from byok.providers.base import LLMProvider, ProviderError, ProviderResponse
from byok.providers.events import GenerateOptions, GenerationEvent
from byok.providers.prompts import build_system_prompt, build_user_prompt

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicProvider(LLMProvider):
    """Anthropic Messages API provider implementation."""

    display_name = "Anthropic"
    default_model = "claude-sonnet-4-20250514"
    base_url = "https://api.anthropic.com/v1"
    server_key_setting = "anthropic_api_key"

    @property
    def name(self) -> AIProvider:
        return AIProvider.ANTHROPIC

    def _headers(self, api_key: str) -> Dict[str, str]:
        return {
            "x-api-key": api_key,
            "Content-Type": "application/json",
            "anthropic-version": ANTHROPIC_VERSION,
        }

    async def complete(
        self,
        prompt: str,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        **kwargs: Any,
    ) -> ProviderResponse:
        """Send a message request to Anthropic."""
        api_key = self.resolve_api_key(api_key)
        if not api_key:
            raise ProviderError(self.missing_key_message)

        payload = {
            "model": model or self.default_model,
            "max_tokens": max_tokens or settings.max_output_tokens,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": temperature,
        }
        payload.update(kwargs)

        data = await self._post_json(f"{self.base_url}/messages", payload, self._headers(api_key))
        try:
            text = "".join(
                block.get("text", "")
                for block in data["content"]
                if block.get("type", "text") == "text"
            )
            usage = data.get("usage", {})
            return ProviderResponse(
                content=text,
                model=data.get("model", payload["model"]),
                tokens_in=usage.get("input_tokens", 0),
                tokens_out=usage.get("output_tokens", 0),
                finish_reason=data.get("stop_reason"),
                metadata={"response_id": data.get("id")},
            )
        except (KeyError, TypeError, AttributeError):
            raise ProviderError("Anthropic returned an unexpected response shape")

    def _user_content(self, options: GenerateOptions) -> Any:
        text = build_user_prompt(options)
        if not options.has_image:
            return text
        content: List[Dict[str, Any]] = [
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": options.image_mime_type,
                    "data": options.image_base64,
                },
            },
            {"type": "text", "text": text},
        ]
        return content

    async def stream(
        self, options: GenerateOptions, model: Optional[str] = None
    ) -> AsyncIterator[GenerationEvent]:
        api_key = self.resolve_api_key(options.api_key)
        if not api_key:
            yield GenerationEvent.error(self.missing_key_message)
            return

        payload = {
            "model": model or options.model or self.default_model,
            "max_tokens": settings.max_output_tokens,
            "system": build_system_prompt(options.context_addition),
            "messages": [{"role": "user", "content": self._user_content(options)}],
            "stream": True,
        }

        async for event in self._stream_sse(
            f"{self.base_url}/messages",
            payload,
            self._headers(api_key),
            _extract_text_delta,
        ):
            yield event


def _extract_text_delta(data: Dict[str, Any]) -> Optional[str]:
    if data.get("type") != "content_block_delta":
        return None
    return (data.get("delta") or {}).get("text")
