"""OpenAI provider adapter."""
from typing import Any, AsyncIterator, Dict, List, Optional
from byok.config import settings
from byok.keys.models import AIProvider
from byok.providers.base import LLMProvider, ProviderError, ProviderResponse
from byok.providers.events import GenerateOptions, GenerationEvent
from byok.providers.prompts import build_system_prompt, build_user_prompt


class OpenAIProvider(LLMProvider):
    """OpenAI provider implementation. Only user supplied keys are used."""

    display_name = "OpenAI"
    default_model = "gpt-4o"
    base_url = "https://api.openai.com/v1"

    @property
    def name(self) -> AIProvider:
        return AIProvider.OPENAI

    def _headers(self, api_key: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
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
        """Send chat completion request to OpenAI."""
        api_key = self.resolve_api_key(api_key)
        if not api_key:
            raise ProviderError(self.missing_key_message)

        payload = {
            "model": model or self.default_model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": temperature,
            "max_tokens": max_tokens or settings.max_output_tokens,
        }
        payload.update(kwargs)

        data = await self._post_json(
            f"{self.base_url}/chat/completions", payload, self._headers(api_key)
        )
        try:
            choice = data["choices"][0]
            usage = data.get("usage", {})
            return ProviderResponse(
                content=choice["message"]["content"],
                model=data.get("model", payload["model"]),
                tokens_in=usage.get("prompt_tokens", 0),
                tokens_out=usage.get("completion_tokens", 0),
                finish_reason=choice.get("finish_reason"),
                metadata={"response_id": data.get("id")},
            )
        except (KeyError, IndexError, TypeError):
            raise ProviderError("OpenAI returned an unexpected response shape")

    def _user_content(self, options: GenerateOptions) -> Any:
        text = build_user_prompt(options)
        if not options.has_image:
            return text
        content: List[Dict[str, Any]] = [
            {"type": "text", "text": text},
            {
                "type": "image_url",
                "image_url": {
                    "url": f"data:{options.image_mime_type};base64,{options.image_base64}"
                },
            },
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
            "messages": [
                {"role": "system", "content": build_system_prompt(options.context_addition)},
                {"role": "user", "content": self._user_content(options)},
            ],
            "max_tokens": settings.max_output_tokens,
            "temperature": 0.7,
            "stream": True,
        }

        async for event in self._stream_sse(
            f"{self.base_url}/chat/completions",
            payload,
            self._headers(api_key),
            _extract_delta,
        ):
            yield event


def _extract_delta(data: Dict[str, Any]) -> Optional[str]:
    choices = data.get("choices") or []
    if not choices:
        return None
    delta = choices[0].get("delta") or {}
    return delta.get("content")
