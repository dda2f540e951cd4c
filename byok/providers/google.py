"""Google Gemini provider adapter."""
from typing import Any, AsyncIterator, Dict, List, Optional
from byok.config import settings
from byok.keys.models import AIProvider
from byok.providers.base import LLMProvider, ProviderError, ProviderResponse
from byok.providers.events import GenerateOptions, GenerationEvent
from byok.providers.prompts import build_system_prompt, build_user_prompt


class GoogleProvider(LLMProvider):
    """Gemini REST API provider implementation."""

    display_name = "Gemini"
    default_model = "gemini-2.0-flash"
    base_url = "https://generativelanguage.googleapis.com/v1beta"
    server_key_setting = "gemini_api_key"

    @property
    def name(self) -> AIProvider:
        return AIProvider.GOOGLE

    @property
    def missing_key_message(self) -> str:
        return "Gemini API key is required. Set GEMINI_API_KEY or provide your own key."

    def _headers(self, api_key: str) -> Dict[str, str]:
        # Header auth keeps the key out of URLs and therefore out of error text
        return {
            "x-goog-api-key": api_key,
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
        """Send a generateContent request to Gemini."""
        api_key = self.resolve_api_key(api_key)
        if not api_key:
            raise ProviderError(self.missing_key_message)

        model = model or self.default_model
        generation_config = {
            "temperature": temperature,
            "maxOutputTokens": max_tokens or settings.max_output_tokens,
        }
        generation_config.update(kwargs)
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": generation_config,
        }

        data = await self._post_json(
            f"{self.base_url}/models/{model}:generateContent", payload, self._headers(api_key)
        )
        try:
            candidate = data["candidates"][0]
            usage = data.get("usageMetadata", {})
            return ProviderResponse(
                content=_candidate_text(candidate),
                model=model,
                tokens_in=usage.get("promptTokenCount", 0),
                tokens_out=usage.get("candidatesTokenCount", 0),
                finish_reason=candidate.get("finishReason"),
            )
        except (KeyError, IndexError, TypeError, AttributeError):
            raise ProviderError("Gemini returned an unexpected response shape")

    def _parts(self, options: GenerateOptions) -> List[Dict[str, Any]]:
        parts: List[Dict[str, Any]] = [{"text": build_user_prompt(options)}]
        if options.has_image:
            parts.append(
                {
                    "inlineData": {
                        "mimeType": options.image_mime_type,
                        "data": options.image_base64,
                    }
                }
            )
        return parts

    async def stream(
        self, options: GenerateOptions, model: Optional[str] = None
    ) -> AsyncIterator[GenerationEvent]:
        api_key = self.resolve_api_key(options.api_key)
        if not api_key:
            yield GenerationEvent.error(self.missing_key_message)
            return

        model = model or options.model or self.default_model
        payload = {
            "systemInstruction": {"parts": [{"text": build_system_prompt(options.context_addition)}]},
            "contents": [{"role": "user", "parts": self._parts(options)}],
            "generationConfig": {"maxOutputTokens": settings.max_output_tokens},
        }

        async for event in self._stream_sse(
            f"{self.base_url}/models/{model}:streamGenerateContent?alt=sse",
            payload,
            self._headers(api_key),
            _extract_chunk_text,
        ):
            yield event


def _candidate_text(candidate: Dict[str, Any]) -> str:
    parts = (candidate.get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts)


def _extract_chunk_text(data: Dict[str, Any]) -> Optional[str]:
    candidates = data.get("candidates") or []
    if not candidates:
        return None
    return _candidate_text(candidates[0]) or None
