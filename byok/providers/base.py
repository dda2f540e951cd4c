"""Base provider interface for AI providers."""
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, Optional
import httpx
from byok.config import settings
from byok.crypto.encryption import sanitize_error
from byok.keys.models import AIProvider
from byok.providers.events import GenerateOptions, GenerationEvent


@dataclass
class ProviderResponse:
    """Standardized non-streaming response from AI providers."""

    content: str
    model: str
    tokens_in: int
    tokens_out: int
    finish_reason: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class ProviderError(Exception):
    """Base exception for provider errors."""

    pass


class ProviderTimeoutError(ProviderError):
    """Raised when a provider request times out."""

    pass


class ProviderRateLimitError(ProviderError):
    """Raised when a provider rate limit is exceeded."""

    pass


async def iter_sse_data(response: httpx.Response) -> AsyncIterator[Dict[str, Any]]:
    """Yield decoded ``data:`` payloads of a server-sent event stream.

    Lines that are not valid JSON objects are skipped.
    """
    async for line in response.aiter_lines():
        line = line.strip()
        if not line.startswith("data:"):
            continue
        data = line[len("data:"):].strip()
        if not data or data == "[DONE]":
            continue
        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            continue
        if isinstance(payload, dict):
            yield payload


def error_from_payload(data: Any) -> Optional[str]:
    """Return the error message carried by a decoded JSON payload, if any."""
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        message = error.get("message") or "Unknown error"
        label = error.get("status") or error.get("type")
        if label:
            message = f"{message} [{label}]"
        return message
    if isinstance(error, str):
        return error
    return None


def extract_error_message(body: bytes, default: str) -> str:
    """Pull the provider's error message out of an error response body."""
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return default
    return error_from_payload(data) or default


class LLMProvider(ABC):
    """Abstract base class for AI providers."""

    display_name: str = ""
    default_model: str = ""
    # Settings attribute holding the server-side key, if the provider has one
    server_key_setting: Optional[str] = None

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
    ):
        self.transport = transport
        self.timeout = timeout if timeout is not None else settings.provider_timeout

    @property
    @abstractmethod
    def name(self) -> AIProvider:
        """Return the provider name."""
        pass

    @property
    def missing_key_message(self) -> str:
        return f"{self.display_name} API key is required. Add your key in AI Keys settings."

    def resolve_api_key(self, api_key: Optional[str] = None) -> Optional[str]:
        """Prefer the caller's key, then the server-side key."""
        if api_key:
            return api_key
        if self.server_key_setting:
            return getattr(settings, self.server_key_setting, None)
        return None

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        **kwargs: Any,
    ) -> ProviderResponse:
        """
        Send a single, non-streaming completion request.

        Args:
            prompt: User prompt
            api_key: Key to authenticate with (server key when omitted)
            model: Model name to use (provider-specific)
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate
            **kwargs: Additional provider-specific parameters

        Returns:
            ProviderResponse with standardized format

        Raises:
            ProviderError: If the request fails
        """
        pass

    @abstractmethod
    def stream(
        self, options: GenerateOptions, model: Optional[str] = None
    ) -> AsyncIterator[GenerationEvent]:
        """
        Stream a component generation.

        Yields ``start``, any number of ``chunk`` events and then exactly one
        of ``complete`` or ``error``. Failures are reported as ``error``
        events, never raised.
        """
        pass

    async def _post_json(
        self, url: str, payload: Dict[str, Any], headers: Dict[str, str]
    ) -> Dict[str, Any]:
        """POST a JSON payload and map transport failures to provider errors."""
        try:
            async with self._client() as client:
                response = await client.post(url, json=payload, headers=headers)
                response.raise_for_status()
                return response.json()
        except httpx.TimeoutException:
            raise ProviderTimeoutError(
                f"{self.display_name} request timed out after {self.timeout}s"
            )
        except httpx.HTTPStatusError as e:
            message = extract_error_message(e.response.content, e.response.reason_phrase)
            if e.response.status_code == 429:
                raise ProviderRateLimitError(
                    sanitize_error(f"{self.display_name} rate limit exceeded: {message}")
                )
            raise ProviderError(
                sanitize_error(
                    f"{self.display_name} API error: {e.response.status_code} - {message}"
                )
            )
        except httpx.HTTPError as e:
            raise ProviderError(sanitize_error(f"{self.display_name} request failed: {e}"))
        except ValueError:
            raise ProviderError(f"{self.display_name} returned an invalid response")

    async def _stream_sse(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Dict[str, str],
        extract_text: Callable[[Dict[str, Any]], Optional[str]],
        extract_error: Callable[[Dict[str, Any]], Optional[str]] = error_from_payload,
    ) -> AsyncIterator[GenerationEvent]:
        """Run a streaming request and translate its SSE payloads into events.

        A payload carrying an error ends the stream with an ``error`` event,
        even when the HTTP status was 200.
        """
        yield GenerationEvent.start()

        try:
            async with self._client() as client:
                async with client.stream("POST", url, json=payload, headers=headers) as response:
                    if response.status_code >= 400:
                        body = await response.aread()
                        message = extract_error_message(body, response.reason_phrase)
                        yield GenerationEvent.error(
                            sanitize_error(
                                f"{self.display_name} error ({response.status_code}): {message}"
                            )
                        )
                        return

                    async for data in iter_sse_data(response):
                        error = extract_error(data)
                        if error:
                            yield GenerationEvent.error(
                                sanitize_error(f"{self.display_name} error: {error}")
                            )
                            return
                        text = extract_text(data)
                        if text:
                            yield GenerationEvent.chunk(text)
        except httpx.TimeoutException:
            yield GenerationEvent.error(
                f"{self.display_name} request timed out after {self.timeout}s"
            )
            return
        except httpx.HTTPError as e:
            yield GenerationEvent.error(
                sanitize_error(f"{self.display_name} generation failed: {e}")
            )
            return

        yield GenerationEvent.complete()
