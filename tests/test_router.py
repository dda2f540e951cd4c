"""Tests for generation routing and quota fallback."""
import pytest
import httpx
from prometheus_client import REGISTRY
from byok.config import settings
from byok.keys.models import AIProvider
from byok.providers.base import LLMProvider
from byok.providers.events import EventType, GenerateOptions, GenerationEvent
from byok.providers.google import GoogleProvider
from byok.routing.budget import FallbackBudget
from byok.routing.router import GenerationRouter, route_generation

QUOTA_ERROR = "Gemini error (429): Resource has been exhausted (e.g. check quota)."


class ScriptedProvider(LLMProvider):
    """Provider replaying a fixed list of events."""

    def __init__(self, provider, events, default_model="scripted-model"):
        super().__init__()
        self._name = AIProvider(provider)
        self.events = events
        self.default_model = default_model
        self.calls = []
        self.closed = False

    @property
    def name(self):
        return self._name

    async def complete(self, prompt, api_key=None, model=None, temperature=0.7, max_tokens=None, **kwargs):
        raise NotImplementedError

    async def stream(self, options, model=None):
        self.calls.append((options, model))
        try:
            for event in self.events:
                yield event
        finally:
            self.closed = True


def _success(*chunks):
    return [GenerationEvent.start()] + [GenerationEvent.chunk(c) for c in chunks] + [
        GenerationEvent.complete()
    ]


def _quota_failure():
    return [GenerationEvent.start(), GenerationEvent.error(QUOTA_ERROR)]


def _router(providers, daily_limit=100):
    return GenerationRouter(
        budget=FallbackBudget(daily_limit=daily_limit),
        provider_factory=lambda provider: providers[AIProvider(provider)],
    )


async def _collect(router, options):
    return [event async for event in router.route(options)]


def _fallback_count(from_provider, to_provider):
    value = REGISTRY.get_sample_value(
        "byok_fallbacks_total",
        {"from_provider": from_provider, "to_provider": to_provider},
    )
    return value or 0.0


@pytest.fixture
def server_anthropic_key(monkeypatch):
    monkeypatch.setattr(settings, "anthropic_api_key", "sk-ant-REDACTED")


@pytest.mark.asyncio
async def test_auto_route_success():
    """Test a routed request that succeeds on the first provider."""
    google = ScriptedProvider(AIProvider.GOOGLE, _success("<div>", "</div>"))
    router = _router({AIProvider.GOOGLE: google})

    events = await _collect(router, GenerateOptions(prompt="simple button", api_key="AIza-user"))

    assert [e.type for e in events] == [
        EventType.ROUTING,
        EventType.START,
        EventType.CHUNK,
        EventType.CHUNK,
        EventType.COMPLETE,
    ]
    assert events[0].provider == "google"
    assert events[0].model == "gemini-2.0-flash"
    assert events[0].reason == "default"
    options, model = google.calls[0]
    # Auto-routed requests run on server-side credentials
    assert options.api_key is None
    assert model == "gemini-2.0-flash"


@pytest.mark.asyncio
async def test_pinned_provider_uses_user_key():
    """Test a pinned provider with the caller's key."""
    openai = ScriptedProvider(AIProvider.OPENAI, _success("x"), default_model="gpt-4o")
    router = _router({AIProvider.OPENAI: openai})

    events = await _collect(
        router, GenerateOptions(prompt="button", provider="openai", api_key="sk-user-key")
    )

    assert events[0].type == EventType.ROUTING
    assert events[0].provider == "openai"
    assert events[0].model == "gpt-4o"
    assert events[0].reason == "default"
    assert openai.calls[0][0].api_key == "sk-user-key"


@pytest.mark.asyncio
async def test_pinned_unsupported_provider():
    """Test that an unknown provider yields a single error event."""
    router = _router({})

    events = await _collect(router, GenerateOptions(prompt="button", provider="mistral"))

    assert [e.type for e in events] == [EventType.ERROR]
    assert "Unsupported provider" in events[0].message


@pytest.mark.asyncio
async def test_quota_error_falls_back_once(server_anthropic_key):
    """Test a single fallback hop after a quota error."""
    google = ScriptedProvider(AIProvider.GOOGLE, _quota_failure())
    anthropic = ScriptedProvider(AIProvider.ANTHROPIC, _success("ok"))
    router = _router({AIProvider.GOOGLE: google, AIProvider.ANTHROPIC: anthropic})
    before = _fallback_count("google", "anthropic")

    events = await _collect(router, GenerateOptions(prompt="simple button"))

    assert [e.type for e in events] == [
        EventType.ROUTING,
        EventType.START,
        EventType.FALLBACK,
        EventType.START,
        EventType.CHUNK,
        EventType.COMPLETE,
    ]
    fallback = events[2]
    assert fallback.provider == "anthropic"
    assert fallback.model == "claude-haiku-4-5-20251001"
    assert "quota exceeded" in fallback.message
    # The quota error itself is replaced by the fallback
    assert not any(e.type == EventType.ERROR for e in events)
    assert router.budget.usage().used == 1
    assert _fallback_count("google", "anthropic") == before + 1


@pytest.mark.asyncio
async def test_fallback_never_uses_user_key(server_anthropic_key):
    """Test that the fallback attempt runs on the server-side key."""
    openai = ScriptedProvider(
        AIProvider.OPENAI,
        [GenerationEvent.start(), GenerationEvent.error("OpenAI error (429): Rate limit reached")],
    )
    anthropic = ScriptedProvider(AIProvider.ANTHROPIC, _success("ok"))
    router = _router({AIProvider.OPENAI: openai, AIProvider.ANTHROPIC: anthropic})

    await _collect(router, GenerateOptions(prompt="button", provider="openai", api_key="sk-user-key"))

    assert openai.calls[0][0].api_key == "sk-user-key"
    assert anthropic.calls[0][0].api_key is None


@pytest.mark.asyncio
async def test_second_quota_error_is_forwarded(server_anthropic_key):
    """Test that there is never a second fallback hop."""
    google = ScriptedProvider(AIProvider.GOOGLE, _quota_failure())
    anthropic = ScriptedProvider(
        AIProvider.ANTHROPIC,
        [GenerationEvent.start(), GenerationEvent.error("Anthropic error (429): rate limit")],
    )
    router = _router({AIProvider.GOOGLE: google, AIProvider.ANTHROPIC: anthropic})

    events = await _collect(router, GenerateOptions(prompt="simple button"))

    assert [e.type for e in events] == [
        EventType.ROUTING,
        EventType.START,
        EventType.FALLBACK,
        EventType.START,
        EventType.ERROR,
    ]
    assert "rate limit" in events[-1].message
    assert len(google.calls) == 1
    assert len(anthropic.calls) == 1
    assert router.budget.usage().used == 1


@pytest.mark.asyncio
async def test_exhausted_budget_forwards_quota_error(server_anthropic_key):
    """Test that no fallback happens once the daily budget is spent."""
    google = ScriptedProvider(AIProvider.GOOGLE, _quota_failure())
    anthropic = ScriptedProvider(AIProvider.ANTHROPIC, _success("ok"))
    router = _router({AIProvider.GOOGLE: google, AIProvider.ANTHROPIC: anthropic}, daily_limit=1)

    first = await _collect(router, GenerateOptions(prompt="simple button"))
    second = await _collect(router, GenerateOptions(prompt="simple button"))

    assert EventType.FALLBACK in [e.type for e in first]
    assert [e.type for e in second] == [EventType.ROUTING, EventType.START, EventType.ERROR]
    assert second[-1].message == QUOTA_ERROR
    assert len(anthropic.calls) == 1
    assert router.budget.usage().used == 1


@pytest.mark.asyncio
async def test_no_fallback_target_forwards_quota_error(monkeypatch):
    """Test Google quota errors without a server Anthropic key."""
    monkeypatch.setattr(settings, "anthropic_api_key", None)
    google = ScriptedProvider(AIProvider.GOOGLE, _quota_failure())
    router = _router({AIProvider.GOOGLE: google})

    events = await _collect(router, GenerateOptions(prompt="simple button"))

    assert [e.type for e in events] == [EventType.ROUTING, EventType.START, EventType.ERROR]
    assert router.budget.usage().used == 0


@pytest.mark.asyncio
async def test_other_errors_do_not_fall_back(server_anthropic_key):
    """Test that non-quota errors are forwarded as-is."""
    google = ScriptedProvider(
        AIProvider.GOOGLE, [GenerationEvent.start(), GenerationEvent.error("Invalid API key")]
    )
    anthropic = ScriptedProvider(AIProvider.ANTHROPIC, _success("ok"))
    router = _router({AIProvider.GOOGLE: google, AIProvider.ANTHROPIC: anthropic})

    events = await _collect(router, GenerateOptions(prompt="simple button"))

    assert [e.type for e in events] == [EventType.ROUTING, EventType.START, EventType.ERROR]
    assert anthropic.calls == []


@pytest.mark.asyncio
async def test_stream_without_terminal_event_completes_partially():
    """Test that a stream ending early gets a synthetic partial complete."""
    google = ScriptedProvider(
        AIProvider.GOOGLE, [GenerationEvent.start(), GenerationEvent.chunk("half")]
    )
    router = _router({AIProvider.GOOGLE: google})

    events = await _collect(router, GenerateOptions(prompt="simple button"))

    assert [e.type for e in events] == [
        EventType.ROUTING,
        EventType.START,
        EventType.CHUNK,
        EventType.COMPLETE,
    ]
    assert events[-1].partial is True


@pytest.mark.asyncio
async def test_nothing_forwarded_after_terminal_event():
    """Test that events after complete are dropped."""
    google = ScriptedProvider(
        AIProvider.GOOGLE,
        [GenerationEvent.start(), GenerationEvent.complete(), GenerationEvent.chunk("late")],
    )
    router = _router({AIProvider.GOOGLE: google})

    events = await _collect(router, GenerateOptions(prompt="simple button"))

    assert events[-1].type == EventType.COMPLETE
    assert all(e.content != "late" for e in events)
    assert google.closed is True


@pytest.mark.asyncio
async def test_cancellation_closes_provider_stream():
    """Test that closing the consumer closes the provider stream."""
    google = ScriptedProvider(AIProvider.GOOGLE, _success("a", "b", "c"))
    router = _router({AIProvider.GOOGLE: google})

    stream = route_generation(GenerateOptions(prompt="simple button"), router=router)
    received = []
    async for event in stream:
        received.append(event)
        if event.type == EventType.CHUNK:
            break
    await stream.aclose()

    assert [e.type for e in received] == [EventType.ROUTING, EventType.START, EventType.CHUNK]
    assert google.closed is True


@pytest.mark.asyncio
async def test_route_generation_entry_point(server_anthropic_key):
    """Test the single entry point with an explicit router."""
    anthropic = ScriptedProvider(AIProvider.ANTHROPIC, _success("done"))
    router = _router({AIProvider.ANTHROPIC: anthropic})
    prompt = "Build an advanced dashboard with a chart, pagination and authentication " + " ".join(
        ["detail"] * 120
    )

    events = [e async for e in route_generation(GenerateOptions(prompt=prompt), router=router)]

    assert events[0].reason == "quality"
    assert events[0].provider == "anthropic"
    assert events[-1].type == EventType.COMPLETE


def test_get_router_is_shared():
    """Test that the process router and its budget are shared."""
    from byok.routing.router import get_router

    assert get_router() is get_router()
    assert get_router().budget is get_router().budget


@pytest.mark.asyncio
async def test_quota_payload_inside_200_stream_falls_back(monkeypatch, server_anthropic_key):
    """Test fallback when Gemini reports a quota error after a 200 status."""
    monkeypatch.setattr(settings, "gemini_api_key", "AIzaSyD-server-key-1234567890")

    def handler(request):
        body = (
            'data: {"candidates": [{"content": {"parts": [{"text": "<div>"}]}}]}\n\n'
            'data: {"error": {"code": 429, "message": "Resource has been exhausted", '
            '"status": "RESOURCE_EXHAUSTED"}}\n\n'
        )
        return httpx.Response(200, content=body.encode())

    google = GoogleProvider(transport=httpx.MockTransport(handler))
    anthropic = ScriptedProvider(AIProvider.ANTHROPIC, _success("ok"))
    router = _router({AIProvider.GOOGLE: google, AIProvider.ANTHROPIC: anthropic})

    events = await _collect(router, GenerateOptions(prompt="simple button"))

    assert [e.type for e in events] == [
        EventType.ROUTING,
        EventType.START,
        EventType.CHUNK,
        EventType.FALLBACK,
        EventType.START,
        EventType.CHUNK,
        EventType.COMPLETE,
    ]
    assert events[3].provider == "anthropic"
    assert router.budget.usage().used == 1


@pytest.mark.asyncio
async def test_anthropic_quota_without_gemini_key_is_forwarded(monkeypatch):
    """Test that Anthropic quota errors are forwarded when Gemini has no server key."""
    monkeypatch.setattr(settings, "gemini_api_key", None)
    anthropic = ScriptedProvider(
        AIProvider.ANTHROPIC,
        [GenerationEvent.start(), GenerationEvent.error("Anthropic error (429): rate limit")],
    )
    google = ScriptedProvider(AIProvider.GOOGLE, _success("unused"))
    router = _router({AIProvider.ANTHROPIC: anthropic, AIProvider.GOOGLE: google})

    events = await _collect(
        router, GenerateOptions(prompt="button", provider="anthropic", api_key="sk-ant-user-key")
    )

    assert [e.type for e in events] == [EventType.ROUTING, EventType.START, EventType.ERROR]
    assert events[-1].message == "Anthropic error (429): rate limit"
    assert google.calls == []
    assert router.budget.usage().used == 0


@pytest.mark.asyncio
async def test_anthropic_quota_falls_back_to_gemini(monkeypatch):
    """Test Anthropic to Gemini fallback with a server Gemini key."""
    monkeypatch.setattr(settings, "gemini_api_key", "AIzaSyD-server-key-1234567890")
    anthropic = ScriptedProvider(
        AIProvider.ANTHROPIC,
        [GenerationEvent.start(), GenerationEvent.error("Anthropic error (429): rate limit")],
    )
    google = ScriptedProvider(AIProvider.GOOGLE, _success("ok"))
    router = _router({AIProvider.ANTHROPIC: anthropic, AIProvider.GOOGLE: google})

    events = await _collect(
        router, GenerateOptions(prompt="button", provider="anthropic", api_key="sk-ant-user-key")
    )

    assert events[2].type == EventType.FALLBACK
    assert events[2].provider == "google"
    assert events[-1].type == EventType.COMPLETE
    assert google.calls[0][0].api_key is None
