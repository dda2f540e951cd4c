"""Generation routing with quota-aware fallback."""
from contextlib import aclosing
from dataclasses import replace
from functools import lru_cache
from typing import AsyncIterator, Callable, Optional
from byok.keys.models import AIProvider
from byok.metrics.prometheus import (
    record_fallback,
    record_generation_error,
    record_routing,
)
from byok.providers.base import LLMProvider
from byok.providers.events import EventType, GenerateOptions, GenerationEvent
from byok.providers.registry import get_provider
from byok.routing.budget import FallbackBudget
from byok.routing.rules import (
    RoutingDecision,
    RoutingReason,
    get_quota_fallback,
    is_quota_error,
    route_siza_generation,
)
from byok.utils.logging import get_logger

logger = get_logger(__name__)


class GenerationRouter:
    """
    Routes generation requests to a provider and fails over on quota errors.

    Events of one attempt are forwarded in order. A quota ``error`` is held
    back and, when a fallback target exists and the budget allows it,
    replaced by a ``fallback`` event followed by the events of a second
    attempt. There is never more than one fallback hop per request.
    """

    def __init__(
        self,
        budget: FallbackBudget,
        provider_factory: Callable[[AIProvider], LLMProvider] = get_provider,
    ):
        self.budget = budget
        self.provider_factory = provider_factory

    def decide(self, options: GenerateOptions) -> RoutingDecision:
        """Choose the first provider for a request."""
        if options.provider is None:
            return route_siza_generation(
                prompt=options.prompt,
                has_image=options.has_image,
                is_free_tier=options.is_free_tier,
            )
        provider = AIProvider(options.provider)
        model = options.model or self.provider_factory(provider).default_model
        return RoutingDecision(provider, model, RoutingReason.DEFAULT)

    async def _attempt(
        self, decision: RoutingDecision, options: GenerateOptions
    ) -> AsyncIterator[GenerationEvent]:
        """Run one provider attempt, ending with exactly one terminal event."""
        provider = self.provider_factory(decision.provider)
        async with aclosing(provider.stream(options, model=decision.model)) as stream:
            async for event in stream:
                yield event
                if event.is_terminal:
                    return

        logger.warning(
            "Provider stream ended without a terminal event",
            extra={"provider": decision.provider.value, "model": decision.model},
        )
        yield GenerationEvent.complete(partial=True)

    async def route(self, options: GenerateOptions) -> AsyncIterator[GenerationEvent]:
        """
        Route, execute and if needed fail over a generation request.

        Args:
            options: Generation options. When ``options.provider`` is None the
                provider is chosen automatically and server-side keys are
                used; otherwise the caller's ``api_key`` is used.

        Yields:
            ``routing``, then provider events, with at most one ``fallback``
        """
        try:
            decision = self.decide(options)
        except ValueError:
            yield GenerationEvent.error(f"Unsupported provider: {options.provider}")
            return

        record_routing(decision.provider.value, decision.reason.value)
        logger.info(
            "Routing generation",
            extra={
                "provider": decision.provider.value,
                "model": decision.model,
                "reason": decision.reason.value,
            },
        )
        yield GenerationEvent.routing(
            decision.provider.value, decision.model, decision.reason.value
        )

        # Auto-routed requests run on server-side credentials
        attempt_options = options
        if options.provider is None:
            attempt_options = replace(options, api_key=None)

        async with aclosing(self._attempt(decision, attempt_options)) as first:
            async for event in first:
                if event.type == EventType.ERROR and is_quota_error(event.message):
                    fallback = self._claim_fallback(decision)
                    if fallback is None:
                        record_generation_error(decision.provider.value, "quota")
                        yield event
                        return
                    break
                if event.type == EventType.ERROR:
                    record_generation_error(decision.provider.value, "provider")
                yield event
                if event.is_terminal:
                    return
            else:
                return

        yield GenerationEvent.fallback(
            fallback.provider.value,
            fallback.model,
            f"{decision.provider.value} quota exceeded, falling back to {fallback.provider.value}",
        )

        # Fallbacks always run on server-side credentials
        fallback_options = replace(options, api_key=None)
        async with aclosing(self._attempt(fallback, fallback_options)) as second:
            async for event in second:
                if event.type == EventType.ERROR:
                    error_type = "quota" if is_quota_error(event.message) else "provider"
                    record_generation_error(fallback.provider.value, error_type)
                yield event
                if event.is_terminal:
                    return

    def _claim_fallback(self, decision: RoutingDecision) -> Optional[RoutingDecision]:
        """Pick a fallback target and charge the budget, or return None."""
        fallback = get_quota_fallback(decision.provider)
        if fallback is None:
            logger.info(
                "Quota error with no fallback target",
                extra={"provider": decision.provider.value},
            )
            return None
        # No await between the check and the increment
        if not self.budget.can_use():
            logger.warning(
                "Daily fallback budget exhausted",
                extra={
                    "provider": decision.provider.value,
                    "fallback_count": self.budget.usage().used,
                },
            )
            return None

        count = self.budget.record()
        record_fallback(decision.provider.value, fallback.provider.value)
        logger.info(
            "Falling back after quota error",
            extra={
                "provider": fallback.provider.value,
                "model": fallback.model,
                "reason": fallback.reason.value,
                "fallback_count": count,
            },
        )
        return fallback


@lru_cache(maxsize=1)
def get_router() -> GenerationRouter:
    """Return the process-wide router and its shared fallback budget."""
    return GenerationRouter(budget=FallbackBudget())


async def route_generation(
    options: GenerateOptions, router: Optional[GenerationRouter] = None
) -> AsyncIterator[GenerationEvent]:
    """Single entry point combining routing, execution and fallback."""
    router = router or get_router()
    async with aclosing(router.route(options)) as events:
        async for event in events:
            yield event
