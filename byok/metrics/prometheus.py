"""Prometheus metrics collection."""
from prometheus_client import Counter


# Routing decisions with labels: provider, reason
routing_decisions = Counter(
    "byok_routing_decisions_total",
    "Total number of routing decisions",
    ["provider", "reason"],
)

# Fallback counter with labels: from_provider, to_provider
fallback_count = Counter(
    "byok_fallbacks_total",
    "Total number of quota fallbacks",
    ["from_provider", "to_provider"],
)

# Generation errors with labels: provider, error_type
generation_errors = Counter(
    "byok_generation_errors_total",
    "Total number of generation errors",
    ["provider", "error_type"],
)

# Key management operations with labels: operation
key_operations = Counter(
    "byok_key_operations_total",
    "Total number of key management operations",
    ["operation"],
)


def record_routing(provider: str, reason: str):
    """Record a routing decision."""
    routing_decisions.labels(provider=provider, reason=reason).inc()


def record_fallback(from_provider: str, to_provider: str):
    """Record a fallback."""
    fallback_count.labels(
        from_provider=from_provider,
        to_provider=to_provider,
    ).inc()


def record_generation_error(provider: str, error_type: str):
    """Record a generation error."""
    generation_errors.labels(provider=provider, error_type=error_type).inc()


def record_key_operation(operation: str):
    """Record a key management operation."""
    key_operations.labels(operation=operation).inc()
