"""Provider registry and task router."""

from .adapters import MockAdapter, ProviderAdapter, build_adapters
from .circuit import CircuitBreaker, CircuitState
from .limits import ProviderGate, RateLimiter
from .metrics import ProviderMetrics
from .router import LLMRouter, apply_rule_defaults

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "LLMRouter",
    "MockAdapter",
    "ProviderAdapter",
    "ProviderGate",
    "ProviderMetrics",
    "RateLimiter",
    "apply_rule_defaults",
    "build_adapters",
]
