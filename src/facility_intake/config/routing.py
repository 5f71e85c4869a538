"""Static routing rules and per-provider limits.

Both tables are built at import and wrapped in read-only mappings. A router
can be constructed with replacements, but the defaults are never edited.
"""

from collections.abc import Mapping
from types import MappingProxyType

from facility_intake import constants
from facility_intake.core.types import ProviderConfig, ProviderName, RoutingRule, TaskType

A = ProviderName.ANTHROPIC
G = ProviderName.GEMINI
O = ProviderName.OPENAI  # noqa: E741
X = ProviderName.GROK

DEFAULT_PROVIDER_CONFIGS: Mapping[ProviderName, ProviderConfig] = MappingProxyType(
    {
        A: ProviderConfig(
            default_model="claude-sonnet-4-20250514",
            max_retries=2,
            retry_delay=1.0,
            timeout=120.0,
            max_concurrent=5,
            rate_limit_per_minute=50,
        ),
        G: ProviderConfig(
            default_model="gemini-2.0-flash",
            max_retries=2,
            retry_delay=1.0,
            timeout=90.0,
            max_concurrent=10,
            rate_limit_per_minute=60,
        ),
        O: ProviderConfig(
            default_model="gpt-4o",
            max_retries=2,
            retry_delay=1.0,
            timeout=90.0,
            max_concurrent=8,
            rate_limit_per_minute=60,
        ),
        X: ProviderConfig(
            default_model="grok-3",
            max_retries=1,
            retry_delay=2.0,
            timeout=60.0,
            max_concurrent=4,
            rate_limit_per_minute=30,
        ),
    }
)

_EXTRACTION = {"temperature": 0.1, "response_format": "json"}


def _rules(*rules: RoutingRule) -> Mapping[TaskType, RoutingRule]:
    return MappingProxyType({r.task_type: r for r in rules})


DEFAULT_ROUTING_RULES: Mapping[TaskType, RoutingRule] = _rules(
    RoutingRule(
        TaskType.DATA_EXTRACTION,
        A,
        (G, O),
        max_tokens=constants.TEXT_MAX_TOKENS,
        **_EXTRACTION,
    ),
    RoutingRule(
        TaskType.VISION_EXTRACTION,
        A,
        (O, G),
        max_tokens=constants.IMAGE_MAX_TOKENS,
        **_EXTRACTION,
    ),
    RoutingRule(
        TaskType.FIELD_EXTRACTION, A, (O, G), max_tokens=4_096, **_EXTRACTION
    ),
    RoutingRule(
        TaskType.STRUCTURE_ANALYSIS, G, (A, O), max_tokens=4_096, **_EXTRACTION
    ),
    RoutingRule(TaskType.DOCUMENT_ANALYSIS, A, (G, O), max_tokens=8_192),
    RoutingRule(TaskType.DEAL_ANALYSIS, A, (O,), temperature=0.3, max_tokens=8_192),
    RoutingRule(
        TaskType.CLARIFICATION_REASONING, A, (O,), temperature=0.2, max_tokens=2_048
    ),
    RoutingRule(
        TaskType.MARKET_INTELLIGENCE, X, (O, A), temperature=0.3, max_tokens=4_096
    ),
    RoutingRule(TaskType.SYNTHESIS, A, (O, G), temperature=0.4, max_tokens=8_192),
    RoutingRule(TaskType.DEEP_RESEARCH, G, (A, X), temperature=0.3, max_tokens=8_192),
)
