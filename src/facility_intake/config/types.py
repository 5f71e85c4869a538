"""Configuration data types.

Configuration is resolved once, frozen, and then passed explicitly to every
component. Nothing downstream reads the environment on its own.
"""

from collections.abc import Mapping
import dataclasses
from typing import Literal

from facility_intake.core.types import ProviderName

ConfigOrigin = Literal["programmatic", "env", "file", "default"]
SourceMap = Mapping[str, ConfigOrigin]

_SECRET_SUFFIX = "_api_key"

_KEY_FIELD_BY_PROVIDER: dict[ProviderName, str] = {
    ProviderName.ANTHROPIC: "anthropic_api_key",
    ProviderName.GEMINI: "gemini_api_key",
    ProviderName.OPENAI: "openai_api_key",
    ProviderName.GROK: "xai_api_key",
}


@dataclasses.dataclass(frozen=True)
class FrozenConfig:
    """Immutable configuration shared by the router, pipeline and API."""

    use_real_api: bool = False
    anthropic_api_key: str | None = None
    gemini_api_key: str | None = None
    openai_api_key: str | None = None
    xai_api_key: str | None = None
    circuit_breaker: bool = False
    max_chunk_size: int = 100_000
    chunk_concurrency: int = 3
    text_max_tokens: int = 16_384
    image_max_tokens: int = 8_000
    min_sheet_chars: int = 20
    low_confidence_threshold: float = 0.70
    suggest_threshold: float = 0.75
    auto_accept_threshold: float = 0.90
    conflict_tolerance: float = 0.05
    high_priority_threshold: int = 8
    event_queue_size: int = 1_000
    heartbeat_seconds: float = 15.0

    def api_keys(self) -> dict[ProviderName, str]:
        """Provider keys that are actually set."""
        keys: dict[ProviderName, str] = {}
        for provider, field in _KEY_FIELD_BY_PROVIDER.items():
            value = getattr(self, field)
            if value:
                keys[provider] = value
        return keys

    def __repr__(self) -> str:
        """Representation with API keys redacted."""
        parts = []
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if f.name.endswith(_SECRET_SUFFIX) and value:
                value = "[REDACTED]"
            parts.append(f"{f.name}={value!r}")
        return f"FrozenConfig({', '.join(parts)})"

    __str__ = __repr__


@dataclasses.dataclass(frozen=True)
class ResolvedConfig:
    """Validated configuration plus the origin of every field."""

    config: FrozenConfig
    origin: SourceMap

    def to_frozen(self) -> FrozenConfig:
        return self.config

    def with_overrides(self, **overrides: object) -> "ResolvedConfig":
        """Return a copy with programmatic overrides applied.

        Unknown fields are ignored.
        """
        known = {f.name for f in dataclasses.fields(FrozenConfig)}
        applied = {k: v for k, v in overrides.items() if k in known}
        origin = dict(self.origin)
        origin.update(dict.fromkeys(applied, "programmatic"))
        return ResolvedConfig(
            config=dataclasses.replace(self.config, **applied),  # type: ignore[arg-type]
            origin=origin,
        )

    def audit(self) -> str:
        """Redacted report of where each field came from."""
        lines = []
        for f in dataclasses.fields(self.config):
            origin = self.origin.get(f.name, "default")
            value = getattr(self.config, f.name)
            if f.name.endswith(_SECRET_SUFFIX):
                shown = "<redacted>" if value else "None"
            else:
                shown = repr(value)
            lines.append(f"{f.name}: {origin}:{shown}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"ResolvedConfig(config={self.config!r}, origin={dict(self.origin)!r})"
