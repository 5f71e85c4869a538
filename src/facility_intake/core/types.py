"""Core data types that flow through the pipeline.

This module defines the immutable values exchanged between the router, the
segmenter and the extraction stages. Each stage produces new values rather
than mutating the ones it receives, so a chunk or request can be shared
freely between concurrent calls.
"""

from __future__ import annotations

import dataclasses
from enum import Enum
from types import MappingProxyType
import typing

T = typing.TypeVar("T")


def _freeze_mapping(
    m: dict[str, T] | typing.Mapping[str, T] | None,
) -> typing.Mapping[str, T] | None:
    """Return an immutable mapping view or None."""
    if m is None or isinstance(m, MappingProxyType):
        return m
    return MappingProxyType(dict(m))


def _require(
    *,
    condition: bool,
    message: str,
    exc: type[Exception] = ValueError,
    field_name: str | None = None,
) -> None:
    """Centralized validation with optional field context for clearer errors."""
    if not condition:
        if field_name:
            raise exc(f"{field_name}: {message}")
        raise exc(message)


# --- Result type ---

TSuccess = typing.TypeVar("TSuccess")
TFailure = typing.TypeVar("TFailure", bound=Exception)


@dataclasses.dataclass(frozen=True, slots=True)
class Success[TSuccess]:
    """A successful result."""

    value: TSuccess


@dataclasses.dataclass(frozen=True, slots=True)
class Failure[TFailure]:
    """A failure, containing the error."""

    error: TFailure


Result = Success[TSuccess] | Failure[TFailure]

# --- Routing vocabulary ---


class TaskType(str, Enum):
    """Abstract task identifiers that routing rules are keyed by."""

    DOCUMENT_ANALYSIS = "document_analysis"
    FIELD_EXTRACTION = "field_extraction"
    VISION_EXTRACTION = "vision_extraction"
    DEAL_ANALYSIS = "deal_analysis"
    CLARIFICATION_REASONING = "clarification_reasoning"
    MARKET_INTELLIGENCE = "market_intelligence"
    SYNTHESIS = "synthesis"
    DEEP_RESEARCH = "deep_research"
    STRUCTURE_ANALYSIS = "structure_analysis"
    DATA_EXTRACTION = "data_extraction"


class ProviderName(str, Enum):
    """Stable identifiers for model-service providers."""

    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    OPENAI = "openai"
    GROK = "grok"


ResponseFormat = typing.Literal["text", "json"]


@dataclasses.dataclass(frozen=True, slots=True)
class ImagePart:
    """Raw image bytes attached to a request."""

    data: bytes
    mime_type: str = "image/png"

    def __post_init__(self) -> None:
        _require(
            condition=isinstance(self.data, bytes) and len(self.data) > 0,
            message="must be non-empty bytes",
            field_name="data",
            exc=TypeError,
        )
        _require(
            condition=self.mime_type.startswith("image/"),
            message="must be an image/* mime type",
            field_name="mime_type",
        )


@dataclasses.dataclass(frozen=True, slots=True)
class LLMRequest:
    """A provider-neutral completion request.

    Fields left as ``None`` inherit the routing rule's defaults.
    """

    task_type: TaskType
    prompt: str
    system_prompt: str | None = None
    images: tuple[ImagePart, ...] = ()
    max_tokens: int | None = None
    temperature: float | None = None
    response_format: ResponseFormat | None = None
    model: str | None = None

    def __post_init__(self) -> None:
        _require(
            condition=isinstance(self.task_type, TaskType),
            message="must be a TaskType",
            field_name="task_type",
            exc=TypeError,
        )
        _require(
            condition=bool(self.prompt.strip()) or bool(self.images),
            message="request needs a prompt or at least one image",
            field_name="prompt",
        )
        if self.max_tokens is not None:
            _require(
                condition=self.max_tokens > 0,
                message="must be positive",
                field_name="max_tokens",
            )


@dataclasses.dataclass(frozen=True, slots=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclasses.dataclass(frozen=True, slots=True)
class LLMResponse:
    """A completed provider response."""

    content: str
    provider: ProviderName
    model: str
    usage: TokenUsage = TokenUsage()
    latency_ms: float = 0.0
    finish_reason: str | None = None


@dataclasses.dataclass(frozen=True, slots=True)
class ProviderConfig:
    """Operational limits for one provider. Read-only after startup."""

    default_model: str
    max_retries: int = 2
    retry_delay: float = 1.0  # seconds, fixed between attempts
    timeout: float = 120.0  # seconds per attempt
    max_concurrent: int = 5
    rate_limit_per_minute: int = 50
    enabled: bool = True

    def __post_init__(self) -> None:
        _require(
            condition=self.max_retries >= 0,
            message="cannot be negative",
            field_name="max_retries",
        )
        _require(
            condition=self.retry_delay >= 0,
            message="cannot be negative",
            field_name="retry_delay",
        )
        _require(
            condition=self.timeout > 0, message="must be positive", field_name="timeout"
        )
        _require(
            condition=self.max_concurrent >= 1,
            message="must be at least 1",
            field_name="max_concurrent",
        )
        _require(
            condition=self.rate_limit_per_minute >= 1,
            message="must be at least 1",
            field_name="rate_limit_per_minute",
        )


@dataclasses.dataclass(frozen=True, slots=True)
class RoutingRule:
    """Maps a task type to a primary provider and ordered fallbacks."""

    task_type: TaskType
    primary: ProviderName
    fallbacks: tuple[ProviderName, ...] = ()
    temperature: float | None = None
    max_tokens: int | None = None
    response_format: ResponseFormat | None = None
    model: str | None = None  # applies to the primary provider only

    def __post_init__(self) -> None:
        _require(
            condition=isinstance(self.fallbacks, tuple),
            message="must be a tuple",
            field_name="fallbacks",
            exc=TypeError,
        )
        _require(
            condition=self.primary not in self.fallbacks,
            message="primary provider cannot also be a fallback",
            field_name="fallbacks",
        )

    @property
    def chain(self) -> tuple[ProviderName, ...]:
        return (self.primary, *self.fallbacks)


# --- Documents and work units ---


@dataclasses.dataclass(frozen=True, slots=True)
class Document:
    """A previously uploaded document, already converted to text.

    ``sheet_data`` optionally carries raw per-sheet tabular text keyed by sheet
    name; when present it takes precedence over marker-based segmentation.
    """

    document_id: str
    name: str
    text: str = ""
    sheet_data: typing.Mapping[str, str] | None = None
    image: ImagePart | None = None

    def __post_init__(self) -> None:
        _require(
            condition=bool(self.document_id),
            message="cannot be empty",
            field_name="document_id",
        )
        object.__setattr__(self, "sheet_data", _freeze_mapping(self.sheet_data))

    @property
    def is_image(self) -> bool:
        return self.image is not None and not self.text.strip()


@dataclasses.dataclass(frozen=True, slots=True)
class Sheet:
    """One named block of raw text from a document."""

    name: str
    content: str
    document_id: str


@dataclasses.dataclass(frozen=True, slots=True)
class Chunk:
    """A line-aligned slice of a sheet's content."""

    sheet_name: str
    content: str
    index: int
    total: int
    document_id: str

    def __post_init__(self) -> None:
        _require(
            condition=0 <= self.index < self.total,
            message=f"index {self.index} out of range for total {self.total}",
            field_name="index",
        )

    @property
    def label(self) -> str:
        """Short identifier used in warnings and progress events."""
        if self.total == 1:
            return self.sheet_name
        return f"{self.sheet_name} [{self.index + 1}/{self.total}]"
