"""Configuration schema and validation using Pydantic.

This module defines the settings schema that validates and coerces
configuration values from the environment, project files and programmatic
overrides into the correct types with proper defaults.
"""

from typing import Any

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from facility_intake import constants

API_KEY_FIELDS: dict[str, tuple[str, ...]] = {
    "anthropic_api_key": ("INTAKE_ANTHROPIC_API_KEY", "ANTHROPIC_API_KEY"),
    "gemini_api_key": ("INTAKE_GEMINI_API_KEY", "GEMINI_API_KEY"),
    "openai_api_key": ("INTAKE_OPENAI_API_KEY", "OPENAI_API_KEY"),
    "xai_api_key": ("INTAKE_XAI_API_KEY", "XAI_API_KEY"),
}


def _key_field(field_name: str, description: str) -> Any:
    return Field(
        default=None,
        description=description,
        validation_alias=AliasChoices(field_name, *API_KEY_FIELDS[field_name]),
    )


class IntakeSettings(BaseSettings):
    """Pydantic settings schema for the intake pipeline.

    Fields read from ``INTAKE_*`` environment variables. Provider keys also
    accept their conventional unprefixed names such as ``ANTHROPIC_API_KEY``.
    """

    model_config = SettingsConfigDict(
        env_prefix="INTAKE_",
        env_file=None,
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # --- Providers ---

    use_real_api: bool = Field(
        default=False,
        description="Call real providers instead of deterministic mocks",
    )
    anthropic_api_key: str | None = _key_field(
        "anthropic_api_key", "Anthropic API key"
    )
    gemini_api_key: str | None = _key_field("gemini_api_key", "Google Gemini API key")
    openai_api_key: str | None = _key_field("openai_api_key", "OpenAI API key")
    xai_api_key: str | None = _key_field("xai_api_key", "xAI (Grok) API key")
    circuit_breaker: bool = Field(
        default=False,
        description="Skip providers that keep failing for a cool-down period",
    )

    # --- Extraction ---

    max_chunk_size: int = Field(default=constants.MAX_CHUNK_SIZE, ge=1_000)
    chunk_concurrency: int = Field(default=constants.CHUNK_CONCURRENCY, ge=1, le=32)
    text_max_tokens: int = Field(default=constants.TEXT_MAX_TOKENS, ge=256)
    image_max_tokens: int = Field(default=constants.IMAGE_MAX_TOKENS, ge=256)
    min_sheet_chars: int = Field(
        default=20,
        ge=0,
        description="Sheets with this many non-blank characters or fewer are skipped",
    )

    # --- Review thresholds ---

    low_confidence_threshold: float = Field(
        default=constants.LOW_CONFIDENCE_THRESHOLD, ge=0.0, le=1.0
    )
    suggest_threshold: float = Field(
        default=constants.SUGGEST_THRESHOLD, ge=0.0, le=1.0
    )
    auto_accept_threshold: float = Field(
        default=constants.AUTO_ACCEPT_THRESHOLD, ge=0.0, le=1.0
    )
    conflict_tolerance: float = Field(
        default=constants.CONFLICT_TOLERANCE, ge=0.0, le=1.0
    )
    high_priority_threshold: int = Field(
        default=constants.HIGH_PRIORITY_THRESHOLD, ge=1, le=10
    )

    # --- Streaming ---

    event_queue_size: int = Field(default=constants.EVENT_QUEUE_SIZE, ge=1)
    heartbeat_seconds: float = Field(default=constants.HEARTBEAT_SECONDS, gt=0)

    # --- Validation Rules ---

    @model_validator(mode="after")
    def validate_thresholds(self) -> "IntakeSettings":
        """Keep the three confidence thresholds in ascending order."""
        if not (
            self.low_confidence_threshold
            <= self.suggest_threshold
            <= self.auto_accept_threshold
        ):
            raise ValueError(
                "thresholds must satisfy low_confidence_threshold <= "
                "suggest_threshold <= auto_accept_threshold"
            )
        return self

    @model_validator(mode="after")
    def validate_api_key_requirement(self) -> "IntakeSettings":
        """Ensure at least one provider key exists when use_real_api is True."""
        if self.use_real_api and not any(
            getattr(self, name) for name in API_KEY_FIELDS
        ):
            raise ValueError(
                "At least one provider API key is required when use_real_api=True. "
                "Set ANTHROPIC_API_KEY, GEMINI_API_KEY, OPENAI_API_KEY or XAI_API_KEY."
            )
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary keyed by field name."""
        return {name: getattr(self, name) for name in type(self).model_fields}
