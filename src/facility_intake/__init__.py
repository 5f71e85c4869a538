"""Facility financial document extraction with multi-provider routing."""

import importlib.metadata
import logging

from facility_intake.clarification import (
    ClarificationRequest,
    ClarificationRules,
    ClarificationStatus,
    ClarificationStore,
    ClarificationType,
)
from facility_intake.config import FrozenConfig, resolve_config
from facility_intake.core.models import Facility, LineItem, facility_key
from facility_intake.core.types import (
    Chunk,
    Document,
    Failure,
    LLMRequest,
    LLMResponse,
    Result,
    Sheet,
    Success,
    TaskType,
)
from facility_intake.exceptions import (
    AllProvidersFailedError,
    ConfigurationError,
    FacilityIntakeError,
    ProviderError,
)
from facility_intake.extraction import (
    ChunkExtractor,
    decode_response,
    merge_facilities,
    split_sheets,
)
from facility_intake.pipeline import ExtractionRun, RunRegistry
from facility_intake.router import LLMRouter
from facility_intake.telemetry import TelemetryContext, TelemetryReporter

try:
    __version__ = importlib.metadata.version("facility-intake")
except importlib.metadata.PackageNotFoundError:
    __version__ = "development"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [  # noqa: RUF022
    # Routing
    "LLMRouter",
    "LLMRequest",
    "LLMResponse",
    "TaskType",
    # Extraction
    "ChunkExtractor",
    "Chunk",
    "Document",
    "Sheet",
    "decode_response",
    "merge_facilities",
    "split_sheets",
    "Facility",
    "LineItem",
    "facility_key",
    # Review
    "ClarificationRequest",
    "ClarificationRules",
    "ClarificationStatus",
    "ClarificationStore",
    "ClarificationType",
    # Runs
    "ExtractionRun",
    "RunRegistry",
    # Configuration
    "FrozenConfig",
    "resolve_config",
    # Results and errors
    "Result",
    "Success",
    "Failure",
    "FacilityIntakeError",
    "ConfigurationError",
    "ProviderError",
    "AllProvidersFailedError",
    # Telemetry
    "TelemetryContext",
    "TelemetryReporter",
]
