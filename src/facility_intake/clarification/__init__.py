"""Review of merged facilities: clarification requests and resolution."""

from .apply import apply_resolution
from .models import (
    ClarificationRequest,
    ClarificationStatus,
    ClarificationType,
    Suggestion,
)
from .rules import ClarificationRules
from .store import ClarificationStore, LearningSink, LoggingLearningSink, Resolution

__all__ = [
    "ClarificationRequest",
    "ClarificationRules",
    "ClarificationStatus",
    "ClarificationStore",
    "ClarificationType",
    "LearningSink",
    "LoggingLearningSink",
    "Resolution",
    "Suggestion",
    "apply_resolution",
]
