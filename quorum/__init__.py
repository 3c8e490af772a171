"""Quorum: multi-round deliberation among a panel of AI experts."""

__version__ = "0.1.0"

from .engine import (
    DeliberationCancelled,
    DeliberationEngine,
    DeliberationError,
    DeliberationState,
    FailurePolicy,
    create_deliberation_engine,
)
from .events import DeliberationEvent, DeliberationEventType, QueueEventSink
from .models import (
    DeliberationProgress,
    DeliberationResult,
    ExpertContext,
    ExpertOpinion,
    FinalConsensus,
    QualityMetrics,
    RoundResult,
)
from .reasoning import ProviderError, ReasoningProvider, ReasoningResult
from .schemas import (
    AIConfig,
    ConfigurationError,
    DeliberationConfig,
    ExpertConfig,
    MetaModeratorConfig,
    QualityMonitorConfig,
)

__all__ = [
    "AIConfig",
    "ConfigurationError",
    "DeliberationCancelled",
    "DeliberationConfig",
    "DeliberationEngine",
    "DeliberationError",
    "DeliberationEvent",
    "DeliberationEventType",
    "DeliberationProgress",
    "DeliberationResult",
    "DeliberationState",
    "ExpertConfig",
    "ExpertContext",
    "ExpertOpinion",
    "FailurePolicy",
    "FinalConsensus",
    "MetaModeratorConfig",
    "ProviderError",
    "QualityMetrics",
    "QualityMonitorConfig",
    "QueueEventSink",
    "ReasoningProvider",
    "ReasoningResult",
    "RoundResult",
    "create_deliberation_engine",
]
