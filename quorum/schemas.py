"""Validated configuration models for a deliberation."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .config import (
    DEFAULT_COHERENCE_THRESHOLD,
    DEFAULT_CONSENSUS_THRESHOLD,
    DEFAULT_EXPERT_MODEL,
    DEFAULT_INTERVENTION_THRESHOLD,
    DEFAULT_MAX_ROUNDS,
    DEFAULT_MIN_CONFIDENCE_THRESHOLD,
    DEFAULT_MODERATOR_MODEL,
    DEFAULT_QUALITY_MODEL,
    DEFAULT_RELEVANCE_THRESHOLD,
    DEFAULT_SUMMARY_STYLE,
    MAX_ROUNDS,
    MIN_ROUNDS,
)


class ConfigurationError(ValueError):
    """Raised when a deliberation is configured with invalid values."""


class AIConfig(BaseModel):
    """Model selection and sampling settings for one reasoning role."""
    model_config = ConfigDict(frozen=True)

    model: str
    provider: str = "openrouter"
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1000, ge=1)


class ExpertConfig(BaseModel):
    """One member of the expert panel."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    role: str = ""
    perspective: str = ""
    ai_config: AIConfig = Field(
        default_factory=lambda: AIConfig(model=DEFAULT_EXPERT_MODEL)
    )


class QualityMonitorConfig(BaseModel):
    """Settings for per-opinion and per-round quality assessment."""
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    ai_config: AIConfig = Field(
        default_factory=lambda: AIConfig(
            model=DEFAULT_QUALITY_MODEL, temperature=0.2, max_tokens=300
        )
    )
    min_confidence_threshold: float = Field(
        default=DEFAULT_MIN_CONFIDENCE_THRESHOLD, ge=0.0, le=1.0
    )
    coherence_threshold: float = Field(default=DEFAULT_COHERENCE_THRESHOLD, ge=0.0, le=1.0)
    relevance_threshold: float = Field(default=DEFAULT_RELEVANCE_THRESHOLD, ge=0.0, le=1.0)
    diversity_threshold: float = Field(default=0.6, ge=0.0, le=1.0)


class MetaModeratorConfig(BaseModel):
    """Settings for guidance, consensus scoring and final synthesis."""
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    ai_config: AIConfig = Field(
        default_factory=lambda: AIConfig(model=DEFAULT_MODERATOR_MODEL)
    )
    intervention_threshold: float = Field(
        default=DEFAULT_INTERVENTION_THRESHOLD, ge=0.0, le=1.0
    )
    summary_style: Literal["concise", "detailed", "executive"] = DEFAULT_SUMMARY_STYLE


class DeliberationConfig(BaseModel):
    """Immutable description of one deliberation.

    ``max_rounds`` must be at least 1 and ``consensus_threshold`` is a
    percentage in [0, 100]. A round whose consensus score reaches
    ``consensus_threshold / 100`` ends the deliberation.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    topic: str = Field(min_length=1)
    description: str = ""
    objectives: tuple[str, ...] = ()
    constraints: tuple[str, ...] = ()
    max_rounds: int = Field(default=DEFAULT_MAX_ROUNDS, ge=MIN_ROUNDS, le=MAX_ROUNDS)
    consensus_threshold: float = Field(default=DEFAULT_CONSENSUS_THRESHOLD, ge=0.0, le=100.0)
    experts: tuple[ExpertConfig, ...]
    quality_monitor: QualityMonitorConfig | None = None
    meta_moderator: MetaModeratorConfig | None = None
    parallel_experts: bool = False

    @model_validator(mode="after")
    def _check_panel(self) -> "DeliberationConfig":
        if not self.experts:
            raise ValueError("expert panel must not be empty")
        ids = [e.id for e in self.experts]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"duplicate expert ids: {', '.join(duplicates)}")
        return self

    @property
    def consensus_target(self) -> float:
        """Threshold as a fraction in [0, 1], comparable to consensus scores."""
        return self.consensus_threshold / 100

    @classmethod
    def create(cls, **data: Any) -> "DeliberationConfig":
        """Validate and build a config, raising ConfigurationError on bad input."""
        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigurationError(_format_validation_error(e)) from e


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item.get("loc", ())) or "config"
        parts.append(f"{location}: {item.get('msg', 'invalid value')}")
    return "Invalid deliberation config: " + "; ".join(parts)
