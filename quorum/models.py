"""Deliberation data models: opinions, rounds, verdicts and results."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


def clamp_unit(value: float) -> float:
    """Clamp a score into [0, 1]. NaN becomes 0."""
    if value != value:  # NaN
        return 0.0
    return max(0.0, min(1.0, float(value)))


def _parse_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass(frozen=True)
class ExpertContext:
    """Everything an expert sees when forming its opinion for a round."""

    topic: str
    description: str
    objectives: tuple[str, ...]
    constraints: tuple[str, ...]
    round_number: int
    max_rounds: int
    previous_opinions: tuple["ExpertOpinion", ...] | None = None
    moderator_guidance: str | None = None


@dataclass
class ExpertOpinion:
    """One expert's position in one round.

    ``quality_score`` starts unset and is attached exactly once by the
    engine, after the quality monitor has scored the opinion.
    """

    expert_id: str
    expert_name: str
    opinion: str
    reasoning: str
    confidence: float
    quality_score: float | None = None
    rank: int = 0
    tokens_used: int = 0

    def __post_init__(self) -> None:
        self.confidence = clamp_unit(self.confidence)

    def attach_quality_score(self, score: float) -> None:
        """Record the quality monitor's score for this opinion."""
        if self.quality_score is not None:
            raise ValueError(
                f"Quality score already attached to opinion from {self.expert_id}"
            )
        self.quality_score = clamp_unit(score)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "expert_id": self.expert_id,
            "expert_name": self.expert_name,
            "opinion": self.opinion,
            "reasoning": self.reasoning,
            "confidence": self.confidence,
            "quality_score": self.quality_score,
            "rank": self.rank,
            "tokens_used": self.tokens_used,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExpertOpinion":
        """Create from dictionary."""
        return cls(
            expert_id=data.get("expert_id", ""),
            expert_name=data.get("expert_name", ""),
            opinion=data.get("opinion", ""),
            reasoning=data.get("reasoning", ""),
            confidence=data.get("confidence", 0.0) or 0.0,
            quality_score=data.get("quality_score"),
            rank=data.get("rank", 0) or 0,
            tokens_used=data.get("tokens_used", 0) or 0,
        )


@dataclass(frozen=True)
class QualityMetrics:
    """Aggregate quality of one round's opinions, every figure in [0, 1]."""

    average_confidence: float
    coherence_score: float
    diversity_score: float
    relevance_score: float
    overall_quality: float

    @classmethod
    def from_scores(
        cls,
        average_confidence: float,
        coherence_score: float,
        diversity_score: float,
        relevance_score: float,
    ) -> "QualityMetrics":
        """Build metrics whose overall quality is the mean of the four sub-metrics."""
        parts = [
            clamp_unit(average_confidence),
            clamp_unit(coherence_score),
            clamp_unit(diversity_score),
            clamp_unit(relevance_score),
        ]
        return cls(*parts, overall_quality=sum(parts) / len(parts))

    @classmethod
    def empty(cls) -> "QualityMetrics":
        return cls(0.0, 0.0, 0.0, 0.0, 0.0)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "average_confidence": self.average_confidence,
            "coherence_score": self.coherence_score,
            "diversity_score": self.diversity_score,
            "relevance_score": self.relevance_score,
            "overall_quality": self.overall_quality,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QualityMetrics":
        """Create from dictionary."""
        return cls(
            average_confidence=data.get("average_confidence", 0.0) or 0.0,
            coherence_score=data.get("coherence_score", 0.0) or 0.0,
            diversity_score=data.get("diversity_score", 0.0) or 0.0,
            relevance_score=data.get("relevance_score", 0.0) or 0.0,
            overall_quality=data.get("overall_quality", 0.0) or 0.0,
        )


@dataclass(frozen=True)
class RoundResult:
    """A completed round. Never modified after it joins the history."""

    round_number: int
    opinions: tuple[ExpertOpinion, ...]
    summary: str
    consensus_score: float
    quality_metrics: QualityMetrics
    moderator_notes: str = ""
    moderator_guidance: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result = {
            "round_number": self.round_number,
            "opinions": [o.to_dict() for o in self.opinions],
            "summary": self.summary,
            "consensus_score": self.consensus_score,
            "quality_metrics": self.quality_metrics.to_dict(),
            "moderator_notes": self.moderator_notes,
        }
        if self.moderator_guidance:
            result["moderator_guidance"] = self.moderator_guidance
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RoundResult":
        """Create from dictionary."""
        return cls(
            round_number=data.get("round_number", 1),
            opinions=tuple(ExpertOpinion.from_dict(o) for o in data.get("opinions", [])),
            summary=data.get("summary", ""),
            consensus_score=data.get("consensus_score", 0.0) or 0.0,
            quality_metrics=QualityMetrics.from_dict(data.get("quality_metrics", {})),
            moderator_notes=data.get("moderator_notes", ""),
            moderator_guidance=data.get("moderator_guidance", ""),
        )


@dataclass(frozen=True)
class DissentingOpinion:
    """A low-confidence position recorded alongside the verdict."""

    expert_id: str
    expert_name: str
    reason: str
    alternative_position: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "expert_id": self.expert_id,
            "expert_name": self.expert_name,
            "reason": self.reason,
            "alternative_position": self.alternative_position,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DissentingOpinion":
        """Create from dictionary."""
        return cls(
            expert_id=data.get("expert_id", ""),
            expert_name=data.get("expert_name", ""),
            reason=data.get("reason", ""),
            alternative_position=data.get("alternative_position", ""),
        )


@dataclass(frozen=True)
class FinalConsensus:
    """The synthesized verdict, produced once when the deliberation ends."""

    achieved: bool
    score: float
    summary: str
    recommendation: str
    dissenting: tuple[DissentingOpinion, ...] = ()
    confidence: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "achieved": self.achieved,
            "score": self.score,
            "summary": self.summary,
            "recommendation": self.recommendation,
            "dissenting": [d.to_dict() for d in self.dissenting],
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FinalConsensus":
        """Create from dictionary."""
        return cls(
            achieved=bool(data.get("achieved", False)),
            score=data.get("score", 0.0) or 0.0,
            summary=data.get("summary", ""),
            recommendation=data.get("recommendation", ""),
            dissenting=tuple(
                DissentingOpinion.from_dict(d) for d in data.get("dissenting", [])
            ),
            confidence=data.get("confidence", 0.0) or 0.0,
        )


@dataclass(frozen=True)
class DeliberationMetadata:
    """Totals and timing for a finished deliberation."""

    total_rounds: int
    total_opinions: int
    total_tokens_used: int
    started_at: datetime
    completed_at: datetime

    @property
    def total_duration_ms(self) -> int:
        return int((self.completed_at - self.started_at).total_seconds() * 1000)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_rounds": self.total_rounds,
            "total_opinions": self.total_opinions,
            "total_tokens_used": self.total_tokens_used,
            "total_duration_ms": self.total_duration_ms,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeliberationMetadata":
        """Create from dictionary."""
        started_at = _parse_datetime(data.get("started_at")) or datetime.min
        completed_at = _parse_datetime(data.get("completed_at")) or started_at
        return cls(
            total_rounds=data.get("total_rounds", 0) or 0,
            total_opinions=data.get("total_opinions", 0) or 0,
            total_tokens_used=data.get("total_tokens_used", 0) or 0,
            started_at=started_at,
            completed_at=completed_at,
        )


@dataclass(frozen=True)
class DeliberationResult:
    """Complete, immutable outcome of one deliberation."""

    id: str
    topic: str
    rounds: tuple[RoundResult, ...]
    final_consensus: FinalConsensus
    metadata: DeliberationMetadata

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for storage/API."""
        return {
            "id": self.id,
            "topic": self.topic,
            "rounds": [r.to_dict() for r in self.rounds],
            "final_consensus": self.final_consensus.to_dict(),
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeliberationResult":
        """Create from dictionary."""
        return cls(
            id=data.get("id", ""),
            topic=data.get("topic", ""),
            rounds=tuple(RoundResult.from_dict(r) for r in data.get("rounds", [])),
            final_consensus=FinalConsensus.from_dict(data.get("final_consensus", {})),
            metadata=DeliberationMetadata.from_dict(data.get("metadata", {})),
        )


@dataclass(frozen=True)
class DeliberationProgress:
    """Read-only snapshot of where a deliberation stands."""

    current_round: int
    max_rounds: int
    consensus_score: float
    is_complete: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "current_round": self.current_round,
            "max_rounds": self.max_rounds,
            "consensus_score": self.consensus_score,
            "is_complete": self.is_complete,
        }


@dataclass
class UsageTotals:
    """Running token count for one reasoning role."""

    tokens_used: int = 0
    calls: int = 0
    by_model: dict[str, int] = field(default_factory=dict)

    def record(self, model: str, tokens: int) -> None:
        self.calls += 1
        self.tokens_used += tokens
        self.by_model[model] = self.by_model.get(model, 0) + tokens
