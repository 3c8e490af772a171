"""Multi-round deliberation orchestration.

One engine runs one deliberation. Each round fans the same context out to
every expert, scores each opinion as it arrives, scores the round, and asks
the meta-moderator for a consensus score. The run stops at the first round
whose score reaches the configured threshold, or after ``max_rounds``.
"""

import asyncio
import logging
import uuid
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .config import get_expert_panel, get_moderator_model, get_quality_model
from .events import DeliberationEventType, EventEmitter, EventHandler
from .experts import Expert, ExpertRegistry, LLMExpert
from .logging_config import set_deliberation_id, set_round_number
from .models import (
    DeliberationMetadata,
    DeliberationProgress,
    DeliberationResult,
    ExpertContext,
    ExpertOpinion,
    RoundResult,
    clamp_unit,
)
from .moderator import MetaModerator, create_meta_moderator
from .quality import QualityMonitor, create_quality_monitor
from .reasoning import ProviderError, ReasoningProvider, create_provider
from .schemas import (
    AIConfig,
    ConfigurationError,
    DeliberationConfig,
    ExpertConfig,
    MetaModeratorConfig,
    QualityMonitorConfig,
)
from .telemetry import annotate_span, record_span_error, trace_span

logger = logging.getLogger(__name__)


class DeliberationState(str, Enum):
    """Lifecycle of an engine instance."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class FailurePolicy(str, Enum):
    """What to do when an expert's reasoning provider fails.

    ABORT ends the whole run. SKIP_EXPERT drops that expert from the current
    round and carries on, unless no expert in the round produced an opinion.
    Quality monitor and meta-moderator failures always abort.
    """

    ABORT = "abort"
    SKIP_EXPERT = "skip_expert"


class DeliberationError(RuntimeError):
    """A deliberation could not complete."""


class DeliberationCancelled(DeliberationError):
    """The deliberation was cancelled before it finished."""


def consensus_reached(score: float, consensus_threshold: float) -> bool:
    """Whether a round score meets a threshold given as a percentage."""
    return score >= consensus_threshold / 100


def _provider_resolver(
    provider: ReasoningProvider | None,
) -> Callable[[AIConfig], ReasoningProvider]:
    """Map each component's AIConfig to a provider.

    An injected provider serves every component. Otherwise each provider
    name is looked up once, so an unknown name fails construction.
    """
    if provider is not None:
        return lambda ai_config: provider

    providers: dict[str, ReasoningProvider] = {}

    def resolve(ai_config: AIConfig) -> ReasoningProvider:
        if ai_config.provider not in providers:
            providers[ai_config.provider] = create_provider(ai_config.provider)
        return providers[ai_config.provider]

    return resolve


class DeliberationEngine:
    """Runs a structured, multi-round deliberation among an expert panel."""

    def __init__(
        self,
        config: DeliberationConfig | dict[str, Any],
        *,
        provider: ReasoningProvider | None = None,
        experts: ExpertRegistry | Iterable[Expert] | None = None,
        quality_monitor: QualityMonitor | None = None,
        meta_moderator: MetaModerator | None = None,
        failure_policy: FailurePolicy = FailurePolicy.ABORT,
    ) -> None:
        if isinstance(config, dict):
            config = DeliberationConfig.create(**config)
        elif not isinstance(config, DeliberationConfig):
            raise ConfigurationError(
                f"Expected DeliberationConfig, got {type(config).__name__}"
            )
        self.config = config
        self.failure_policy = FailurePolicy(failure_policy)

        resolve = _provider_resolver(provider)
        if experts is None:
            self.experts = ExpertRegistry(
                LLMExpert(c, resolve(c.ai_config)) for c in config.experts
            )
        elif isinstance(experts, ExpertRegistry):
            self.experts = experts
        else:
            self.experts = ExpertRegistry(experts)
        if self.experts.size() == 0:
            raise ConfigurationError("Expert panel must not be empty")

        if quality_monitor is None:
            quality_config = config.quality_monitor or QualityMonitorConfig()
            quality_monitor = create_quality_monitor(
                quality_config, resolve(quality_config.ai_config)
            )
        self.quality_monitor = quality_monitor
        if meta_moderator is None:
            moderator_config = config.meta_moderator or MetaModeratorConfig()
            meta_moderator = create_meta_moderator(
                moderator_config, resolve(moderator_config.ai_config)
            )
        self.meta_moderator = meta_moderator

        self._events = EventEmitter()
        self._rounds: list[RoundResult] = []
        self._state = DeliberationState.NOT_STARTED
        self._cancel_requested = asyncio.Event()
        self._started_at: datetime | None = None

    @property
    def state(self) -> DeliberationState:
        return self._state

    @property
    def rounds(self) -> tuple[RoundResult, ...]:
        return tuple(self._rounds)

    def on_event(self, handler: EventHandler) -> None:
        """Register a handler called for every event, in registration order."""
        self._events.add_handler(handler)

    def cancel(self) -> None:
        """Ask a running deliberation to stop at the next checkpoint.

        Checkpoints are the start of each round and each expert call.
        """
        logger.info("Cancellation requested for deliberation %s", self.config.id)
        self._cancel_requested.set()

    def get_progress(self) -> DeliberationProgress:
        """Snapshot of the round count, last score and completion flag."""
        last_score = self._rounds[-1].consensus_score if self._rounds else 0.0
        return DeliberationProgress(
            current_round=len(self._rounds),
            max_rounds=self.config.max_rounds,
            consensus_score=last_score,
            is_complete=self._should_stop(),
        )

    def _should_stop(self) -> bool:
        if not self._rounds:
            return False
        if consensus_reached(self._rounds[-1].consensus_score, self.config.consensus_threshold):
            return True
        return len(self._rounds) >= self.config.max_rounds

    def _check_cancelled(self) -> None:
        if self._cancel_requested.is_set():
            raise DeliberationCancelled(
                f"Deliberation {self.config.id} cancelled after {len(self._rounds)} round(s)"
            )

    def _total_tokens(self) -> int:
        expert_tokens = sum(o.tokens_used for r in self._rounds for o in r.opinions)
        return (
            expert_tokens
            + self.quality_monitor.tokens_used
            + self.meta_moderator.tokens_used
        )

    async def run(self) -> DeliberationResult:
        """Run the deliberation to completion.

        Returns:
            The final DeliberationResult

        Raises:
            DeliberationCancelled: if cancel() was called during the run
            ProviderError: if a reasoning call failed and the policy aborts
        """
        if self._state is not DeliberationState.NOT_STARTED:
            raise DeliberationError(
                "A DeliberationEngine runs exactly one deliberation; create a new engine"
            )

        self._state = DeliberationState.RUNNING
        self._started_at = datetime.now(timezone.utc)
        set_deliberation_id(self.config.id)

        span_attributes = {
            "deliberation.id": self.config.id,
            "deliberation.max_rounds": self.config.max_rounds,
            "deliberation.consensus_threshold": self.config.consensus_threshold,
            "deliberation.expert_count": self.experts.size(),
        }

        logger.info(
            "Starting deliberation %s. Topic: %r, MaxRounds: %d, Threshold: %.0f, Experts: %d",
            self.config.id,
            self.config.topic,
            self.config.max_rounds,
            self.config.consensus_threshold,
            self.experts.size(),
        )

        with trace_span("deliberation.run", span_attributes) as span:
            await self._events.emit(DeliberationEventType.STARTED, {
                "deliberation_id": self.config.id,
                "topic": self.config.topic,
                "max_rounds": self.config.max_rounds,
                "expert_count": self.experts.size(),
            })

            try:
                result = await self._run_rounds()
            except Exception as e:
                cancelled = isinstance(e, DeliberationCancelled)
                self._state = (
                    DeliberationState.CANCELLED if cancelled else DeliberationState.FAILED
                )
                if cancelled:
                    logger.warning("Deliberation %s cancelled: %s", self.config.id, e)
                else:
                    logger.error(
                        "Deliberation %s failed after %d round(s): %s",
                        self.config.id, len(self._rounds), e,
                    )
                record_span_error(span, e)
                await self._events.emit(DeliberationEventType.ERROR, {
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "rounds_completed": len(self._rounds),
                    "cancelled": cancelled,
                })
                raise
            finally:
                set_round_number(None)
                set_deliberation_id(None)

            annotate_span(span, {
                "deliberation.rounds_run": result.metadata.total_rounds,
                "deliberation.consensus_achieved": result.final_consensus.achieved,
            })

        self._state = DeliberationState.COMPLETED
        logger.info(
            "Deliberation %s completed. Rounds: %d, Score: %.2f, Achieved: %s, Duration: %dms",
            result.id,
            result.metadata.total_rounds,
            result.final_consensus.score,
            result.final_consensus.achieved,
            result.metadata.total_duration_ms,
        )
        await self._events.emit(DeliberationEventType.COMPLETED, {"result": result})
        return result

    async def _run_rounds(self) -> DeliberationResult:
        for round_number in range(1, self.config.max_rounds + 1):
            self._check_cancelled()
            round_result = await self._run_round(round_number)
            self._rounds.append(round_result)
            await self._events.emit(DeliberationEventType.ROUND_COMPLETED, {
                "round_number": round_number,
                "round_result": round_result,
            })

            achieved = consensus_reached(
                round_result.consensus_score, self.config.consensus_threshold
            )
            await self._events.emit(DeliberationEventType.CONSENSUS_CALCULATED, {
                "round_number": round_number,
                "consensus_score": round_result.consensus_score,
                "achieved": achieved,
            })
            if achieved:
                logger.info(
                    "Consensus %.2f reached threshold in round %d",
                    round_result.consensus_score, round_number,
                )
                break
        else:
            logger.info(
                "Round budget of %d exhausted without consensus", self.config.max_rounds
            )
        set_round_number(None)

        final_consensus = await self.meta_moderator.generate_final_consensus(
            tuple(self._rounds), self.config.topic, self.config.consensus_threshold
        )

        completed_at = datetime.now(timezone.utc)
        metadata = DeliberationMetadata(
            total_rounds=len(self._rounds),
            total_opinions=sum(len(r.opinions) for r in self._rounds),
            total_tokens_used=self._total_tokens(),
            started_at=self._started_at,
            completed_at=completed_at,
        )
        return DeliberationResult(
            id=self.config.id,
            topic=self.config.topic,
            rounds=tuple(self._rounds),
            final_consensus=final_consensus,
            metadata=metadata,
        )

    def _build_context(self, round_number: int, guidance: str) -> ExpertContext:
        previous = self._rounds[-1].opinions if self._rounds else None
        return ExpertContext(
            topic=self.config.topic,
            description=self.config.description,
            objectives=self.config.objectives,
            constraints=self.config.constraints,
            round_number=round_number,
            max_rounds=self.config.max_rounds,
            previous_opinions=previous,
            moderator_guidance=guidance or None,
        )

    async def _run_round(self, round_number: int) -> RoundResult:
        """Execute the next round. The caller records the result."""
        set_round_number(round_number)

        with trace_span("deliberation.round", {"deliberation.round": round_number}) as span:
            await self._events.emit(
                DeliberationEventType.ROUND_STARTED, {"round_number": round_number}
            )

            guidance = ""
            if round_number > 1:
                guidance = await self.meta_moderator.generate_guidance(
                    round_number, tuple(self._rounds), self.config.topic
                )
            context = self._build_context(round_number, guidance)

            if self.config.parallel_experts:
                opinions = await self._collect_parallel(context)
            else:
                opinions = await self._collect_sequential(context)

            if not opinions:
                raise DeliberationError(f"No expert produced an opinion in round {round_number}")

            metrics = await self.quality_monitor.assess_round(opinions, self.config.topic)
            await self._events.emit(DeliberationEventType.QUALITY_ASSESSED, {
                "round_number": round_number,
                "metrics": metrics,
            })

            score, consensus_summary = await self.meta_moderator.calculate_consensus(
                opinions, self.config.topic
            )
            summary = await self.meta_moderator.summarize_round(round_number, opinions, metrics)

            round_result = RoundResult(
                round_number=round_number,
                opinions=tuple(opinions),
                summary=summary,
                consensus_score=clamp_unit(score),
                quality_metrics=metrics,
                moderator_notes=consensus_summary,
                moderator_guidance=guidance,
            )
            annotate_span(span, {
                "deliberation.opinion_count": len(opinions),
                "deliberation.consensus_score": round_result.consensus_score,
                "deliberation.overall_quality": metrics.overall_quality,
            })

        logger.info(
            "Round %d complete. Opinions: %d, Quality: %.2f, Consensus: %.2f",
            round_number, len(opinions), metrics.overall_quality, round_result.consensus_score,
        )
        return round_result

    async def _generate(self, expert: Expert, context: ExpertContext) -> ExpertOpinion | None:
        try:
            opinion = await expert.generate_opinion(context)
        except ProviderError as e:
            if self.failure_policy is FailurePolicy.SKIP_EXPERT:
                logger.warning(
                    "Skipping expert %s in round %d: %s", expert.id, context.round_number, e
                )
                return None
            raise
        return replace(opinion, rank=self.experts.rank_of(expert.id))

    async def _submit(self, opinion: ExpertOpinion, score: float, round_number: int) -> None:
        opinion.attach_quality_score(score)
        await self._events.emit(DeliberationEventType.OPINION_SUBMITTED, {
            "expert_id": opinion.expert_id,
            "round_number": round_number,
            "confidence": opinion.confidence,
            "quality_score": opinion.quality_score,
        })

    async def _thinking(self, expert: Expert, round_number: int) -> None:
        await self._events.emit(DeliberationEventType.EXPERT_THINKING, {
            "expert_id": expert.id,
            "expert_name": expert.name,
            "round_number": round_number,
        })

    async def _collect_sequential(self, context: ExpertContext) -> list[ExpertOpinion]:
        opinions: list[ExpertOpinion] = []
        for expert in self.experts.get_all():
            self._check_cancelled()
            await self._thinking(expert, context.round_number)

            opinion = await self._generate(expert, context)
            if opinion is None:
                continue
            score = await self.quality_monitor.assess_opinion(opinion, self.config.topic)
            await self._submit(opinion, score, context.round_number)
            opinions.append(opinion)
        return opinions

    async def _collect_parallel(self, context: ExpertContext) -> list[ExpertOpinion]:
        self._check_cancelled()
        experts = self.experts.get_all()
        for expert in experts:
            await self._thinking(expert, context.round_number)

        async def generate_and_assess(expert: Expert) -> tuple[ExpertOpinion, float] | None:
            opinion = await self._generate(expert, context)
            if opinion is None:
                return None
            score = await self.quality_monitor.assess_opinion(opinion, self.config.topic)
            return opinion, score

        # gather keeps panel order regardless of completion order
        outcomes = await asyncio.gather(
            *(generate_and_assess(e) for e in experts), return_exceptions=True
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

        opinions: list[ExpertOpinion] = []
        for outcome in outcomes:
            if outcome is None:
                continue
            opinion, score = outcome
            await self._submit(opinion, score, context.round_number)
            opinions.append(opinion)
        return opinions


def create_deliberation_engine(
    topic: str,
    description: str = "",
    *,
    deliberation_id: str | None = None,
    id_generator: Callable[[], str] | None = None,
    objectives: Iterable[str] = (),
    constraints: Iterable[str] = (),
    max_rounds: int | None = None,
    consensus_threshold: float | None = None,
    experts: Iterable[ExpertConfig | dict[str, Any]] | None = None,
    quality_monitor: QualityMonitorConfig | None = None,
    meta_moderator: MetaModeratorConfig | None = None,
    parallel_experts: bool = False,
    provider: ReasoningProvider | None = None,
    failure_policy: FailurePolicy = FailurePolicy.ABORT,
) -> DeliberationEngine:
    """
    Build an engine with sensible defaults for everything not given.

    Args:
        topic: What the panel deliberates on
        description: Free-text background for the experts
        deliberation_id: Explicit id; otherwise one is taken from id_generator
        id_generator: Zero-argument callable producing ids (defaults to uuid4)
        experts: Panel configs (user config panel or the default panel if None)

    Returns:
        A DeliberationEngine ready to run
    """
    if deliberation_id is None:
        deliberation_id = (id_generator or (lambda: str(uuid.uuid4())))()

    if experts is None:
        experts = get_expert_panel() or ExpertRegistry.default_configs()

    if quality_monitor is None:
        quality_monitor = QualityMonitorConfig(
            ai_config=AIConfig(model=get_quality_model(), temperature=0.2, max_tokens=300)
        )
    if meta_moderator is None:
        meta_moderator = MetaModeratorConfig(ai_config=AIConfig(model=get_moderator_model()))

    data: dict[str, Any] = {
        "id": deliberation_id,
        "topic": topic,
        "description": description,
        "objectives": tuple(objectives),
        "constraints": tuple(constraints),
        "experts": tuple(experts),
        "quality_monitor": quality_monitor,
        "meta_moderator": meta_moderator,
        "parallel_experts": parallel_experts,
    }
    if max_rounds is not None:
        data["max_rounds"] = max_rounds
    if consensus_threshold is not None:
        data["consensus_threshold"] = consensus_threshold

    config = DeliberationConfig.create(**data)
    return DeliberationEngine(config, provider=provider, failure_policy=failure_policy)
