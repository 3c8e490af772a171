"""Quality monitor: scores individual opinions and whole rounds."""

import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Sequence
from itertools import combinations

from .models import ExpertOpinion, QualityMetrics, UsageTotals, clamp_unit
from .reasoning import ReasoningProvider
from .schemas import QualityMonitorConfig

logger = logging.getLogger(__name__)

FALLBACK_SUB_SCORE = 0.5

STOPWORDS = frozenset({
    "about", "above", "after", "again", "also", "because", "been", "before",
    "being", "between", "both", "could", "does", "doing", "each", "from",
    "further", "have", "having", "here", "into", "itself", "just", "more",
    "most", "much", "only", "other", "over", "same", "should", "some", "such",
    "than", "that", "their", "them", "then", "there", "these", "they", "this",
    "those", "through", "under", "until", "very", "what", "when", "where",
    "which", "while", "will", "with", "would", "your",
})


OPINION_QUALITY_PROMPT = """Rate the quality of this expert contribution to a deliberation on "{topic}".

Position: {opinion}
Reasoning: {reasoning}
Stated confidence: {confidence:.0f}%

Judge depth of reasoning, use of evidence, relevance to the topic and internal consistency.

Respond in this exact format:
QUALITY_SCORE: [0-100]"""


ROUND_QUALITY_PROMPT = """Assess this round of expert opinions on "{topic}".

{opinions}

Rate two properties from 0 to 100:
- COHERENCE: are the arguments internally consistent and do they engage with each other?
- RELEVANCE: do the opinions address the topic as posed?

Respond in this exact format:
COHERENCE: [0-100]
RELEVANCE: [0-100]"""


def parse_percentage(text: str, label: str) -> float | None:
    """Extract ``LABEL: n`` from generated text as a fraction, or None if absent."""
    match = re.search(rf"{label}:\s*\[?\s*(\d+(?:\.\d+)?)", text, re.IGNORECASE)
    if not match:
        return None
    return clamp_unit(float(match.group(1)) / 100)


def extract_key_concepts(text: str) -> set[str]:
    """Lower-cased content words longer than three characters."""
    words = re.findall(r"[a-z0-9][a-z0-9'-]*", text.lower())
    return {w for w in words if len(w) > 3 and w not in STOPWORDS}


def lexical_diversity(opinions: Sequence[ExpertOpinion]) -> float:
    """One minus the mean pairwise Jaccard overlap of the opinions' key concepts.

    A single opinion counts as fully diverse; identical opinions score 0.
    """
    concept_sets = [extract_key_concepts(o.opinion) for o in opinions]
    if len(concept_sets) < 2:
        return 1.0
    overlaps = []
    for a, b in combinations(concept_sets, 2):
        union = a | b
        overlaps.append(len(a & b) / len(union) if union else 1.0)
    return clamp_unit(1.0 - sum(overlaps) / len(overlaps))


def identify_issues(metrics: QualityMetrics, config: QualityMonitorConfig) -> list[str]:
    """Names of the sub-metrics that fall below their configured thresholds."""
    issues = []
    if metrics.average_confidence < config.min_confidence_threshold:
        issues.append("low_confidence")
    if metrics.coherence_score < config.coherence_threshold:
        issues.append("low_coherence")
    if metrics.relevance_score < config.relevance_threshold:
        issues.append("low_relevance")
    if metrics.diversity_score < config.diversity_threshold:
        issues.append("low_diversity")
    return issues


def _average_confidence(opinions: Sequence[ExpertOpinion]) -> float:
    if not opinions:
        return 0.0
    return sum(o.confidence for o in opinions) / len(opinions)


class QualityMonitor(ABC):
    """Scores opinions and rounds. Every score is in [0, 1]."""

    def __init__(self) -> None:
        self.usage = UsageTotals()

    @property
    def tokens_used(self) -> int:
        return self.usage.tokens_used

    @abstractmethod
    async def assess_opinion(self, opinion: ExpertOpinion, topic: str) -> float:
        ...

    @abstractmethod
    async def assess_round(
        self, opinions: Sequence[ExpertOpinion], topic: str
    ) -> QualityMetrics:
        ...


class ProviderQualityMonitor(QualityMonitor):
    """Quality monitor that asks a reasoning provider to grade the discussion.

    Per-opinion scores and round coherence/relevance come from the provider.
    Diversity is measured lexically and average confidence is computed
    directly. Output the provider fails to format is replaced by fallbacks,
    never raised.
    """

    def __init__(self, config: QualityMonitorConfig, provider: ReasoningProvider) -> None:
        super().__init__()
        self.config = config
        self.provider = provider

    async def assess_opinion(self, opinion: ExpertOpinion, topic: str) -> float:
        prompt = OPINION_QUALITY_PROMPT.format(
            topic=topic,
            opinion=opinion.opinion,
            reasoning=opinion.reasoning or "(none given)",
            confidence=opinion.confidence * 100,
        )
        result = await self.provider.generate(prompt, self.config.ai_config)
        self.usage.record(result.model or self.config.ai_config.model, result.tokens_used)

        score = parse_percentage(result.text, "QUALITY_SCORE")
        if score is None:
            logger.warning(
                "Unparseable quality score for expert %s, using stated confidence",
                opinion.expert_id,
            )
            return opinion.confidence
        return score

    async def assess_round(
        self, opinions: Sequence[ExpertOpinion], topic: str
    ) -> QualityMetrics:
        if not opinions:
            return QualityMetrics.empty()

        formatted = "\n\n".join(
            f"{o.expert_name}: {o.opinion}\nReasoning: {o.reasoning}" for o in opinions
        )
        result = await self.provider.generate(
            ROUND_QUALITY_PROMPT.format(topic=topic, opinions=formatted),
            self.config.ai_config,
        )
        self.usage.record(result.model or self.config.ai_config.model, result.tokens_used)

        coherence = parse_percentage(result.text, "COHERENCE")
        relevance = parse_percentage(result.text, "RELEVANCE")
        if coherence is None or relevance is None:
            logger.warning("Round quality response missing scores, using fallbacks")

        metrics = QualityMetrics.from_scores(
            average_confidence=_average_confidence(opinions),
            coherence_score=FALLBACK_SUB_SCORE if coherence is None else coherence,
            diversity_score=lexical_diversity(opinions),
            relevance_score=FALLBACK_SUB_SCORE if relevance is None else relevance,
        )

        issues = identify_issues(metrics, self.config)
        if issues:
            logger.info(
                "Round quality %.2f below thresholds: %s",
                metrics.overall_quality, ", ".join(issues),
            )
        return metrics


class DisabledQualityMonitor(QualityMonitor):
    """Stand-in used when quality monitoring is switched off.

    Every opinion scores 1.0 and rounds report their real average confidence
    with the other sub-metrics at 1.0, so a disabled monitor never marks a
    round as weak.
    """

    async def assess_opinion(self, opinion: ExpertOpinion, topic: str) -> float:
        return 1.0

    async def assess_round(
        self, opinions: Sequence[ExpertOpinion], topic: str
    ) -> QualityMetrics:
        return QualityMetrics.from_scores(
            average_confidence=_average_confidence(opinions),
            coherence_score=1.0,
            diversity_score=1.0,
            relevance_score=1.0,
        )


def create_quality_monitor(
    config: QualityMonitorConfig | None, provider: ReasoningProvider
) -> QualityMonitor:
    """Select the quality monitor implementation for a config."""
    if config is None:
        config = QualityMonitorConfig()
    if not config.enabled:
        return DisabledQualityMonitor()
    return ProviderQualityMonitor(config, provider)
