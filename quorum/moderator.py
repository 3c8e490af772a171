"""Meta-moderator: guidance, consensus scoring, round summaries and the final verdict."""

import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Sequence

from .models import (
    DissentingOpinion,
    ExpertOpinion,
    FinalConsensus,
    QualityMetrics,
    RoundResult,
    UsageTotals,
    clamp_unit,
)
from .reasoning import ReasoningProvider
from .schemas import AIConfig, MetaModeratorConfig

logger = logging.getLogger(__name__)

FALLBACK_CONSENSUS_SCORE = 0.5
FALLBACK_CONSENSUS_SUMMARY = "Unable to determine consensus."
FALLBACK_RECOMMENDATION = "See summary for recommendations."
DISSENT_REASON = "Low confidence in the emerging consensus"
DISSENT_CONFIDENCE_CUTOFF = 0.5
MAX_DISSENTERS = 2

RECOMMEND_PROCEED = "Proceed with the majority position."
RECOMMEND_CONTINUE = "Further deliberation recommended."


SUMMARY_STYLES = {
    "concise": "Provide a concise summary in 2-3 sentences.",
    "detailed": "Provide a detailed summary covering all major points and nuances.",
    "executive": (
        "Provide an executive summary suitable for senior leadership, "
        "focusing on key decisions and implications."
    ),
}


ROUND_SUMMARY_PROMPT = """{style}

Summarize Round {round_number} of the deliberation.

Opinions received:
{opinions}

Quality Metrics:
- Average Confidence: {average_confidence:.0f}%
- Coherence Score: {coherence:.0f}%
- Diversity Score: {diversity:.0f}%
- Relevance Score: {relevance:.0f}%

Capture the key themes, areas of agreement, and points of contention."""


GUIDANCE_PROMPT = """As the meta-moderator for this deliberation on "{topic}", provide guidance for Round {round_number}.

Previous Round Summary:
{summary}

Quality Metrics:
- Overall Quality: {overall:.0f}%
- Areas needing improvement: {weak_areas}

Current Consensus Score: {consensus:.0f}%

Give brief, actionable guidance that helps the experts improve the next round:
1. Address gaps in the discussion
2. Encourage deeper analysis where needed
3. Facilitate convergence without forcing agreement"""


CONSENSUS_PROMPT = """Analyze the following expert opinions on "{topic}" and determine the level of consensus.

{opinions}

Respond in this exact format:
CONSENSUS_SCORE: [0-100] - how far the experts agree
SUMMARY: [brief summary of the consensus or lack thereof]"""


FINAL_REPORT_PROMPT = """Generate a final consensus report for the deliberation on "{topic}".

Deliberation History:
{history}

Final Round Opinions:
{final_opinions}

Consensus Threshold: {threshold:.0f}%
Final Consensus Score: {score:.0f}%

Respond in this exact format:
SUMMARY: [comprehensive summary of the final consensus or disagreement]
RECOMMENDATION: [clear recommendation based on the deliberation]
DISSENTING: [significant dissenting positions and reasons, or "None" if consensus is strong]"""


def identify_weak_areas(metrics: QualityMetrics) -> list[str]:
    """Describe which parts of a round's quality need attention."""
    areas = []
    if metrics.coherence_score < 0.7:
        areas.append("coherence")
    if metrics.diversity_score < 0.6:
        areas.append("diversity of perspectives")
    if metrics.relevance_score < 0.7:
        areas.append("relevance to topic")
    if metrics.average_confidence < 0.6:
        areas.append("expert confidence")
    return areas or ["general quality"]


def select_dissenting_opinions(opinions: Sequence[ExpertOpinion]) -> list[DissentingOpinion]:
    """Pick at most two low-confidence experts from the final round.

    Takes the two lowest self-reported confidences (ties keep panel order)
    and keeps only those below 0.5.
    """
    lowest = sorted(opinions, key=lambda o: o.confidence)[:MAX_DISSENTERS]
    return [
        DissentingOpinion(
            expert_id=o.expert_id,
            expert_name=o.expert_name,
            reason=DISSENT_REASON,
            alternative_position=o.opinion,
        )
        for o in lowest
        if o.confidence < DISSENT_CONFIDENCE_CUTOFF
    ]


def parse_consensus_response(text: str) -> tuple[float, str]:
    """
    Extract the consensus score and summary from a moderator reply.

    A missing or malformed score falls back to 0.5 and a missing summary to a
    placeholder. The score is always clamped to [0, 1].
    """
    score_match = re.search(r"CONSENSUS_SCORE:\s*\[?\s*(\d+(?:\.\d+)?)", text, re.IGNORECASE)
    summary_match = re.search(r"SUMMARY:\s*(.+)", text, re.IGNORECASE | re.DOTALL)

    score = float(score_match.group(1)) / 100 if score_match else FALLBACK_CONSENSUS_SCORE
    summary = summary_match.group(1).strip() if summary_match else ""
    return clamp_unit(score), summary or FALLBACK_CONSENSUS_SUMMARY


def parse_final_report(text: str) -> dict[str, str | None]:
    """Split a final report into its SUMMARY / RECOMMENDATION / DISSENTING sections."""
    patterns = {
        "summary": r"SUMMARY:\s*(.*?)(?=RECOMMENDATION:|DISSENTING:|\Z)",
        "recommendation": r"RECOMMENDATION:\s*(.*?)(?=DISSENTING:|\Z)",
        "dissenting": r"DISSENTING:\s*(.*)",
    }
    sections: dict[str, str | None] = {}
    for key, pattern in patterns.items():
        match = re.search(pattern, text, re.IGNORECASE | re.DOTALL)
        value = match.group(1).strip() if match else ""
        sections[key] = value or None
    return sections


def _mean_confidence(opinions: Sequence[ExpertOpinion]) -> float:
    if not opinions:
        return 0.0
    return sum(o.confidence for o in opinions) / len(opinions)


def _empty_final_consensus() -> FinalConsensus:
    return FinalConsensus(
        achieved=False,
        score=0.0,
        summary="No rounds completed.",
        recommendation="",
        dissenting=(),
        confidence=0.0,
    )


class MetaModerator(ABC):
    """Moderates the deliberation. Each responsibility is independently callable."""

    def __init__(self) -> None:
        self.usage = UsageTotals()

    @property
    def tokens_used(self) -> int:
        return self.usage.tokens_used

    @abstractmethod
    async def generate_guidance(
        self, round_number: int, previous_rounds: Sequence[RoundResult], topic: str
    ) -> str:
        ...

    @abstractmethod
    async def calculate_consensus(
        self, opinions: Sequence[ExpertOpinion], topic: str
    ) -> tuple[float, str]:
        ...

    @abstractmethod
    async def summarize_round(
        self,
        round_number: int,
        opinions: Sequence[ExpertOpinion],
        metrics: QualityMetrics,
    ) -> str:
        ...

    @abstractmethod
    async def generate_final_consensus(
        self,
        rounds: Sequence[RoundResult],
        topic: str,
        consensus_threshold: float,
    ) -> FinalConsensus:
        ...


class ProviderMetaModerator(MetaModerator):
    """Meta-moderator backed by a reasoning provider."""

    def __init__(self, config: MetaModeratorConfig, provider: ReasoningProvider) -> None:
        super().__init__()
        self.config = config
        self.provider = provider

    def _ai_config(self, temperature: float, max_tokens: int) -> AIConfig:
        return self.config.ai_config.model_copy(
            update={"temperature": temperature, "max_tokens": max_tokens}
        )

    async def _generate(self, prompt: str, temperature: float, max_tokens: int) -> str:
        ai_config = self._ai_config(temperature, max_tokens)
        result = await self.provider.generate(prompt, ai_config)
        self.usage.record(result.model or ai_config.model, result.tokens_used)
        return result.text

    async def summarize_round(
        self,
        round_number: int,
        opinions: Sequence[ExpertOpinion],
        metrics: QualityMetrics,
    ) -> str:
        formatted = "\n".join(
            f"- {o.expert_name} (confidence: {o.confidence * 100:.0f}%): {o.opinion}"
            for o in opinions
        )
        prompt = ROUND_SUMMARY_PROMPT.format(
            style=SUMMARY_STYLES.get(self.config.summary_style, SUMMARY_STYLES["detailed"]),
            round_number=round_number,
            opinions=formatted,
            average_confidence=metrics.average_confidence * 100,
            coherence=metrics.coherence_score * 100,
            diversity=metrics.diversity_score * 100,
            relevance=metrics.relevance_score * 100,
        )
        max_tokens = 1000 if self.config.summary_style == "detailed" else 500
        text = await self._generate(prompt, temperature=0.5, max_tokens=max_tokens)
        return text.strip() or f"Round {round_number} completed with {len(opinions)} opinions."

    async def generate_guidance(
        self, round_number: int, previous_rounds: Sequence[RoundResult], topic: str
    ) -> str:
        if not previous_rounds:
            return ""

        last_round = previous_rounds[-1]
        if last_round.quality_metrics.overall_quality >= self.config.intervention_threshold:
            return ""

        logger.info(
            "Round %d quality %.2f below intervention threshold %.2f, generating guidance",
            last_round.round_number,
            last_round.quality_metrics.overall_quality,
            self.config.intervention_threshold,
        )
        prompt = GUIDANCE_PROMPT.format(
            topic=topic,
            round_number=round_number,
            summary=last_round.summary,
            overall=last_round.quality_metrics.overall_quality * 100,
            weak_areas=", ".join(identify_weak_areas(last_round.quality_metrics)),
            consensus=last_round.consensus_score * 100,
        )
        text = await self._generate(prompt, temperature=0.5, max_tokens=300)
        return text.strip()

    async def calculate_consensus(
        self, opinions: Sequence[ExpertOpinion], topic: str
    ) -> tuple[float, str]:
        formatted = "\n---\n".join(
            f"{o.expert_name}:\n"
            f"Position: {o.opinion}\n"
            f"Reasoning: {o.reasoning}\n"
            f"Confidence: {o.confidence * 100:.0f}%"
            for o in opinions
        )
        text = await self._generate(
            CONSENSUS_PROMPT.format(topic=topic, opinions=formatted),
            temperature=0.3,
            max_tokens=500,
        )
        score, summary = parse_consensus_response(text)
        if summary == FALLBACK_CONSENSUS_SUMMARY:
            logger.warning("Consensus response had no usable summary")
        return score, summary

    async def generate_final_consensus(
        self,
        rounds: Sequence[RoundResult],
        topic: str,
        consensus_threshold: float,
    ) -> FinalConsensus:
        if not rounds:
            return _empty_final_consensus()

        last_round = rounds[-1]
        achieved = last_round.consensus_score >= consensus_threshold / 100

        history = "\n\n".join(
            f"Round {r.round_number}:\n"
            f"- Summary: {r.summary}\n"
            f"- Consensus Score: {r.consensus_score * 100:.0f}%\n"
            f"- Quality: {r.quality_metrics.overall_quality * 100:.0f}%"
            for r in rounds
        )
        final_opinions = "\n".join(
            f"- {o.expert_name}: {o.opinion} (confidence: {o.confidence * 100:.0f}%)"
            for o in last_round.opinions
        )
        text = await self._generate(
            FINAL_REPORT_PROMPT.format(
                topic=topic,
                history=history,
                final_opinions=final_opinions,
                threshold=consensus_threshold,
                score=last_round.consensus_score * 100,
            ),
            temperature=0.4,
            max_tokens=800,
        )
        sections = parse_final_report(text)

        dissent_text = sections["dissenting"] or ""
        if dissent_text.lower().startswith("none"):
            dissenting = []
        else:
            dissenting = select_dissenting_opinions(last_round.opinions)

        return FinalConsensus(
            achieved=achieved,
            score=last_round.consensus_score,
            summary=sections["summary"] or last_round.summary,
            recommendation=sections["recommendation"] or FALLBACK_RECOMMENDATION,
            dissenting=tuple(dissenting),
            confidence=last_round.quality_metrics.average_confidence,
        )


class DisabledMetaModerator(MetaModerator):
    """Stand-in used when the meta-moderator is switched off.

    Consensus falls back to the mean self-reported confidence and the
    final recommendation to a fixed message.
    """

    async def generate_guidance(
        self, round_number: int, previous_rounds: Sequence[RoundResult], topic: str
    ) -> str:
        return ""

    async def calculate_consensus(
        self, opinions: Sequence[ExpertOpinion], topic: str
    ) -> tuple[float, str]:
        return clamp_unit(_mean_confidence(opinions)), "Consensus calculation disabled."

    async def summarize_round(
        self,
        round_number: int,
        opinions: Sequence[ExpertOpinion],
        metrics: QualityMetrics,
    ) -> str:
        return f"Round {round_number} completed with {len(opinions)} opinions."

    async def generate_final_consensus(
        self,
        rounds: Sequence[RoundResult],
        topic: str,
        consensus_threshold: float,
    ) -> FinalConsensus:
        if not rounds:
            return _empty_final_consensus()

        last_round = rounds[-1]
        achieved = last_round.consensus_score >= consensus_threshold / 100
        return FinalConsensus(
            achieved=achieved,
            score=last_round.consensus_score,
            summary=last_round.summary,
            recommendation=RECOMMEND_PROCEED if achieved else RECOMMEND_CONTINUE,
            dissenting=(),
            confidence=last_round.quality_metrics.average_confidence,
        )


def create_meta_moderator(
    config: MetaModeratorConfig | None, provider: ReasoningProvider
) -> MetaModerator:
    """Select the meta-moderator implementation for a config."""
    if config is None:
        config = MetaModeratorConfig()
    if not config.enabled:
        return DisabledMetaModerator()
    return ProviderMetaModerator(config, provider)
