"""Export deliberation results to various formats."""

from collections.abc import Sequence
from typing import Any

from .models import DeliberationResult, ExpertOpinion, RoundResult
from .schemas import ExpertConfig


def format_model_name(model_id: str) -> str:
    """Format a model ID for display.

    Args:
        model_id: Full model identifier (e.g., "openai/gpt-4")

    Returns:
        Formatted display name
    """
    if "/" in model_id:
        return model_id.split("/")[-1]
    return model_id


def _percent(value: float) -> str:
    return f"{value * 100:.0f}%"


def _opinion_lines(opinion: ExpertOpinion) -> list[str]:
    quality = "n/a" if opinion.quality_score is None else _percent(opinion.quality_score)
    lines = [
        f"#### {opinion.expert_name}",
        "",
        f"*Confidence: {_percent(opinion.confidence)} | Quality: {quality}*",
        "",
        opinion.opinion,
        "",
    ]
    if opinion.reasoning:
        lines.extend([f"**Reasoning:** {opinion.reasoning}", ""])
    return lines


def _round_lines(round_result: RoundResult) -> list[str]:
    metrics = round_result.quality_metrics
    lines = [
        f"### Round {round_result.round_number}",
        "",
        f"**Consensus:** {_percent(round_result.consensus_score)}",
        "",
    ]
    if round_result.moderator_guidance:
        lines.extend(["**Moderator guidance:**", "", round_result.moderator_guidance, ""])

    for opinion in round_result.opinions:
        lines.extend(_opinion_lines(opinion))

    lines.extend([
        "**Quality metrics:** "
        f"confidence {_percent(metrics.average_confidence)}, "
        f"coherence {_percent(metrics.coherence_score)}, "
        f"diversity {_percent(metrics.diversity_score)}, "
        f"relevance {_percent(metrics.relevance_score)}, "
        f"overall {_percent(metrics.overall_quality)}",
        "",
    ])
    if round_result.summary:
        lines.extend(["**Summary:**", "", round_result.summary, ""])
    if round_result.moderator_notes:
        lines.extend([f"*Moderator notes: {round_result.moderator_notes}*", ""])
    return lines


def export_to_markdown(
    result: DeliberationResult,
    panel: Sequence[ExpertConfig] | None = None,
) -> str:
    """Export a deliberation result to Markdown format.

    Args:
        result: Completed deliberation
        panel: Expert configs, rendered as a panel section when given

    Returns:
        Markdown-formatted string
    """
    lines: list[str] = []
    metadata = result.metadata
    consensus = result.final_consensus

    lines.append(f"# {result.topic}")
    lines.append("")
    if metadata.completed_at:
        date_str = metadata.completed_at.strftime("%Y-%m-%d %H:%M UTC")
    else:
        date_str = "Unknown date"
    lines.append(f"*Deliberation {result.id}, completed {date_str}*")
    lines.append("")
    lines.append(
        f"**Rounds:** {metadata.total_rounds} | "
        f"**Opinions:** {metadata.total_opinions} | "
        f"**Tokens:** {metadata.total_tokens_used} | "
        f"**Duration:** {metadata.total_duration_ms / 1000:.1f}s"
    )
    lines.append("")

    if panel:
        lines.append("## Expert Panel")
        lines.append("")
        for expert in panel:
            role = f", {expert.role}" if expert.role else ""
            lines.append(
                f"- **{expert.name}**{role} ({format_model_name(expert.ai_config.model)})"
            )
        lines.append("")

    lines.append("---")
    lines.append("")

    if result.rounds:
        lines.append("## Rounds")
        lines.append("")
        for round_result in result.rounds:
            lines.extend(_round_lines(round_result))
            lines.append("---")
            lines.append("")

    lines.append("## Final Consensus")
    lines.append("")
    status = "Achieved" if consensus.achieved else "Not achieved"
    lines.append(f"**Status:** {status} ({_percent(consensus.score)})")
    lines.append(f"**Confidence:** {_percent(consensus.confidence)}")
    lines.append("")
    lines.append(consensus.summary)
    lines.append("")
    lines.append(f"**Recommendation:** {consensus.recommendation}")
    lines.append("")

    if consensus.dissenting:
        lines.append("### Dissenting Opinions")
        lines.append("")
        for dissent in consensus.dissenting:
            lines.append(f"- **{dissent.expert_name}** ({dissent.reason}): {dissent.alternative_position}")
        lines.append("")

    return "\n".join(lines)


def export_to_json(result: DeliberationResult) -> dict[str, Any]:
    """Export a deliberation result to a JSON-serializable dict."""
    return result.to_dict()
