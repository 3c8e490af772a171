"""Tests for pure functions in quorum.export."""

import json
from datetime import datetime, timedelta, timezone

from quorum.export import export_to_json, export_to_markdown, format_model_name
from quorum.models import (
    DeliberationMetadata,
    DeliberationResult,
    DissentingOpinion,
    ExpertOpinion,
    FinalConsensus,
    QualityMetrics,
    RoundResult,
)
from quorum.schemas import AIConfig, ExpertConfig


def _result(dissenting=(), achieved=True, rounds=None) -> DeliberationResult:
    started = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)
    opinion = ExpertOpinion(
        "cfo", "Finance Lead", "Pilot with one team.", "Limits cost exposure.",
        confidence=0.7, quality_score=0.85,
    )
    if rounds is None:
        rounds = (
            RoundResult(
                round_number=1,
                opinions=(opinion,),
                summary="The panel leans toward a pilot.",
                consensus_score=0.74,
                quality_metrics=QualityMetrics.from_scores(0.7, 0.8, 0.6, 0.9),
                moderator_notes="Agreement on scope.",
            ),
        )
    return DeliberationResult(
        id="d-42",
        topic="Four-day week",
        rounds=rounds,
        final_consensus=FinalConsensus(
            achieved=achieved,
            score=0.74,
            summary="Run a pilot.",
            recommendation="Start next quarter.",
            dissenting=dissenting,
            confidence=0.7,
        ),
        metadata=DeliberationMetadata(
            total_rounds=len(rounds),
            total_opinions=sum(len(r.opinions) for r in rounds),
            total_tokens_used=1234,
            started_at=started,
            completed_at=started + timedelta(seconds=3),
        ),
    )


class TestFormatModelName:
    """Tests for format_model_name."""

    def test_provider_slash_model(self):
        """'openai/gpt-4' strips provider prefix."""
        assert format_model_name("openai/gpt-4") == "gpt-4"

    def test_no_slash(self):
        """Model id without slash returns unchanged."""
        assert format_model_name("gpt-4") == "gpt-4"

    def test_multiple_slashes(self):
        """Multiple slashes returns only the last segment."""
        assert format_model_name("a/b/c") == "c"


class TestExportToMarkdown:
    """Tests for export_to_markdown."""

    def test_header_and_metadata(self):
        md = export_to_markdown(_result())

        assert md.startswith("# Four-day week")
        assert "2025-01-15 12:00 UTC" in md
        assert "**Rounds:** 1" in md
        assert "**Tokens:** 1234" in md
        assert "**Duration:** 3.0s" in md

    def test_rounds_and_opinions(self):
        md = export_to_markdown(_result())

        assert "### Round 1" in md
        assert "**Consensus:** 74%" in md
        assert "#### Finance Lead" in md
        assert "*Confidence: 70% | Quality: 85%*" in md
        assert "**Reasoning:** Limits cost exposure." in md
        assert "The panel leans toward a pilot." in md
        assert "*Moderator notes: Agreement on scope.*" in md

    def test_final_consensus(self):
        md = export_to_markdown(_result(achieved=False))

        assert "## Final Consensus" in md
        assert "**Status:** Not achieved (74%)" in md
        assert "**Recommendation:** Start next quarter." in md
        assert "Dissenting Opinions" not in md

    def test_dissent_section(self):
        dissent = (DissentingOpinion("cfo", "Finance Lead", "Low confidence", "Wait a year."),)

        md = export_to_markdown(_result(dissenting=dissent))

        assert "### Dissenting Opinions" in md
        assert "- **Finance Lead** (Low confidence): Wait a year." in md

    def test_panel_section(self):
        panel = [ExpertConfig(id="cfo", name="Finance Lead", role="budget owner",
                              ai_config=AIConfig(model="openai/gpt-4o"))]

        md = export_to_markdown(_result(), panel=panel)

        assert "## Expert Panel" in md
        assert "- **Finance Lead**, budget owner (gpt-4o)" in md

    def test_without_rounds(self):
        md = export_to_markdown(_result(rounds=()))

        assert "## Rounds" not in md
        assert "## Final Consensus" in md


class TestExportToJson:

    def test_matches_to_dict_and_serializes(self):
        result = _result()

        exported = export_to_json(result)

        assert exported == result.to_dict()
        assert json.loads(json.dumps(exported))["id"] == "d-42"
